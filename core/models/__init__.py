"""
Core data models for media-catalog

Pydantic models for assets, tags, audit history and configuration.
"""

from .assets import Asset, AssetMetadata, AssetTag, Comment, MediaType, Tag, DEFAULT_STATUS, now_ms
from .history import HistoryAction, HistoryEvent, ActivityStats, IngressPoint
from .config import CatalogConfig, SyncConfig, IndexConfig, WatchConfig, GlobalSettings, configure_logging

__all__ = [
    # Assets
    "Asset",
    "AssetMetadata",
    "AssetTag",
    "Comment",
    "MediaType",
    "Tag",
    "DEFAULT_STATUS",
    "now_ms",

    # History
    "HistoryAction",
    "HistoryEvent",
    "ActivityStats",
    "IngressPoint",

    # Configuration
    "CatalogConfig",
    "SyncConfig",
    "IndexConfig",
    "WatchConfig",
    "GlobalSettings",
    "configure_logging",
]
