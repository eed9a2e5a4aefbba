"""
media-catalog core package

Asset index, cross-process event-log synchronization, search and indexing
for a catalog of media files under one root directory.
"""

__version__ = "1.0.0"
__author__ = "Media Catalog Team"

from .models import Asset, AssetMetadata, MediaType, Tag, HistoryEvent, CatalogConfig
from .catalog import Catalog

__all__ = [
    "Asset",
    "AssetMetadata",
    "MediaType",
    "Tag",
    "HistoryEvent",
    "CatalogConfig",
    "Catalog",
]
