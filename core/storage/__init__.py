"""
Storage package for media-catalog.

SQLite-backed asset index with a manually maintained full-text index, tag
relationships, folder colors and the audit history log.
"""

from .database import CatalogDatabase, SchemaMigrationError, SCHEMA_VERSION
from .assets import AssetIndexStore, row_to_asset
from .tags import TagStore
from .history import HistoryLog
from .folders import FolderStore
from .utils import generate_asset_id, path_based_asset_id, to_relative_path, is_within_root

__all__ = [
    "CatalogDatabase",
    "SchemaMigrationError",
    "SCHEMA_VERSION",
    "AssetIndexStore",
    "row_to_asset",
    "TagStore",
    "HistoryLog",
    "FolderStore",
    "generate_asset_id",
    "path_based_asset_id",
    "to_relative_path",
    "is_within_root",
]
