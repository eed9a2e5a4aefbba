"""
Media Catalog - searchable, taggable media asset index for a shared root.

Indexes images and videos under a root directory into SQLite with full-text
search, and keeps independent processes working on the same root in
agreement through an append-only directory of JSON event files.
"""

__version__ = "1.0.0"
__author__ = "Media Catalog Team"

from core.catalog import Catalog
from core.models.config import CatalogConfig, GlobalSettings
from core.models.assets import Asset, AssetMetadata, Tag
from core.search.engine import SearchFilters, SearchResult

__all__ = [
    "Catalog",
    "CatalogConfig",
    "GlobalSettings",
    "Asset",
    "AssetMetadata",
    "Tag",
    "SearchFilters",
    "SearchResult",
    "__version__",
]
