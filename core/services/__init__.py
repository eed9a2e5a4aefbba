"""
Catalog services: mutations that are audited and synchronized.
"""

from .assets import AssetService
from .tags import TagService

__all__ = [
    "AssetService",
    "TagService",
]
