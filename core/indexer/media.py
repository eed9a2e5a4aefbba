"""
Media inspection collaborators.

Metadata extraction and thumbnail rendering live outside the catalog; the
indexer only depends on these protocols. A stat-based extractor is provided
so the catalog works without any media tooling installed.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ..models.assets import MediaType


@runtime_checkable
class MetadataExtractor(Protocol):
    """Protocol for media metadata extractors"""

    async def extract(self, file_path: Path, media_type: MediaType, size: int) -> Dict[str, Any]:
        """Return metadata fields for a file; never raises for unreadable media"""
        ...


@runtime_checkable
class ThumbnailGenerator(Protocol):
    """Protocol for thumbnail renderers"""

    async def generate(self, file_path: Path, asset_id: str) -> Optional[str]:
        """
        Render a thumbnail.

        Returns:
            Thumbnail path (relative to the thumbnail directory), or None on failure
        """
        ...


class StatMetadataExtractor:
    """Metadata from the filesystem alone"""

    async def extract(self, file_path: Path, media_type: MediaType, size: int) -> Dict[str, Any]:
        return {"size": size}
