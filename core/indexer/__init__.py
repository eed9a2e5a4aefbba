"""
Indexing orchestration for media-catalog.

Keeps the asset index of a catalog root in step with the files on disk and
with events written by other processes.

Key Components:
- MediaScanner: Recursive media discovery with pre-scan counting
- IndexerService: Scan, re-home, watch, thumbnail and embedding passes, sync application
"""

from .scanner import MediaScanner, ScanStats
from .media import MetadataExtractor, ThumbnailGenerator, StatMetadataExtractor
from .service import IndexerService, IndexerError, IndexerStatus, SyncStats

__all__ = [
    "MediaScanner",
    "ScanStats",
    "MetadataExtractor",
    "ThumbnailGenerator",
    "StatMetadataExtractor",
    "IndexerService",
    "IndexerError",
    "IndexerStatus",
    "SyncStats",
]
