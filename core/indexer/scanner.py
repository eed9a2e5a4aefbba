"""
Media directory scanning.

Walks a catalog root with os.scandir, counting (pre-scan) or reporting
(scan) media files. Symlinks are reported at their own location, never at
their target, so every reported path stays under the root.
"""

import logging
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Set

from ..models.assets import MediaType

logger = logging.getLogger(__name__)


FileFoundCallback = Callable[[Path], Awaitable[None]]


@dataclass
class ScanStats:
    """Counts collected while walking a root"""
    total_files: int = 0
    total_folders: int = 0
    skipped_files: int = 0
    images: int = 0
    videos: int = 0
    other: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MediaScanner:
    """
    Recursive scanner for media files.

    Dot-prefixed entries (files and directories, including the catalog's own
    app directory) are skipped.
    """

    def __init__(
        self,
        image_extensions: Iterable[str],
        video_extensions: Iterable[str],
        skip_dotfiles: bool = True
    ):
        self.image_extensions: Set[str] = {ext.lower() for ext in image_extensions}
        self.video_extensions: Set[str] = {ext.lower() for ext in video_extensions}
        self.skip_dotfiles = skip_dotfiles
        self._stats = ScanStats()

    @property
    def media_extensions(self) -> Set[str]:
        return self.image_extensions | self.video_extensions

    def is_media_file(self, file_path: Path) -> bool:
        return Path(file_path).suffix.lower() in self.media_extensions

    def get_media_type(self, file_path: Path) -> MediaType:
        ext = Path(file_path).suffix.lower()
        if ext in self.video_extensions:
            return MediaType.VIDEO
        if ext in self.image_extensions:
            return MediaType.IMAGE
        return MediaType.OTHER

    def reset_stats(self) -> None:
        self._stats = ScanStats()

    def get_stats(self) -> ScanStats:
        return ScanStats(**self._stats.to_dict())

    def _skip(self, name: str) -> bool:
        return self.skip_dotfiles and name.startswith('.')

    def pre_scan(self, dir_path: Path) -> ScanStats:
        """Count folders and media files under ``dir_path`` without indexing"""
        self._pre_scan(Path(dir_path), set())
        return self.get_stats()

    def _pre_scan(self, dir_path: Path, visited: Set[str]) -> None:
        real = os.path.realpath(dir_path)
        if real in visited:
            return
        visited.add(real)

        try:
            with os.scandir(dir_path) as entries:
                for entry in entries:
                    if self._skip(entry.name):
                        continue
                    entry_path = Path(entry.path)
                    try:
                        if entry.is_dir():
                            self._stats.total_folders += 1
                            self._pre_scan(entry_path, visited)
                        elif entry.is_file():
                            self._count_file(entry_path)
                    except OSError as e:
                        logger.debug(f"Cannot stat {entry_path}: {e}")
        except OSError as e:
            logger.error(f"Error pre-scanning directory {dir_path}: {e}")

    def _count_file(self, file_path: Path) -> None:
        if not self.is_media_file(file_path):
            self._stats.skipped_files += 1
            return
        self._stats.total_files += 1
        media_type = self.get_media_type(file_path)
        if media_type == MediaType.IMAGE:
            self._stats.images += 1
        elif media_type == MediaType.VIDEO:
            self._stats.videos += 1
        else:
            self._stats.other += 1

    async def scan_directory(self, dir_path: Path, on_file_found: FileFoundCallback) -> int:
        """
        Report every media file under ``dir_path``.

        Returns:
            Number of files reported
        """
        return await self._scan(Path(dir_path), on_file_found, set())

    async def _scan(self, dir_path: Path, on_file_found: FileFoundCallback, visited: Set[str]) -> int:
        real = os.path.realpath(dir_path)
        if real in visited:
            logger.debug(f"Skipping already visited directory {dir_path}")
            return 0
        visited.add(real)

        try:
            with os.scandir(dir_path) as iterator:
                entries = sorted(iterator, key=lambda e: e.name)
        except OSError as e:
            logger.error(f"Error scanning directory {dir_path}: {e}")
            return 0

        reported = 0
        for entry in entries:
            if self._skip(entry.name):
                continue
            entry_path = Path(entry.path)
            try:
                if entry.is_symlink():
                    # Resolve to decide what it is, but keep the link's own path
                    if os.path.isdir(entry_path):
                        reported += await self._scan(entry_path, on_file_found, visited)
                    elif os.path.isfile(entry_path) and self.is_media_file(entry_path):
                        await on_file_found(entry_path)
                        reported += 1
                elif entry.is_dir(follow_symlinks=False):
                    reported += await self._scan(entry_path, on_file_found, visited)
                elif entry.is_file(follow_symlinks=False) and self.is_media_file(entry_path):
                    await on_file_found(entry_path)
                    reported += 1
            except OSError as e:
                logger.warning(f"Failed to inspect {entry_path}: {e}")
        return reported
