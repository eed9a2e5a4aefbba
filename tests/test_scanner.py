"""
Tests for MediaScanner directory walking.
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from core.indexer.scanner import MediaScanner, ScanStats
from core.models.assets import MediaType


class TestMediaScanner:
    """Test pre-scan counting and the reporting walk"""

    @pytest.fixture
    def root(self):
        temp_dir = Path(tempfile.mkdtemp()).resolve()
        (temp_dir / "scene1").mkdir()
        (temp_dir / "scene1" / "b.png").write_bytes(b"png")
        (temp_dir / "scene1" / "a.mp4").write_bytes(b"mp4")
        (temp_dir / "cover.JPG").write_bytes(b"jpg")
        (temp_dir / "notes.txt").write_text("not media")
        (temp_dir / ".hidden.png").write_bytes(b"png")
        (temp_dir / ".media-catalog" / "thumbnails").mkdir(parents=True)
        (temp_dir / ".media-catalog" / "thumbnails" / "t.png").write_bytes(b"png")
        yield temp_dir
        shutil.rmtree(temp_dir, ignore_errors=True)

    @pytest.fixture
    def scanner(self):
        return MediaScanner([".png", ".jpg"], [".mp4"])

    async def collect(self, scanner: MediaScanner, root: Path):
        found = []

        async def on_found(path: Path) -> None:
            found.append(path)

        count = await scanner.scan_directory(root, on_found)
        return count, found

    def test_media_types(self, scanner):
        assert scanner.get_media_type(Path("x.PNG")) == MediaType.IMAGE
        assert scanner.get_media_type(Path("x.mp4")) == MediaType.VIDEO
        assert scanner.get_media_type(Path("x.txt")) == MediaType.OTHER
        assert scanner.is_media_file(Path("y.jpg"))
        assert not scanner.is_media_file(Path("y.txt"))
        assert scanner.media_extensions == {".png", ".jpg", ".mp4"}

    def test_pre_scan_counts(self, scanner, root):
        stats = scanner.pre_scan(root)

        assert stats == ScanStats(
            total_files=3, total_folders=1, skipped_files=1, images=2, videos=1, other=0
        )

    def test_reset_stats(self, scanner, root):
        scanner.pre_scan(root)
        scanner.reset_stats()
        assert scanner.get_stats() == ScanStats()

    def test_get_stats_returns_copy(self, scanner, root):
        stats = scanner.pre_scan(root)
        stats.total_files = 999
        assert scanner.get_stats().total_files == 3

    @pytest.mark.asyncio
    async def test_scan_reports_media_in_name_order(self, scanner, root):
        count, found = await self.collect(scanner, root)

        assert count == 3
        assert [p.relative_to(root).as_posix() for p in found] == [
            "cover.JPG",
            "scene1/a.mp4",
            "scene1/b.png",
        ]

    @pytest.mark.asyncio
    async def test_dotfiles_included_when_allowed(self, root):
        scanner = MediaScanner([".png"], [], skip_dotfiles=False)
        _, found = await self.collect(scanner, root)

        names = {p.relative_to(root).as_posix() for p in found}
        assert ".hidden.png" in names

    @pytest.mark.asyncio
    async def test_missing_directory(self, scanner, root):
        count, found = await self.collect(scanner, root / "nope")
        assert count == 0
        assert found == []

    @pytest.mark.asyncio
    @pytest.mark.skipif(not hasattr(os, "symlink") or os.name == "nt", reason="symlinks unavailable")
    async def test_symlinks_keep_their_own_path(self, scanner, root):
        os.symlink(root / "scene1", root / "linked")
        os.symlink(root / "cover.JPG", root / "alias.jpg")

        _, found = await self.collect(scanner, root)
        relative = [p.relative_to(root).as_posix() for p in found]

        assert "alias.jpg" in relative
        # The linked directory is the same directory, walked once
        assert relative.count("scene1/a.mp4") + relative.count("linked/a.mp4") == 1
        assert all(not p.is_absolute() or str(p).startswith(str(root)) for p in found)
