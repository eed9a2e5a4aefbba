"""
Tests for MediaRootWatcher event filtering and debouncing.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from watchdog.events import (
    DirCreatedEvent, FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent
)

from core.sync.watcher import FileChangeKind, MediaRootWatcher


DEBOUNCE_WAIT = 0.3


class TestMediaRootWatcher:
    """Test MediaRootWatcher against a temporary root"""

    @pytest.fixture
    def root(self):
        temp_dir = tempfile.mkdtemp()
        yield Path(temp_dir).resolve()
        shutil.rmtree(temp_dir, ignore_errors=True)

    @pytest.fixture
    def callbacks(self):
        return {"on_add": AsyncMock(), "on_remove": AsyncMock()}

    @pytest.fixture
    def watcher(self, root, callbacks):
        return MediaRootWatcher(root, [".png", ".mp4"], debounce_ms=50, **callbacks)

    def test_should_watch(self, watcher, root):
        assert watcher.should_watch(root / "shot.png")
        assert watcher.should_watch(root / "scene" / "clip.MP4")

        assert not watcher.should_watch(root / "notes.txt")
        assert not watcher.should_watch(root / ".hidden.png")
        assert not watcher.should_watch(root / ".cache" / "frame.png")
        assert not watcher.should_watch(root / ".media-catalog" / "thumbnails" / "a.png")
        assert not watcher.should_watch(root.parent / "outside.png")

    def test_dotfiles_watched_when_allowed(self, root):
        watcher = MediaRootWatcher(root, [".png"], skip_dotfiles=False)

        assert watcher.should_watch(root / ".hidden.png")
        assert not watcher.should_watch(root / ".media-catalog" / "a.png")

    def test_convert_event(self, watcher, root):
        shot = str(root / "shot.png")

        assert watcher.convert_event(FileCreatedEvent(shot)) == ((root / "shot.png", FileChangeKind.ADDED),)
        assert watcher.convert_event(FileModifiedEvent(shot)) == ((root / "shot.png", FileChangeKind.CHANGED),)
        assert watcher.convert_event(FileDeletedEvent(shot)) == ((root / "shot.png", FileChangeKind.REMOVED),)
        assert watcher.convert_event(DirCreatedEvent(str(root / "scene"))) == ()
        assert watcher.convert_event(FileCreatedEvent(str(root / "notes.txt"))) == ()

    def test_move_is_remove_then_add(self, watcher, root):
        event = FileMovedEvent(str(root / "a.png"), str(root / "b.png"))

        assert watcher.convert_event(event) == (
            (root / "a.png", FileChangeKind.REMOVED),
            (root / "b.png", FileChangeKind.ADDED),
        )

    def test_move_into_and_out_of_ignored_names(self, watcher, root):
        into = FileMovedEvent(str(root / ".a.png.part"), str(root / "a.png"))
        out = FileMovedEvent(str(root / "a.png"), str(root / "a.txt"))

        assert watcher.convert_event(into) == ((root / "a.png", FileChangeKind.ADDED),)
        assert watcher.convert_event(out) == ((root / "a.png", FileChangeKind.REMOVED),)

    @pytest.mark.asyncio
    async def test_bursts_are_debounced(self, watcher, root, callbacks):
        shot = str(root / "shot.png")

        await watcher.handle_watchdog_event(FileCreatedEvent(shot))
        await watcher.handle_watchdog_event(FileModifiedEvent(shot))
        await watcher.handle_watchdog_event(FileModifiedEvent(shot))
        await asyncio.sleep(DEBOUNCE_WAIT)

        callbacks["on_add"].assert_awaited_once_with(root / "shot.png")
        callbacks["on_remove"].assert_not_awaited()
        assert watcher.get_status()["events_delivered"] == 1

    @pytest.mark.asyncio
    async def test_last_event_wins(self, watcher, root, callbacks):
        shot = str(root / "shot.png")

        await watcher.handle_watchdog_event(FileCreatedEvent(shot))
        await watcher.handle_watchdog_event(FileDeletedEvent(shot))
        await asyncio.sleep(DEBOUNCE_WAIT)

        callbacks["on_add"].assert_not_awaited()
        callbacks["on_remove"].assert_awaited_once_with(root / "shot.png")

    @pytest.mark.asyncio
    async def test_callback_error_is_recorded(self, root):
        on_add = AsyncMock(side_effect=OSError("disk gone"))
        watcher = MediaRootWatcher(root, [".png"], on_add=on_add, debounce_ms=10)

        await watcher.handle_watchdog_event(FileCreatedEvent(str(root / "a.png")))
        await asyncio.sleep(DEBOUNCE_WAIT)

        status = watcher.get_status()
        assert status["error_count"] == 1
        assert "disk gone" in status["last_error"]

    @pytest.mark.asyncio
    async def test_start_fails_for_missing_root(self, root):
        watcher = MediaRootWatcher(root / "missing", [".png"])

        assert await watcher.start_monitoring() is False
        assert not watcher.is_monitoring

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_deliveries(self, root, callbacks):
        watcher = MediaRootWatcher(root, [".png"], debounce_ms=5000, **callbacks)
        assert await watcher.start_monitoring() is True

        await watcher.handle_watchdog_event(FileCreatedEvent(str(root / "a.png")))
        await watcher.stop_monitoring()

        assert not watcher.is_monitoring
        assert watcher.get_status()["pending_events"] == 0
        callbacks["on_add"].assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reports_new_file_on_disk(self, root, callbacks):
        async with MediaRootWatcher(root, [".png"], debounce_ms=50, **callbacks) as watcher:
            assert watcher.is_monitoring
            (root / "fresh.png").write_bytes(b"\x89PNG")

            for _ in range(50):
                if callbacks["on_add"].await_count:
                    break
                await asyncio.sleep(0.1)

        callbacks["on_add"].assert_awaited_with(root / "fresh.png")
