"""
Tests for the directory-backed event log.

Covers atomic appends, ordered replay across individual and compacted
files, tolerance of malformed files and compaction.
"""

import asyncio
import json
import os
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from core.sync.events import SyncEvent, SyncEventType, serialize_events
from core.sync.transport import DirectoryEventLog, EventLogTransport


def make_event(event_id: str, timestamp: int) -> SyncEvent:
    return SyncEvent(
        id=event_id,
        timestamp=timestamp,
        user_id="user_remote",
        type=SyncEventType.TAG_DELETE,
        payload={"id": f"tag-{event_id}"}
    )


class TestDirectoryEventLog:
    """Test DirectoryEventLog against a temporary directory"""

    @pytest.fixture
    def sync_dir(self):
        temp_dir = tempfile.mkdtemp()
        path = Path(temp_dir) / ".media-catalog" / "events"
        path.mkdir(parents=True)
        yield path
        shutil.rmtree(temp_dir, ignore_errors=True)

    @pytest.fixture
    def log(self, sync_dir):
        return DirectoryEventLog(sync_dir)

    def write_raw(self, sync_dir: Path, name: str, content: str) -> Path:
        path = sync_dir / name
        path.write_text(content, encoding='utf-8')
        return path

    def test_implements_protocol(self, log):
        assert isinstance(log, EventLogTransport)

    @pytest.mark.asyncio
    async def test_open_creates_directory(self, sync_dir):
        nested = sync_dir / "nested" / "events"
        log = DirectoryEventLog(nested)
        try:
            assert await log.open() is True
            assert nested.is_dir()
            assert log.is_open
        finally:
            await log.close()

        assert not log.is_open
        assert not log.is_watching

    @pytest.mark.asyncio
    async def test_open_fails_when_directory_cannot_be_created(self, sync_dir):
        blocker = sync_dir / "blocker"
        blocker.write_text("file, not a directory")

        log = DirectoryEventLog(blocker / "events")
        assert await log.open() is False
        assert not log.is_open

    @pytest.mark.asyncio
    async def test_append_writes_one_file(self, log, sync_dir):
        event = make_event("e1", 1000)

        assert await log.append(event) is True

        names = os.listdir(sync_dir)
        assert names == ["1000_e1.json"]
        data = json.loads((sync_dir / "1000_e1.json").read_text(encoding='utf-8'))
        assert data["id"] == "e1"
        assert data["userId"] == "user_remote"

    @pytest.mark.asyncio
    async def test_append_failure_returns_false(self, sync_dir):
        log = DirectoryEventLog(sync_dir / "missing")
        assert await log.append(make_event("e1", 1)) is False

    @pytest.mark.asyncio
    async def test_replay_is_sorted_across_files(self, log, sync_dir):
        await log.append(make_event("c", 3))
        await log.append(make_event("a", 1))
        self.write_raw(
            sync_dir, "compacted_2_x.json",
            serialize_events([make_event("b2", 2), make_event("b1", 2)])
        )

        events = await log.replay_all()
        assert [e.id for e in events] == ["a", "b1", "b2", "c"]

    @pytest.mark.asyncio
    async def test_replay_skips_malformed_and_foreign_files(self, log, sync_dir):
        await log.append(make_event("good", 1))
        self.write_raw(sync_dir, "2_bad.json", "{truncated")
        self.write_raw(sync_dir, "3_shape.json", json.dumps({"hello": "world"}))
        self.write_raw(sync_dir, ".4_partial.json.tmp", "{}")
        self.write_raw(sync_dir, "notes.txt", "not an event")

        events = await log.replay_all()
        assert [e.id for e in events] == ["good"]

    @pytest.mark.asyncio
    async def test_replay_of_empty_directory(self, log):
        assert await log.replay_all() == []

    @pytest.mark.asyncio
    async def test_compact_below_threshold(self, log, sync_dir):
        for i in range(3):
            await log.append(make_event(f"e{i}", i))

        assert await log.compact(threshold=5) is None
        assert len(log.list_individual_files()) == 3

    @pytest.mark.asyncio
    async def test_compact_preserves_events(self, log, sync_dir):
        for i in range(5):
            await log.append(make_event(f"e{i}", 100 + i))
        before = await log.replay_all()

        batch = await log.compact(threshold=5)

        assert batch is not None
        assert batch.name.startswith("compacted_104_")
        assert log.list_individual_files() == []
        assert [p.name for p in log.list_event_files()] == [batch.name]

        after = await log.replay_all()
        assert after == before

    @pytest.mark.asyncio
    async def test_compact_leaves_malformed_files(self, log, sync_dir):
        for i in range(2):
            await log.append(make_event(f"e{i}", i))
        bad = self.write_raw(sync_dir, "9_bad.json", "{oops")

        batch = await log.compact(threshold=3)

        assert batch is not None
        assert bad.exists()
        assert [e.id for e in await log.replay_all()] == ["e0", "e1"]

    @pytest.mark.asyncio
    async def test_handle_new_file_delivers_to_subscribers(self, log, sync_dir):
        received = []

        async def collect(events):
            received.extend(events)

        failing = AsyncMock(side_effect=RuntimeError("subscriber down"))
        log.subscribe(failing)
        log.subscribe(collect)

        path = self.write_raw(
            sync_dir, "compacted_2_y.json",
            serialize_events([make_event("b", 2), make_event("a", 1)])
        )
        await log.handle_new_file(path)

        failing.assert_awaited_once()
        assert [e.id for e in received] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_handle_new_file_ignores_vanished_file(self, log, sync_dir):
        callback = AsyncMock()
        log.subscribe(callback)

        await log.handle_new_file(sync_dir / "1_gone.json")
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_watcher_reports_external_append(self, sync_dir):
        reader = DirectoryEventLog(sync_dir)
        writer = DirectoryEventLog(sync_dir)
        received = []

        async def collect(events):
            received.extend(events)

        reader.subscribe(collect)
        await reader.open()
        try:
            if not reader.is_watching:
                pytest.skip("Filesystem watching unavailable")

            await writer.append(make_event("external", 42))

            for _ in range(50):
                if received:
                    break
                await asyncio.sleep(0.1)

            assert [e.id for e in received][:1] == ["external"]
        finally:
            await reader.close()
