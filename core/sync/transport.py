"""
Event Log Transport.

The shared, append-only log that cooperating processes use to exchange
sync events. The engine talks to the ``EventLogTransport`` protocol only;
``DirectoryEventLog`` implements it over a directory of JSON files that can
live on any shared medium (synced folder, network share).

Safety without locks relies on three rules:
- every file is written once (temp file + atomic rename) and never edited,
- events carry globally unique ids, so seeing one twice is harmless,
- compaction and its deletes may race with other processes; losing the race
  just means the work was already done.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple, runtime_checkable

import aiofiles
import aiofiles.os
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent as WatchdogEvent
from watchdog.events import FileCreatedEvent, FileMovedEvent

from .events import (
    SyncEvent, compacted_file_name, is_compacted_file_name,
    parse_events, serialize_events, sort_events
)

logger = logging.getLogger(__name__)


EventsCallback = Callable[[List[SyncEvent]], Awaitable[None]]


@runtime_checkable
class EventLogTransport(Protocol):
    """Protocol for the append-only log that carries sync events"""

    async def open(self) -> bool:
        """Prepare the log and start watching for external appends"""
        ...

    async def append(self, event: SyncEvent) -> bool:
        """Durably append one event"""
        ...

    def subscribe(self, callback: EventsCallback) -> None:
        """Register a callback for events appended by other writers"""
        ...

    async def replay_all(self) -> List[SyncEvent]:
        """Return every event in the log sorted by (timestamp, id)"""
        ...

    async def compact(self, threshold: int) -> Optional[Path]:
        """Fold individual entries into one batch once ``threshold`` is reached"""
        ...

    async def close(self) -> None:
        """Stop watching and release handles"""
        ...


class DirectoryEventLog:
    """
    Event log stored as one JSON file per event in a shared directory.

    Individual files are named ``<timestamp>_<id>.json`` and hold one event
    object; compacted files are named ``compacted_<maxTimestamp>_<id>.json``
    and hold an array.
    """

    def __init__(
        self,
        sync_dir: Path,
        extension: str = ".json",
        join_timeout_s: float = 5.0
    ):
        self.sync_dir = Path(sync_dir)
        self.extension = extension
        self.join_timeout_s = join_timeout_s

        self._callbacks: List[EventsCallback] = []
        self._observer: Optional[Observer] = None
        self._handler: Optional['EventDirectoryHandler'] = None
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_watching(self) -> bool:
        return self._observer is not None

    async def open(self) -> bool:
        """
        Create the directory if needed and start the watcher.

        Returns:
            False if the directory cannot be created (sync unavailable)
        """
        try:
            self.sync_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create sync directory {self.sync_dir}: {e}")
            return False

        self._is_open = True
        await self._start_watcher()
        return True

    async def _start_watcher(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("No running event loop found when starting event log watcher - external events will only arrive via replay")
            return

        try:
            self._handler = EventDirectoryHandler(self, loop)
            self._observer = Observer()
            self._observer.schedule(self._handler, str(self.sync_dir), recursive=False)
            self._observer.start()
            logger.debug(f"Watching event directory {self.sync_dir}")
        except Exception as e:
            logger.warning(f"Failed to watch event directory {self.sync_dir}: {e}")
            self._observer = None
            self._handler = None

    async def close(self) -> None:
        """Stop the observer and wait for its thread to release the directory"""
        if self._handler:
            self._handler.set_event_loop(None)

        if self._observer:
            try:
                self._observer.stop()
                self._observer.join(timeout=self.join_timeout_s)
            except Exception as e:
                logger.warning(f"Error stopping event log watcher: {e}")
            finally:
                self._observer = None

        self._handler = None
        self._is_open = False

    def subscribe(self, callback: EventsCallback) -> None:
        self._callbacks.append(callback)

    def is_event_file(self, path: Path) -> bool:
        return path.suffix.lower() == self.extension and not path.name.startswith('.')

    def list_event_files(self) -> List[Path]:
        """Event files in enumeration order (sorted by name for stability)"""
        try:
            with os.scandir(self.sync_dir) as entries:
                files = [
                    Path(entry.path) for entry in entries
                    if entry.is_file() and self.is_event_file(Path(entry.name))
                ]
        except OSError as e:
            logger.error(f"Failed to list event directory {self.sync_dir}: {e}")
            return []
        return sorted(files, key=lambda p: p.name)

    def list_individual_files(self) -> List[Path]:
        return [p for p in self.list_event_files() if not is_compacted_file_name(p.name)]

    async def append(self, event: SyncEvent) -> bool:
        """Write ``event`` to its own file via temp file + atomic rename"""
        target = self.sync_dir / event.file_name
        try:
            await self._write_atomic(target, serialize_events(event))
            return True
        except OSError as e:
            logger.error(f"Failed to publish event {event.id}: {e}")
            return False

    async def _write_atomic(self, target: Path, content: str) -> None:
        tmp_path = target.with_name(f".{target.name}.tmp")
        try:
            async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                await f.write(content)
                await f.flush()
            await aiofiles.os.replace(tmp_path, target)
        except OSError:
            try:
                await aiofiles.os.remove(tmp_path)
            except OSError:
                pass
            raise

    async def read_event_file(self, path: Path) -> Optional[List[SyncEvent]]:
        """
        Read and parse one event file.

        Returns:
            Events sorted by (timestamp, id), or None if unreadable/malformed
        """
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                content = await f.read()
        except FileNotFoundError:
            logger.debug(f"Event file vanished before it could be read: {path}")
            return None
        except OSError as e:
            logger.error(f"Failed to read event file {path}: {e}")
            return None

        try:
            return sort_events(parse_events(content))
        except ValueError as e:
            logger.warning(f"Skipping malformed event file {path.name}: {e}")
            return None

    async def handle_new_file(self, path: Path) -> None:
        """Deliver the events of an externally added file to subscribers"""
        if not self.is_event_file(path):
            return

        events = await self.read_event_file(path)
        if not events:
            return

        for callback in list(self._callbacks):
            try:
                await callback(events)
            except Exception as e:
                logger.error(f"Error delivering events from {path.name}: {e}")

    async def replay_all(self) -> List[SyncEvent]:
        files = self.list_event_files()
        all_events: List[SyncEvent] = []
        for path in files:
            events = await self.read_event_file(path)
            if events:
                all_events.extend(events)

        logger.info(f"Read {len(all_events)} events from {len(files)} files in {self.sync_dir}")
        return sort_events(all_events)

    async def compact(self, threshold: int) -> Optional[Path]:
        """
        Consolidate individual event files into one batch file.

        Originals are removed only after the batch is durably written, and
        only those whose events made it into the batch. A missing original
        means another process compacted it first.

        Returns:
            Path of the new batch file, or None if nothing was compacted
        """
        individual = self.list_individual_files()
        if len(individual) < threshold:
            return None

        logger.info(f"Compacting {len(individual)} event files in {self.sync_dir}")

        included: List[Tuple[Path, List[SyncEvent]]] = []
        for path in individual:
            events = await self.read_event_file(path)
            if events:
                included.append((path, events))

        batch = sort_events([event for _, events in included for event in events])
        if not batch:
            return None

        target = self.sync_dir / compacted_file_name(batch)
        try:
            await self._write_atomic(target, serialize_events(batch))
        except OSError as e:
            logger.error(f"Failed to write compacted event file {target.name}: {e}")
            return None

        removed = 0
        for path, _ in included:
            try:
                await aiofiles.os.remove(path)
                removed += 1
            except FileNotFoundError:
                logger.debug(f"Event file already removed: {path.name}")
            except OSError as e:
                logger.warning(f"Failed to remove compacted event file {path.name}: {e}")

        logger.info(f"Compacted {len(batch)} events into {target.name} ({removed} files removed)")
        return target


class EventDirectoryHandler(FileSystemEventHandler):
    """
    Watchdog handler for the event directory.

    Bridges watchdog's observer thread onto the asyncio loop that owns the
    log.
    """

    def __init__(self, log: DirectoryEventLog, loop: Optional[asyncio.AbstractEventLoop]):
        super().__init__()
        self.log = log
        self._event_loop = loop

    def set_event_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._event_loop = loop

    def _schedule(self, path: Path) -> None:
        loop = self._event_loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop available, dropping event file notification: {path}")
            return
        try:
            loop.call_soon_threadsafe(
                lambda: asyncio.create_task(self.log.handle_new_file(path))
            )
        except RuntimeError as e:
            if "closed" not in str(e).lower():
                logger.error(f"Failed to schedule event file {path}: {e}")

    def on_created(self, event: WatchdogEvent) -> None:
        if event.is_directory or not isinstance(event, FileCreatedEvent):
            return
        self._schedule(Path(os.fsdecode(event.src_path)))

    def on_moved(self, event: WatchdogEvent) -> None:
        # Atomic writers rename a temp file into place
        if event.is_directory or not isinstance(event, FileMovedEvent):
            return
        self._schedule(Path(os.fsdecode(event.dest_path)))
