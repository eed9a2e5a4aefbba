"""
Media Root Watcher.

Monitors the catalog root for media files being added, changed or removed,
with per-path debouncing, and forwards the settled events to async
callbacks.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent as WatchdogEvent
from watchdog.events import FileCreatedEvent, FileModifiedEvent, FileDeletedEvent, FileMovedEvent

from ..models.config import APP_DIR_NAME

logger = logging.getLogger(__name__)


class FileChangeKind(str, Enum):
    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


FileCallback = Callable[[Path], Awaitable[None]]


class MediaRootWatcher:
    """
    Filesystem watcher for a catalog root.

    Only files with a media extension are reported. Dotfiles and anything
    under the catalog's own app directory are ignored. Moves are reported as
    a removal of the old path followed by an addition of the new one.
    """

    def __init__(
        self,
        root_path: Path,
        media_extensions: Iterable[str],
        on_add: Optional[FileCallback] = None,
        on_change: Optional[FileCallback] = None,
        on_remove: Optional[FileCallback] = None,
        debounce_ms: int = 500,
        recursive: bool = True,
        skip_dotfiles: bool = True,
        join_timeout_s: float = 5.0
    ):
        self.root_path = Path(root_path).resolve()
        self.media_extensions: Set[str] = {ext.lower() for ext in media_extensions}
        self.debounce_ms = debounce_ms
        self.recursive = recursive
        self.skip_dotfiles = skip_dotfiles
        self.join_timeout_s = join_timeout_s

        self._callbacks: Dict[FileChangeKind, Optional[FileCallback]] = {
            FileChangeKind.ADDED: on_add,
            FileChangeKind.CHANGED: on_change or on_add,
            FileChangeKind.REMOVED: on_remove,
        }

        self.observer: Optional[Observer] = None
        self.event_handler: Optional['MediaEventHandler'] = None

        # Debouncing state, keyed by path
        self._pending: Dict[str, FileChangeKind] = {}
        self._debounce_tasks: Dict[str, asyncio.Task] = {}

        self._is_monitoring = False
        self._monitor_start_time: Optional[datetime] = None

        self._events_delivered = 0
        self._error_count = 0
        self._last_error: Optional[str] = None

    @property
    def is_monitoring(self) -> bool:
        return self._is_monitoring

    @property
    def monitoring_duration(self) -> Optional[timedelta]:
        if not self._monitor_start_time:
            return None
        return datetime.now() - self._monitor_start_time

    async def start_monitoring(self) -> bool:
        """
        Start watching the root.

        Returns:
            True if monitoring started successfully, False otherwise
        """
        if self._is_monitoring:
            logger.warning("Media watcher is already active")
            return True

        try:
            if not self.root_path.is_dir():
                raise NotADirectoryError(f"Root path is not a directory: {self.root_path}")

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.error("No running event loop found when starting media watcher - events will be dropped")
                return False

            self.event_handler = MediaEventHandler(self, loop)
            self.observer = Observer()
            self.observer.schedule(self.event_handler, str(self.root_path), recursive=self.recursive)
            self.observer.start()

            self._is_monitoring = True
            self._monitor_start_time = datetime.now()
            logger.info(f"Watching {self.root_path} for media changes (recursive={self.recursive})")
            return True

        except Exception as e:
            self._record_error(f"Failed to start media watcher: {e}")
            logger.error(f"Failed to start media watcher: {e}")
            self.observer = None
            self.event_handler = None
            return False

    async def stop_monitoring(self) -> None:
        """Stop watching; the observer thread is joined before returning."""
        if not self._is_monitoring:
            return

        self._is_monitoring = False

        if self.event_handler:
            self.event_handler.set_event_loop(None)

        if self.observer:
            try:
                self.observer.stop()
                self.observer.join(timeout=self.join_timeout_s)
            except Exception as e:
                logger.warning(f"Error stopping observer: {e}")
            finally:
                self.observer = None

        pending_tasks = [task for task in self._debounce_tasks.values() if not task.done()]
        for task in pending_tasks:
            task.cancel()
        if pending_tasks:
            await asyncio.gather(*pending_tasks, return_exceptions=True)

        self._debounce_tasks.clear()
        self._pending.clear()
        self.event_handler = None

        logger.info(f"Stopped media watcher (duration: {self.monitoring_duration})")

    def should_watch(self, file_path: Path) -> bool:
        """True for media files outside the app directory and dot-directories"""
        if file_path.suffix.lower() not in self.media_extensions:
            return False
        try:
            relative = file_path.relative_to(self.root_path)
        except ValueError:
            return False
        parts = relative.parts
        if parts and parts[0] == APP_DIR_NAME:
            return False
        if self.skip_dotfiles and any(part.startswith('.') for part in parts):
            return False
        return True

    def convert_event(self, event: WatchdogEvent) -> Tuple[Tuple[Path, FileChangeKind], ...]:
        """Map a watchdog event onto (path, kind) pairs worth reporting"""
        if event.is_directory:
            return ()

        src = Path(os.fsdecode(event.src_path))

        if isinstance(event, FileMovedEvent):
            dest = Path(os.fsdecode(event.dest_path))
            changes = []
            if self.should_watch(src):
                changes.append((src, FileChangeKind.REMOVED))
            if self.should_watch(dest):
                changes.append((dest, FileChangeKind.ADDED))
            return tuple(changes)

        if not self.should_watch(src):
            return ()

        if isinstance(event, FileCreatedEvent):
            return ((src, FileChangeKind.ADDED),)
        if isinstance(event, FileModifiedEvent):
            return ((src, FileChangeKind.CHANGED),)
        if isinstance(event, FileDeletedEvent):
            return ((src, FileChangeKind.REMOVED),)
        return ()

    async def handle_watchdog_event(self, event: WatchdogEvent) -> None:
        try:
            for path, kind in self.convert_event(event):
                self._debounce(path, kind)
        except Exception as e:
            self._record_error(str(e))
            logger.error(f"Error handling watchdog event {event}: {e}")

    def _debounce(self, path: Path, kind: FileChangeKind) -> None:
        key = str(path)

        existing = self._debounce_tasks.get(key)
        if existing and not existing.done():
            existing.cancel()

        # An add followed by changes is still an add
        previous = self._pending.get(key)
        if previous == FileChangeKind.ADDED and kind == FileChangeKind.CHANGED:
            kind = FileChangeKind.ADDED
        self._pending[key] = kind

        self._debounce_tasks[key] = asyncio.create_task(
            self._deliver_after_delay(key, self.debounce_ms / 1000.0)
        )

    async def _deliver_after_delay(self, key: str, delay_seconds: float) -> None:
        try:
            await asyncio.sleep(delay_seconds)
        except asyncio.CancelledError:
            return

        kind = self._pending.pop(key, None)
        self._debounce_tasks.pop(key, None)
        if kind is None:
            return

        callback = self._callbacks.get(kind)
        if callback is None:
            return

        try:
            await callback(Path(key))
            self._events_delivered += 1
            logger.debug(f"Delivered {kind.value} for {key}")
        except Exception as e:
            self._record_error(f"{kind.value} {key}: {e}")
            logger.error(f"Error handling {kind.value} for {key}: {e}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self._is_monitoring,
            "root_path": str(self.root_path),
            "recursive": self.recursive,
            "debounce_ms": self.debounce_ms,
            "media_extensions": sorted(self.media_extensions),
            "monitoring_duration": str(self.monitoring_duration) if self.monitoring_duration else None,
            "pending_events": len(self._pending),
            "events_delivered": self._events_delivered,
            "error_count": self._error_count,
            "last_error": self._last_error,
        }

    def _record_error(self, message: str) -> None:
        self._error_count += 1
        self._last_error = message

    async def __aenter__(self):
        await self.start_monitoring()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop_monitoring()


class MediaEventHandler(FileSystemEventHandler):
    """
    Watchdog handler that forwards events to a ``MediaRootWatcher``.

    Watchdog calls in from its observer thread; events are scheduled onto
    the watcher's event loop.
    """

    def __init__(self, watcher: MediaRootWatcher, loop: Optional[asyncio.AbstractEventLoop]):
        super().__init__()
        self.watcher = watcher
        self._event_loop = loop

    def set_event_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        self._event_loop = loop

    def on_any_event(self, event: WatchdogEvent) -> None:
        loop = self._event_loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop available, dropping event: {event}")
            return
        try:
            loop.call_soon_threadsafe(
                lambda: asyncio.create_task(self.watcher.handle_watchdog_event(event))
            )
        except RuntimeError as e:
            if "closed" not in str(e).lower():
                logger.error(f"Failed to schedule event on loop: {e}")
