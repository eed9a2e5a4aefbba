"""
Catalog Synchronization Engine.

Event-sourced coordinator that keeps independent processes cataloging the
same root in agreement. Local mutations are published to a shared event log;
events written by other processes are picked up by the log's watcher (or by
replay at startup) and dispatched to subscribers that apply them locally.
"""

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Union

from ..models.config import SyncConfig
from .events import SyncEvent, SyncEventType, new_session_user_id, sort_events
from .transport import DirectoryEventLog, EventLogTransport

logger = logging.getLogger(__name__)


EventSubscriber = Callable[[SyncEvent], Union[None, Awaitable[None]]]
TransportFactory = Callable[[Path, SyncConfig], EventLogTransport]


def directory_transport_factory(sync_dir: Path, config: SyncConfig) -> EventLogTransport:
    return DirectoryEventLog(sync_dir, extension=config.event_file_extension)


@dataclass
class SyncEngineMetrics:
    """Counters for the synchronization engine."""

    events_published: int = 0
    publish_failures: int = 0

    events_applied: int = 0
    events_skipped_duplicate: int = 0
    events_skipped_own: int = 0
    subscriber_errors: int = 0

    replays: int = 0
    compactions: int = 0

    last_error_time: Optional[datetime] = None
    last_error_message: Optional[str] = None


class SyncEngine:
    """
    Publishes local mutations and applies remote ones exactly once.

    Each instance is one writer session, identified by ``user_id``. Events
    carrying this session's id are never applied back; every other event is
    applied at most once per process, however many times it is seen.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        user_id: Optional[str] = None,
        transport_factory: Optional[TransportFactory] = None
    ):
        """
        Initialize the engine.

        Args:
            config: Sync configuration (layout, compaction threshold, history size)
            user_id: Writer identity; generated per session when omitted
            transport_factory: Builds the event log for a sync directory
        """
        self.config = config or SyncConfig()
        self._user_id = user_id or new_session_user_id()
        self._transport_factory = transport_factory or directory_transport_factory

        self._transport: Optional[EventLogTransport] = None
        self._sync_dir: Optional[Path] = None

        self._processed_ids: Set[str] = set()
        self._history: Deque[SyncEvent] = deque(maxlen=self.config.history_size)
        self._subscribers: List[EventSubscriber] = []
        self._apply_lock: Optional[asyncio.Lock] = None

        self.metrics = SyncEngineMetrics()

        logger.debug(f"Initialized SyncEngine for session {self._user_id}")

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def sync_dir(self) -> Optional[Path]:
        return self._sync_dir

    @property
    def is_enabled(self) -> bool:
        return self._transport is not None

    @property
    def transport(self) -> Optional[EventLogTransport]:
        return self._transport

    async def initialize(self, root_path: Path) -> bool:
        """
        Attach to the event log of a catalog root.

        Creates the sync directory when absent, starts watching it, replays
        every existing event and runs the compaction check.

        Returns:
            True if sync is active, False if it is disabled for this session
        """
        if self._transport is not None:
            await self.stop()

        if not self.config.enabled:
            logger.info("Sync disabled by configuration")
            return False

        sync_dir = self.config.get_sync_dir(Path(root_path))
        transport = self._transport_factory(sync_dir, self.config)

        opened = await transport.open()
        if not opened:
            self._record_error(f"Could not open event log at {sync_dir}")
            logger.error(f"Sync disabled for this session: event log at {sync_dir} is unavailable")
            return False

        transport.subscribe(self._on_transport_events)
        self._transport = transport
        self._sync_dir = sync_dir
        logger.info(f"Sync initialized at {sync_dir} as {self._user_id}")

        await self.replay_events()
        await self.compact_events()
        return True

    async def stop(self) -> None:
        """Stop watching and release the event directory"""
        transport = self._transport
        self._transport = None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"Error closing event log: {e}")
        logger.info("Sync engine stopped")

    def subscribe(self, callback: EventSubscriber) -> Callable[[], None]:
        """
        Register a callback invoked for each applied event.

        Returns:
            Callable that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    async def publish(self, event_type: SyncEventType, payload: Dict[str, Any]) -> Optional[SyncEvent]:
        """
        Publish a local mutation.

        The event is marked processed before it is written so the watcher
        notification for our own file is a no-op. Write failures are logged;
        the local mutation has already happened and stands.

        Returns:
            The published event, or None when sync is disabled
        """
        if self._transport is None:
            logger.debug(f"Sync disabled, not publishing {event_type.value}")
            return None

        event = SyncEvent.create(event_type, payload, self._user_id)
        self._processed_ids.add(event.id)
        self._history.append(event)

        if await self._transport.append(event):
            self.metrics.events_published += 1
            logger.debug(f"Published {event}")
        else:
            self.metrics.publish_failures += 1
            self._record_error(f"Failed to publish {event}")

        return event

    async def process_event(self, event: SyncEvent) -> bool:
        """
        Apply one event if it is new and was written by another session.

        Returns:
            True if the event was dispatched to subscribers
        """
        if self._apply_lock is None:
            # Bound to the loop that first applies events
            self._apply_lock = asyncio.Lock()

        async with self._apply_lock:
            if event.id in self._processed_ids:
                self.metrics.events_skipped_duplicate += 1
                return False

            if event.user_id == self._user_id:
                self.metrics.events_skipped_own += 1
                return False

            self._processed_ids.add(event.id)
            self._history.append(event)

            logger.debug(f"Applying {event}")
            await self._dispatch(event)
            self.metrics.events_applied += 1
            return True

    async def _dispatch(self, event: SyncEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.metrics.subscriber_errors += 1
                self._record_error(f"Subscriber failed on {event}: {e}")
                logger.error(f"Error applying sync event {event.id}: {e}")

    async def _on_transport_events(self, events: List[SyncEvent]) -> None:
        for event in sort_events(events):
            await self.process_event(event)

    async def replay_events(self) -> int:
        """
        Apply every event in the log in (timestamp, id) order.

        Returns:
            Number of events applied
        """
        if self._transport is None:
            return 0

        events = await self._transport.replay_all()
        applied = 0
        for event in sort_events(events):
            if await self.process_event(event):
                applied += 1

        self.metrics.replays += 1
        logger.info(f"Replayed {len(events)} events ({applied} applied)")
        return applied

    async def compact_events(self) -> Optional[Path]:
        """
        Fold individual event files into one batch file once the threshold
        is reached.

        Returns:
            Path of the batch file, or None if no compaction happened
        """
        if self._transport is None:
            return None

        try:
            result = await self._transport.compact(self.config.compaction_threshold)
        except Exception as e:
            self._record_error(f"Compaction failed: {e}")
            logger.error(f"Event log compaction failed: {e}")
            return None

        if result is not None:
            self.metrics.compactions += 1
        return result

    def get_history(self) -> List[SyncEvent]:
        """Most recent events seen by this session, oldest first"""
        return list(self._history)

    def is_processed(self, event_id: str) -> bool:
        return event_id in self._processed_ids

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.is_enabled,
            "user_id": self._user_id,
            "sync_dir": str(self._sync_dir) if self._sync_dir else None,
            "processed_events": len(self._processed_ids),
            "history_size": len(self._history),
            "subscribers": len(self._subscribers),
            "events_published": self.metrics.events_published,
            "events_applied": self.metrics.events_applied,
            "publish_failures": self.metrics.publish_failures,
            "last_error": self.metrics.last_error_message,
        }

    def _record_error(self, message: str) -> None:
        self.metrics.last_error_message = message
        self.metrics.last_error_time = datetime.now()
