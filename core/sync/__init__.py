"""
Cross-process catalog synchronization.

Processes sharing a catalog root exchange immutable mutation events through
an append-only directory of JSON files. Each process replays the log at
startup, watches it for new files, and applies every foreign event exactly
once.

Key Components:
- SyncEvent / SyncEventType: the mutation records and their wire form
- EventLogTransport / DirectoryEventLog: the shared append-only log
- SyncEngine: publish, apply, replay and compaction
- MediaRootWatcher: debounced observation of media files under the root
"""

from .events import SyncEvent, SyncEventType, new_session_user_id, parse_events, serialize_events, sort_events
from .transport import EventLogTransport, DirectoryEventLog
from .engine import SyncEngine, SyncEngineMetrics
from .watcher import MediaRootWatcher, FileChangeKind

__all__ = [
    "SyncEvent",
    "SyncEventType",
    "new_session_user_id",
    "parse_events",
    "serialize_events",
    "sort_events",
    "EventLogTransport",
    "DirectoryEventLog",
    "SyncEngine",
    "SyncEngineMetrics",
    "MediaRootWatcher",
    "FileChangeKind",
]
