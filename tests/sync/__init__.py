"""
Test suite for cross-process catalog synchronization.

Covers the event model and its file format, the directory-backed event log
(atomic appends, replay, compaction), the sync engine (exactly-once
application, own-event suppression, ordering) and the media-root watcher.
"""
