"""
SQLite connection and schema management for the catalog.

One connection per process, shared by every store. Each mutation runs inside
``transaction()``, which holds a re-entrant lock for the whole transaction
so no reader on the same connection observes a half-applied change.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)


class SchemaMigrationError(Exception):
    """Raised when the database schema cannot be created or upgraded"""
    pass


def _migrate_v1(conn: sqlite3.Connection) -> None:
    """Assets, full-text index, tags and audit history"""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS assets (
            id TEXT PRIMARY KEY,
            root_path TEXT NOT NULL,
            path TEXT NOT NULL,
            type TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'unsorted',
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL,
            metadata TEXT,
            thumbnail_path TEXT,
            deleted_at INTEGER,
            UNIQUE (root_path, path)
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_assets_root_created ON assets(root_path, created_at)")

    # Content is maintained by the stores; only deletes are handled here so
    # cascading removals never leave orphaned index rows.
    conn.execute("""
        CREATE VIRTUAL TABLE IF NOT EXISTS assets_fts USING fts5(
            id UNINDEXED,
            path,
            metadata
        )
    """)
    conn.execute("DROP TRIGGER IF EXISTS assets_fts_delete")
    conn.execute("""
        CREATE TRIGGER assets_fts_delete AFTER DELETE ON assets BEGIN
            DELETE FROM assets_fts WHERE rowid = old.rowid;
        END
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            color TEXT
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS asset_tags (
            asset_id TEXT NOT NULL REFERENCES assets(id) ON DELETE CASCADE ON UPDATE CASCADE,
            tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE ON UPDATE CASCADE,
            PRIMARY KEY (asset_id, tag_id)
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_asset_tags_tag ON asset_tags(tag_id)")

    # No foreign key: history outlives the asset rows it describes
    conn.execute("""
        CREATE TABLE IF NOT EXISTS asset_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            asset_id TEXT NOT NULL,
            action TEXT NOT NULL,
            field TEXT,
            old_value TEXT,
            new_value TEXT,
            timestamp INTEGER NOT NULL,
            user_id TEXT
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_asset ON asset_history(asset_id, timestamp)")


def _migrate_v2(conn: sqlite3.Connection) -> None:
    """Folder colors and activity indexes"""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS folders (
            path TEXT PRIMARY KEY,
            color TEXT
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_timestamp ON asset_history(timestamp)")


def _migrate_v3(conn: sqlite3.Connection) -> None:
    """Aliases for tag ids created elsewhere under a name already taken here"""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS tag_aliases (
            alias_id TEXT PRIMARY KEY,
            tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE ON UPDATE CASCADE
        )
    """)


_MIGRATIONS: Dict[int, Callable[[sqlite3.Connection], None]] = {
    1: _migrate_v1,
    2: _migrate_v2,
    3: _migrate_v3,
}

SCHEMA_VERSION = max(_MIGRATIONS)


def is_fts5_available(conn: sqlite3.Connection) -> bool:
    """Check whether the SQLite build includes FTS5"""
    rows = conn.execute("PRAGMA compile_options").fetchall()
    return any("FTS5" in row[0] for row in rows)


class CatalogDatabase:
    """
    Shared SQLite connection with schema migrations and serialized
    transactions.

    The connection runs in autocommit mode; ``transaction()`` issues
    ``BEGIN IMMEDIATE``/``COMMIT``/``ROLLBACK`` explicitly and joins an
    enclosing transaction when nested.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout_s: float = 30.0):
        """
        Open (and create or upgrade) the catalog database.

        Args:
            db_path: Database file, or ":memory:"
            timeout_s: SQLite busy timeout

        Raises:
            SchemaMigrationError: If the schema cannot be created or upgraded
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._depth = 0

        try:
            self._conn = sqlite3.connect(
                self.db_path,
                timeout=timeout_s,
                check_same_thread=False,
                isolation_level=None
            )
        except sqlite3.Error as e:
            raise SchemaMigrationError(f"Cannot open database {self.db_path}: {e}") from e

        self._conn.row_factory = sqlite3.Row

        try:
            self._configure()
            self._run_migrations()
        except SchemaMigrationError:
            self._conn.close()
            raise
        except sqlite3.Error as e:
            self._conn.close()
            raise SchemaMigrationError(f"Failed to initialize database {self.db_path}: {e}") from e

        logger.info(f"Catalog database ready at {self.db_path} (schema v{self.schema_version})")

    def _configure(self) -> None:
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA temp_store=MEMORY")
        self._conn.execute("PRAGMA foreign_keys=ON")

    def _run_migrations(self) -> None:
        current = self.schema_version
        if current >= SCHEMA_VERSION:
            return

        if not is_fts5_available(self._conn):
            raise SchemaMigrationError("SQLite build lacks FTS5, which the asset index requires")

        logger.info(f"Migrating catalog database from v{current} to v{SCHEMA_VERSION}")
        for version in range(current + 1, SCHEMA_VERSION + 1):
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                _MIGRATIONS[version](self._conn)
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute("COMMIT")
                logger.debug(f"Applied schema migration v{version}")
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                logger.error(f"Schema migration v{version} failed: {e}")
                raise SchemaMigrationError(f"Schema migration v{version} failed: {e}") from e

    @property
    def schema_version(self) -> int:
        return self._conn.execute("PRAGMA user_version").fetchone()[0]

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block atomically.

        Nested uses join the outermost transaction; only the outermost one
        commits, and an exception escaping any level rolls everything back.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except BaseException:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.fetchone(sql, params)
        return row[0] if row is not None else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.debug(f"Closed catalog database {self.db_path}")

    def __enter__(self) -> 'CatalogDatabase':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
