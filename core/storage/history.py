"""
Audit history log.

Append-only record of field-level changes to assets and the aggregate
activity view built on it. History rows reference assets by id only and are
kept after the asset is gone.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Union

from ..models.assets import now_ms
from ..models.history import ActivityStats, HistoryAction, HistoryEvent, IngressPoint
from .database import CatalogDatabase

logger = logging.getLogger(__name__)


INGRESS_WINDOW_DAYS = 30
DAY_MS = 24 * 60 * 60 * 1000


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _row_to_event(row: sqlite3.Row) -> HistoryEvent:
    return HistoryEvent(
        id=row["id"],
        asset_id=row["asset_id"],
        action=HistoryAction(row["action"]),
        field=row["field"],
        old_value=row["old_value"],
        new_value=row["new_value"],
        timestamp=row["timestamp"],
        user_id=row["user_id"],
    )


class HistoryLog:
    """Writes and queries ``asset_history``"""

    def __init__(self, db: CatalogDatabase):
        self.db = db

    def log_event(
        self,
        asset_id: str,
        action: Union[HistoryAction, str],
        field: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        user_id: Optional[str] = None
    ) -> bool:
        """
        Append one audit row. Failures are logged, never raised.

        Returns:
            True if the row was written
        """
        try:
            action = HistoryAction(action)
            with self.db.transaction() as conn:
                conn.execute(
                    """
                    INSERT INTO asset_history (asset_id, action, field, old_value, new_value, timestamp, user_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        asset_id,
                        action.value,
                        field,
                        _stringify(old_value),
                        _stringify(new_value),
                        now_ms(),
                        user_id,
                    )
                )
            return True
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Failed to log {action} for asset {asset_id}: {e}")
            return False

    def get_asset_history(self, asset_id: str) -> List[HistoryEvent]:
        """History of one asset, newest first"""
        rows = self.db.fetchall(
            "SELECT * FROM asset_history WHERE asset_id = ? ORDER BY timestamp DESC, id DESC",
            (asset_id,)
        )
        return [_row_to_event(row) for row in rows]

    def get_recent_activity(self, limit: int = 50) -> List[HistoryEvent]:
        rows = self.db.fetchall(
            "SELECT * FROM asset_history ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,)
        )
        return [_row_to_event(row) for row in rows]

    def count_events(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM asset_history")

    def get_stats(self) -> ActivityStats:
        """Catalog totals, recent activity and daily ingress for the last 30 days"""
        live = "WHERE deleted_at IS NULL"

        total_assets = self.db.scalar(f"SELECT COUNT(*) FROM assets {live}")

        by_status = {
            row["status"]: row["count"]
            for row in self.db.fetchall(f"SELECT status, COUNT(*) AS count FROM assets {live} GROUP BY status")
        }
        by_type = {
            row["type"]: row["count"]
            for row in self.db.fetchall(f"SELECT type, COUNT(*) AS count FROM assets {live} GROUP BY type")
        }

        by_author: Dict[str, int] = {}
        for row in self.db.fetchall(
            f"SELECT json_extract(metadata, '$.authorId') AS author, COUNT(*) AS count "
            f"FROM assets {live} GROUP BY author"
        ):
            author = row["author"] or "Unknown"
            by_author[author] = by_author.get(author, 0) + row["count"]

        since = now_ms() - INGRESS_WINDOW_DAYS * DAY_MS
        ingress = [
            IngressPoint(date=row["date"], count=row["count"])
            for row in self.db.fetchall(
                """
                SELECT strftime('%Y-%m-%d', timestamp / 1000, 'unixepoch') AS date, COUNT(*) AS count
                FROM asset_history
                WHERE action = 'create' AND timestamp > ?
                GROUP BY date
                ORDER BY date ASC
                """,
                (since,)
            )
        ]

        return ActivityStats(
            total_assets=total_assets,
            assets_by_status=by_status,
            assets_by_type=by_type,
            assets_by_author=by_author,
            recent_activity=self.get_recent_activity(),
            ingress_over_time=ingress,
        )

    def backfill_history(self) -> int:
        """
        Seed ``create`` rows from existing assets when the log is empty.

        Returns:
            Number of rows written
        """
        try:
            with self.db.transaction() as conn:
                if conn.execute("SELECT COUNT(*) FROM asset_history").fetchone()[0] > 0:
                    return 0
                cursor = conn.execute(
                    """
                    INSERT INTO asset_history (asset_id, action, timestamp)
                    SELECT id, 'create', created_at FROM assets WHERE created_at IS NOT NULL
                    """
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to backfill asset history: {e}")
            return 0

        if cursor.rowcount:
            logger.info(f"Backfilled {cursor.rowcount} creation events")
        return cursor.rowcount
