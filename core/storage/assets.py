"""
Asset index store.

Canonical table of assets plus the full-text index kept beside it. The
full-text rows are maintained here, inside the same transaction as every
change to the asset row they mirror; only deletes are cleaned up by a
trigger.
"""

import json
import logging
import os
import sqlite3
from collections import defaultdict
from typing import Any, Dict, List, Optional, Set, Tuple

from ..models.assets import Asset, AssetMetadata, MediaType, Tag, now_ms
from .database import CatalogDatabase
from .utils import is_within_root

logger = logging.getLogger(__name__)


_ASSET_COLUMNS = (
    "id, root_path, path, type, status, created_at, updated_at, "
    "metadata, thumbnail_path, deleted_at"
)

# Metadata keys exposed as distinct filter options
METADATA_OPTION_KEYS = {
    "authors": "authorId",
    "projects": "project",
    "scenes": "scene",
    "shots": "shot",
    "models": "model",
}


def row_to_asset(row: sqlite3.Row, tags: Optional[List[Tag]] = None) -> Asset:
    """Build an ``Asset`` from an ``assets`` row"""
    try:
        media_type = MediaType(row["type"])
    except ValueError:
        media_type = MediaType.OTHER

    try:
        metadata = AssetMetadata.from_json(row["metadata"])
    except (ValueError, TypeError) as e:
        logger.warning(f"Unreadable metadata for asset {row['id']}: {e}")
        metadata = AssetMetadata()

    return Asset(
        id=row["id"],
        root_path=row["root_path"],
        path=row["path"],
        type=media_type,
        status=row["status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        metadata=metadata,
        thumbnail_path=row["thumbnail_path"],
        deleted_at=row["deleted_at"],
        tags=tags or [],
    )


class AssetIndexStore:
    """
    Reads and writes assets and their full-text index rows.

    Invariant between operations: every row in ``assets`` has exactly one
    row in ``assets_fts`` with the same rowid, whose content is the asset
    path and its metadata without the embedding vector.
    """

    def __init__(self, db: CatalogDatabase):
        self.db = db

    # Reads

    def get_assets(self, root_path: str, include_deleted: bool = False) -> List[Asset]:
        """
        Assets of a root, newest first, each with its tags.

        Tags for the whole root are fetched in one query.
        """
        deleted_clause = "" if include_deleted else " AND deleted_at IS NULL"
        rows = self.db.fetchall(
            f"SELECT {_ASSET_COLUMNS} FROM assets WHERE root_path = ?{deleted_clause} "
            f"ORDER BY created_at DESC, id",
            (root_path,)
        )
        if not rows:
            return []

        tags_by_asset = self.tags_by_asset(root_path)
        return [row_to_asset(row, tags_by_asset.get(row["id"], [])) for row in rows]

    def get_asset(self, asset_id: str, include_deleted: bool = False) -> Optional[Asset]:
        row = self.db.fetchone(f"SELECT {_ASSET_COLUMNS} FROM assets WHERE id = ?", (asset_id,))
        if row is None:
            return None
        if row["deleted_at"] is not None and not include_deleted:
            return None
        return row_to_asset(row, self._tags_for_asset(asset_id))

    def get_asset_by_path(self, root_path: str, path: str) -> Optional[Asset]:
        """Asset at a root-relative path, soft-deleted rows included"""
        row = self.db.fetchone(
            f"SELECT {_ASSET_COLUMNS} FROM assets WHERE root_path = ? AND path = ?",
            (root_path, path.replace('\\', '/'))
        )
        if row is None:
            return None
        return row_to_asset(row, self._tags_for_asset(row["id"]))

    def tags_by_asset(self, root_path: str) -> Dict[str, List[Tag]]:
        rows = self.db.fetchall(
            """
            SELECT at.asset_id, t.id, t.name, t.color
            FROM asset_tags at
            JOIN tags t ON t.id = at.tag_id
            JOIN assets a ON a.id = at.asset_id
            WHERE a.root_path = ?
            ORDER BY t.name
            """,
            (root_path,)
        )
        tags_by_asset: Dict[str, List[Tag]] = defaultdict(list)
        for row in rows:
            tags_by_asset[row["asset_id"]].append(Tag(id=row["id"], name=row["name"], color=row["color"]))
        return tags_by_asset

    def _tags_for_asset(self, asset_id: str) -> List[Tag]:
        rows = self.db.fetchall(
            """
            SELECT t.id, t.name, t.color
            FROM tags t
            JOIN asset_tags at ON at.tag_id = t.id
            WHERE at.asset_id = ?
            ORDER BY t.name
            """,
            (asset_id,)
        )
        return [Tag(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    # Full-text index maintenance

    def _reindex(self, conn: sqlite3.Connection, asset_id: str) -> None:
        """Replace the full-text row of one asset from its current row"""
        row = conn.execute(
            "SELECT rowid, id, path, metadata FROM assets WHERE id = ?", (asset_id,)
        ).fetchone()
        if row is None:
            return

        try:
            index_text = AssetMetadata.from_json(row["metadata"]).index_text()
        except (ValueError, TypeError):
            index_text = ""

        conn.execute("DELETE FROM assets_fts WHERE rowid = ?", (row["rowid"],))
        conn.execute(
            "INSERT INTO assets_fts(rowid, id, path, metadata) VALUES (?, ?, ?, ?)",
            (row["rowid"], row["id"], row["path"], index_text)
        )

    # Writes

    def upsert_asset(self, asset: Asset) -> None:
        """
        Insert or fully update an asset and its full-text row atomically.

        A new id landing on a path already held by another row takes that
        row over: the row keeps its rowid and tags, and adopts the new id.
        """
        params = {
            "id": asset.id,
            "root_path": asset.root_path,
            "path": asset.path,
            "type": asset.type.value,
            "status": asset.status,
            "created_at": asset.created_at,
            "updated_at": asset.updated_at,
            "metadata": asset.metadata.to_json(),
            "thumbnail_path": asset.thumbnail_path,
            "deleted_at": asset.deleted_at,
        }

        with self.db.transaction() as conn:
            exists = conn.execute("SELECT 1 FROM assets WHERE id = ?", (asset.id,)).fetchone()
            if exists:
                self._update_by_id(conn, params)
            else:
                try:
                    conn.execute(
                        f"INSERT INTO assets ({_ASSET_COLUMNS}) VALUES "
                        "(:id, :root_path, :path, :type, :status, :created_at, :updated_at, "
                        ":metadata, :thumbnail_path, :deleted_at)",
                        params
                    )
                except sqlite3.IntegrityError as e:
                    if "UNIQUE constraint failed" not in str(e):
                        raise
                    logger.debug(f"Path collision for {asset.path}, updating existing row to id {asset.id}")
                    conn.execute(
                        """
                        UPDATE assets
                        SET id = :id, type = :type, status = :status, updated_at = :updated_at,
                            metadata = :metadata, thumbnail_path = :thumbnail_path, deleted_at = :deleted_at
                        WHERE root_path = :root_path AND path = :path
                        """,
                        params
                    )

            self._reindex(conn, asset.id)

    def _update_by_id(self, conn: sqlite3.Connection, params: Dict[str, Any]) -> None:
        sql = """
            UPDATE assets
            SET root_path = :root_path, path = :path, type = :type, status = :status,
                updated_at = :updated_at, metadata = :metadata,
                thumbnail_path = :thumbnail_path, deleted_at = :deleted_at
            WHERE id = :id
        """
        try:
            conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" not in str(e):
                raise
            # Another row still claims the destination path; the file there is this asset now
            logger.warning(f"Replacing stale asset at {params['root_path']}::{params['path']}")
            conn.execute(
                "DELETE FROM assets WHERE root_path = :root_path AND path = :path AND id != :id",
                params
            )
            conn.execute(sql, params)

    def update_thumbnail(self, asset_id: str, thumbnail_path: Optional[str]) -> None:
        """Set the thumbnail path; not part of the full-text content"""
        with self.db.transaction() as conn:
            conn.execute("UPDATE assets SET thumbnail_path = ? WHERE id = ?", (thumbnail_path, asset_id))

    def update_status(self, asset_id: str, status: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE assets SET status = ?, updated_at = ? WHERE id = ?",
                (status, now_ms(), asset_id)
            )
            if cursor.rowcount == 0:
                return False
            self._reindex(conn, asset_id)
        return True

    def update_metadata(self, asset_id: str, metadata: AssetMetadata) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE assets SET metadata = ?, updated_at = ? WHERE id = ?",
                (metadata.to_json(), now_ms(), asset_id)
            )
            if cursor.rowcount == 0:
                return False
            self._reindex(conn, asset_id)
        return True

    def rehome_assets(self, new_root_path: str) -> int:
        """
        Re-attach assets to a new root that contains their files.

        Every asset whose absolute path (its root joined with its relative
        path) is the new root or lies under it is moved to the new root with a
        recomputed relative path. Where another row already sits at the
        target path, that row is removed first. All moves happen in one
        transaction; on failure nothing changes and 0 is returned.

        Returns:
            Number of assets moved
        """
        rows = self.db.fetchall("SELECT id, root_path, path FROM assets")

        updates: List[Tuple[str, str]] = []
        for row in rows:
            absolute_path = os.path.join(row["root_path"], *row["path"].split('/'))
            if not is_within_root(absolute_path, new_root_path):
                continue
            new_path = os.path.relpath(absolute_path, new_root_path).replace(os.sep, '/')
            if row["root_path"] != new_root_path or row["path"] != new_path:
                updates.append((row["id"], new_path))

        if not updates:
            return 0

        moved: Set[str] = set()
        try:
            with self.db.transaction() as conn:
                for asset_id, new_path in updates:
                    existing = conn.execute(
                        "SELECT id FROM assets WHERE root_path = ? AND path = ?",
                        (new_root_path, new_path)
                    ).fetchone()
                    if existing is not None and existing["id"] != asset_id:
                        logger.debug(f"Rehome of {asset_id} shadows {existing['id']} at {new_path}, removing it")
                        conn.execute("DELETE FROM assets WHERE id = ?", (existing["id"],))
                        moved.discard(existing["id"])

                    cursor = conn.execute(
                        "UPDATE assets SET root_path = ?, path = ? WHERE id = ?",
                        (new_root_path, new_path, asset_id)
                    )
                    if cursor.rowcount:
                        moved.add(asset_id)
                        self._reindex(conn, asset_id)
        except sqlite3.Error as e:
            logger.error(f"Failed to re-home assets to {new_root_path}: {e}")
            return 0

        logger.info(f"Re-homed {len(moved)} assets to {new_root_path}")
        return len(moved)

    def delete_asset(self, asset_id: str) -> bool:
        """
        Soft delete: the row and its full-text row stay, marked with
        ``deleted_at``.
        """
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE assets SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now_ms(), asset_id)
            )
        return cursor.rowcount > 0

    def restore_asset(self, asset_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE assets SET deleted_at = NULL WHERE id = ? AND deleted_at IS NOT NULL",
                (asset_id,)
            )
        return cursor.rowcount > 0

    def purge_asset(self, asset_id: str) -> bool:
        """Hard delete; tag links and the full-text row go with it"""
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM assets WHERE id = ?", (asset_id,))
        return cursor.rowcount > 0

    # Inspection

    def count_assets(self, root_path: Optional[str] = None) -> int:
        if root_path is None:
            return self.db.scalar("SELECT COUNT(*) FROM assets")
        return self.db.scalar("SELECT COUNT(*) FROM assets WHERE root_path = ?", (root_path,))

    def count_index_rows(self, root_path: Optional[str] = None) -> int:
        if root_path is None:
            return self.db.scalar("SELECT COUNT(*) FROM assets_fts")
        return self.db.scalar(
            "SELECT COUNT(*) FROM assets_fts f JOIN assets a ON a.rowid = f.rowid WHERE a.root_path = ?",
            (root_path,)
        )

    def check_index_parity(self, root_path: Optional[str] = None) -> List[str]:
        """
        Compare the full-text index with the asset table.

        Returns:
            Human-readable mismatches; empty when the index is in parity
        """
        problems: List[str] = []

        asset_count = self.count_assets(root_path)
        index_count = self.count_index_rows(root_path)
        if asset_count != index_count:
            problems.append(f"row count mismatch: {asset_count} assets, {index_count} index rows")

        where, params = ("", ()) if root_path is None else (" WHERE a.root_path = ?", (root_path,))
        rows = self.db.fetchall(
            f"""
            SELECT a.id, a.path, a.metadata, f.id AS fts_id, f.path AS fts_path, f.metadata AS fts_metadata
            FROM assets a LEFT JOIN assets_fts f ON f.rowid = a.rowid{where}
            """,
            params
        )
        for row in rows:
            if row["fts_id"] is None:
                problems.append(f"{row['id']}: missing index row")
                continue
            if row["fts_id"] != row["id"]:
                problems.append(f"{row['id']}: index row has id {row['fts_id']}")
            if row["fts_path"] != row["path"]:
                problems.append(f"{row['id']}: index path {row['fts_path']!r} != {row['path']!r}")
            expected = AssetMetadata.from_json(row["metadata"]).index_text()
            if row["fts_metadata"] != expected:
                problems.append(f"{row['id']}: index metadata is stale")

        orphans = self.db.scalar(
            "SELECT COUNT(*) FROM assets_fts WHERE rowid NOT IN (SELECT rowid FROM assets)"
        )
        if orphans:
            problems.append(f"{orphans} orphaned index rows")

        return problems

    def get_metadata_options(self) -> Dict[str, List[str]]:
        """Distinct non-empty values of the filterable metadata fields"""
        rows = self.db.fetchall("SELECT metadata FROM assets WHERE deleted_at IS NULL")
        options: Dict[str, set] = {name: set() for name in METADATA_OPTION_KEYS}
        for row in rows:
            try:
                data = json.loads(row["metadata"] or "{}")
            except ValueError:
                continue
            if not isinstance(data, dict):
                continue
            for name, key in METADATA_OPTION_KEYS.items():
                value = data.get(key)
                if isinstance(value, str) and value.strip():
                    options[name].add(value)
        return {name: sorted(values) for name, values in options.items()}
