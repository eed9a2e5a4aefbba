"""
Tag and asset-tag relationship store.
"""

import logging
import sqlite3
import uuid
from typing import List, Optional, Tuple

from ..models.assets import Tag
from .database import CatalogDatabase

logger = logging.getLogger(__name__)


class TagStore:
    """SQL access for tags and the asset-tag join table"""

    def __init__(self, db: CatalogDatabase):
        self.db = db

    def get_tags(self) -> List[Tag]:
        rows = self.db.fetchall("SELECT id, name, color FROM tags ORDER BY name ASC")
        return [Tag(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def get_tag(self, tag_id: str) -> Optional[Tag]:
        row = self.db.fetchone("SELECT id, name, color FROM tags WHERE id = ?", (tag_id,))
        return Tag(id=row["id"], name=row["name"], color=row["color"]) if row else None

    def get_tag_by_name(self, name: str) -> Optional[Tag]:
        row = self.db.fetchone("SELECT id, name, color FROM tags WHERE name = ?", (name.strip(),))
        return Tag(id=row["id"], name=row["name"], color=row["color"]) if row else None

    def create_tag(self, name: str, color: Optional[str] = None, tag_id: Optional[str] = None) -> Tuple[Tag, bool]:
        """
        Create a tag, or return the one that already holds the name or id.

        Returns:
            (tag, created)
        """
        tag = Tag(id=tag_id or str(uuid.uuid4()), name=name, color=color)
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    "INSERT INTO tags (id, name, color) VALUES (?, ?, ?)",
                    (tag.id, tag.name, tag.color)
                )
            return tag, True
        except sqlite3.IntegrityError as e:
            if "UNIQUE constraint failed" not in str(e):
                raise
            existing = self.get_tag_by_name(tag.name) or self.get_tag(tag.id)
            if existing is None:
                raise
            logger.debug(f"Tag {tag.name!r} already exists as {existing.id}")
            return existing, False

    def add_alias(self, alias_id: str, tag_id: str) -> None:
        """Record that ``alias_id`` names the local tag ``tag_id``"""
        if alias_id == tag_id:
            return
        with self.db.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO tag_aliases (alias_id, tag_id) VALUES (?, ?)",
                (alias_id, tag_id)
            )
        logger.debug(f"Tag id {alias_id} resolves to {tag_id}")

    def resolve_tag_id(self, tag_id: str) -> str:
        """Local id for a tag id, following an alias when one exists"""
        aliased = self.db.scalar("SELECT tag_id FROM tag_aliases WHERE alias_id = ?", (tag_id,))
        return aliased or tag_id

    def delete_tag(self, tag_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (tag_id,))
        return cursor.rowcount > 0

    def add_tag_to_asset(self, asset_id: str, tag_id: str) -> bool:
        """
        Link a tag to an asset; linking twice is a no-op.

        Returns:
            True if a new link was created
        """
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO asset_tags (asset_id, tag_id) VALUES (?, ?)",
                    (asset_id, tag_id)
                )
        except sqlite3.IntegrityError as e:
            if "FOREIGN KEY constraint failed" not in str(e):
                raise
            logger.debug(f"Cannot tag {asset_id} with {tag_id}: asset or tag is unknown")
            return False
        return cursor.rowcount > 0

    def remove_tag_from_asset(self, asset_id: str, tag_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM asset_tags WHERE asset_id = ? AND tag_id = ?",
                (asset_id, tag_id)
            )
        return cursor.rowcount > 0

    def get_asset_tags(self, asset_id: str) -> List[Tag]:
        rows = self.db.fetchall(
            """
            SELECT t.id, t.name, t.color FROM tags t
            JOIN asset_tags at ON at.tag_id = t.id
            WHERE at.asset_id = ?
            ORDER BY t.name
            """,
            (asset_id,)
        )
        return [Tag(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def count_asset_tags(self) -> int:
        return self.db.scalar("SELECT COUNT(*) FROM asset_tags")
