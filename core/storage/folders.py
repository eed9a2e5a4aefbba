"""
Folder listing and folder colors.
"""

import logging
import posixpath
from typing import Dict, List, Optional

from .database import CatalogDatabase

logger = logging.getLogger(__name__)


class FolderStore:
    """Folder colors keyed by root-relative path"""

    def __init__(self, db: CatalogDatabase):
        self.db = db

    def get_folder_colors(self) -> Dict[str, str]:
        rows = self.db.fetchall("SELECT path, color FROM folders WHERE color IS NOT NULL")
        return {row["path"]: row["color"] for row in rows}

    def set_folder_color(self, folder_path: str, color: Optional[str]) -> None:
        """Set a folder's color; ``None`` clears it"""
        folder_path = folder_path.replace('\\', '/').strip('/')
        with self.db.transaction() as conn:
            if color is None:
                conn.execute("UPDATE folders SET color = NULL WHERE path = ?", (folder_path,))
            else:
                conn.execute(
                    """
                    INSERT INTO folders (path, color) VALUES (?, ?)
                    ON CONFLICT(path) DO UPDATE SET color = excluded.color
                    """,
                    (folder_path, color)
                )

    def get_folders(self, root_path: str) -> List[str]:
        """Every directory that holds an indexed asset, ancestors included, sorted"""
        rows = self.db.fetchall(
            "SELECT DISTINCT path FROM assets WHERE root_path = ? AND deleted_at IS NULL",
            (root_path,)
        )
        folders = set()
        for row in rows:
            current = posixpath.dirname(row["path"])
            while current not in ('', '.', '/'):
                folders.add(current)
                current = posixpath.dirname(current)
        return sorted(folders)
