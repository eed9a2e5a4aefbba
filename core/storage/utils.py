"""
Storage utilities for consistent identifiers and paths.

Provides the canonical asset id derivation used by the indexer and the
path helpers shared by the stores.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


ASSET_ID_LENGTH = 32


def generate_asset_id(file_path: Path, root_path: str, hash_bytes: int = 16 * 1024) -> str:
    """
    Derive a stable asset id from file content.

    The id is the SHA256 of the first ``hash_bytes`` of the file, its size and
    the catalog root, truncated to 32 hex characters. Identical content under
    the same root maps to the same id on every device, so a renamed file keeps
    its id.

    Falls back to a path-derived id when the file cannot be read.

    Args:
        file_path: Absolute path of the media file
        root_path: Catalog root the file belongs to
        hash_bytes: Number of leading bytes to hash

    Returns:
        32-character hex id
    """
    try:
        size = os.path.getsize(file_path)
        with open(file_path, 'rb') as f:
            head = f.read(hash_bytes)
        digest = hashlib.sha256()
        digest.update(head)
        digest.update(str(size).encode('utf-8'))
        digest.update(root_path.encode('utf-8'))
        return digest.hexdigest()[:ASSET_ID_LENGTH]
    except OSError as e:
        logger.warning(f"Falling back to path-based id for {file_path}: {e}")
        return path_based_asset_id(str(file_path), root_path)


def path_based_asset_id(file_path: str, root_path: str) -> str:
    """Asset id derived from the path only"""
    return hashlib.sha256(f"{file_path}{root_path}".encode('utf-8')).hexdigest()[:ASSET_ID_LENGTH]


def to_relative_path(full_path: Path, root_path: Path) -> Optional[str]:
    """
    Root-relative path with forward slashes, or None if outside the root.
    """
    try:
        relative = Path(full_path).relative_to(Path(root_path))
    except ValueError:
        return None
    return relative.as_posix()


def is_within_root(absolute_path: str, root_path: str) -> bool:
    """True when ``absolute_path`` equals ``root_path`` or lies under it"""
    absolute = os.path.normpath(absolute_path)
    root = os.path.normpath(root_path)
    if absolute == root:
        return True
    return absolute.startswith(root.rstrip(os.sep) + os.sep)
