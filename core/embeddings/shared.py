"""
Shared embedding files.

Embeddings are expensive to compute, so the first process to compute an
asset's vector writes it to ``<root>/.media-catalog/embeddings/<id>.json``
where every other process sharing the root can reuse it.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os

from .base import DEFAULT_DIMENSIONS, is_valid_embedding

logger = logging.getLogger(__name__)


class SharedEmbeddingStore:
    """Reads and writes per-asset vector files in the shared embeddings directory"""

    def __init__(self, embeddings_dir: Path, dimensions: int = DEFAULT_DIMENSIONS):
        self.embeddings_dir = Path(embeddings_dir)
        self.dimensions = dimensions

    def path_for(self, asset_id: str) -> Path:
        return self.embeddings_dir / f"{asset_id}.json"

    def ensure_dir(self) -> bool:
        try:
            self.embeddings_dir.mkdir(parents=True, exist_ok=True)
            return True
        except OSError as e:
            logger.error(f"Failed to create embeddings directory {self.embeddings_dir}: {e}")
            return False

    async def load(self, asset_id: str) -> Optional[List[float]]:
        """Shared vector for an asset, or None if absent or invalid"""
        path = self.path_for(asset_id)
        try:
            async with aiofiles.open(path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(f"Ignoring unreadable shared embedding {path.name}: {e}")
            return None

        if not is_valid_embedding(data, self.dimensions):
            logger.debug(f"Ignoring shared embedding {path.name} with unexpected shape")
            return None
        return [float(v) for v in data]

    async def save(self, asset_id: str, embedding: List[float]) -> bool:
        path = self.path_for(asset_id)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            async with aiofiles.open(tmp_path, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(embedding))
            await aiofiles.os.replace(tmp_path, path)
            logger.debug(f"Saved shared embedding {path.name}")
            return True
        except OSError as e:
            logger.error(f"Failed to save shared embedding for {asset_id}: {e}")
            return False
