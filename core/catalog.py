"""
Catalog composition root.

Builds the database, stores, sync engine, services, search and indexer for
one catalog root from its configuration. Nothing here is module-global, so
several catalogs (and several sessions on the same root) can coexist in one
interpreter.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .embeddings.base import EmbeddingGenerator
from .indexer.media import MetadataExtractor, ThumbnailGenerator
from .indexer.service import IndexerService
from .models.config import CatalogConfig, GlobalSettings
from .search.engine import SearchService
from .services.assets import AssetService
from .services.tags import TagService
from .storage.assets import AssetIndexStore
from .storage.database import CatalogDatabase
from .storage.folders import FolderStore
from .storage.history import HistoryLog
from .storage.tags import TagStore
from .sync.engine import SyncEngine, TransportFactory

logger = logging.getLogger(__name__)


class Catalog:
    """
    One catalog root and everything that operates on it.

    Usage::

        async with Catalog(config) as catalog:
            results = await catalog.search.search_assets("forest")
    """

    def __init__(
        self,
        config: CatalogConfig,
        settings: Optional[GlobalSettings] = None,
        user_id: Optional[str] = None,
        embedder: Optional[EmbeddingGenerator] = None,
        thumbnailer: Optional[ThumbnailGenerator] = None,
        extractor: Optional[MetadataExtractor] = None,
        transport_factory: Optional[TransportFactory] = None,
        database_path: Optional[Path] = None
    ):
        self.config = config
        self.settings = settings or GlobalSettings()

        db_path = database_path or config.index.database_path or self.settings.default_database_path
        self.db = CatalogDatabase(db_path)

        self.assets = AssetIndexStore(self.db)
        self.tags = TagStore(self.db)
        self.history = HistoryLog(self.db)
        self.folders = FolderStore(self.db)

        self.sync = SyncEngine(config.sync, user_id=user_id, transport_factory=transport_factory)

        self.asset_service = AssetService(self.assets, self.history, self.sync)
        self.tag_service = TagService(self.tags, self.history, self.sync)
        self.search = SearchService(self.db, self.assets, embedder=embedder)

        self.indexer = IndexerService(
            self.assets,
            self.history,
            self.asset_service,
            self.tag_service,
            self.sync,
            index_config=config.index,
            watch_config=config.watch,
            extractor=extractor,
            thumbnailer=thumbnailer,
            embedder=embedder,
            app_dir_name=config.sync.app_dir_name
        )

        self._opened = False

    @property
    def root_path(self) -> Optional[str]:
        return self.indexer.root_path

    async def open(self, start_watcher: bool = True) -> None:
        """Index the configured root, start sync and (optionally) the media watcher"""
        await self.indexer.set_root_path(self.config.root_path, start_watcher=start_watcher)
        self.search.set_root_path(self.indexer.root_path)
        self.history.backfill_history()
        self._opened = True
        logger.info(f"Catalog '{self.config.name}' open at {self.indexer.root_path}")

    async def close(self) -> None:
        """Stop watchers and sync, then close the database"""
        try:
            await self.indexer.stop()
            await self.sync.stop()
        finally:
            self.db.close()
            self._opened = False
        logger.info(f"Catalog '{self.config.name}' closed")

    async def __aenter__(self) -> 'Catalog':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def get_status(self) -> Dict[str, Any]:
        """Indexer, sync and index health in one dictionary"""
        root = self.indexer.root_path
        return {
            "name": self.config.name,
            "root_path": root,
            "open": self._opened,
            "schema_version": self.db.schema_version,
            "indexer": self.indexer.get_stats().to_dict(),
            "sync": self.sync.get_status(),
            "assets": self.assets.count_assets(root) if root else 0,
            "index_problems": self.assets.check_index_parity(root) if root else [],
        }
