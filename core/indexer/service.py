"""
Indexer orchestration.

Keeps the asset index of one catalog root in step with the filesystem
(initial scan, re-homing, watcher events) and with other processes (sync
events applied through the services), and runs the thumbnail and embedding
passes.
"""

import logging
import os
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..embeddings.base import EmbeddingGenerator, is_valid_embedding
from ..embeddings.shared import SharedEmbeddingStore
from ..models.assets import Asset, AssetMetadata, DEFAULT_STATUS, MediaType, now_ms
from ..models.config import APP_DIR_NAME, IndexConfig, WatchConfig
from ..models.history import HistoryAction
from ..services.assets import AssetService
from ..services.tags import TagService
from ..storage.assets import AssetIndexStore
from ..storage.history import HistoryLog
from ..storage.utils import generate_asset_id, path_based_asset_id, to_relative_path
from ..sync.engine import SyncEngine
from ..sync.events import SyncEvent, SyncEventType
from ..sync.watcher import MediaRootWatcher
from .media import MetadataExtractor, StatMetadataExtractor, ThumbnailGenerator
from .scanner import MediaScanner

logger = logging.getLogger(__name__)


class IndexerError(Exception):
    """Raised when an explicit indexing request cannot be fulfilled"""
    pass


class IndexerStatus:
    """Indexer status constants"""
    IDLE = "idle"
    SCANNING = "scanning"
    SYNCING = "syncing"
    INDEXING = "indexing"


MAX_RECORDED_ERRORS = 100


@dataclass
class SyncStats:
    """Progress counters for the current root"""
    total_files: int = 0
    processed_files: int = 0
    total_folders: int = 0
    skipped_files: int = 0
    images: int = 0
    videos: int = 0
    other: int = 0
    thumbnails_generated: int = 0
    thumbnails_failed: int = 0
    embeddings_generated: int = 0
    status: str = IndexerStatus.IDLE
    last_sync: int = field(default_factory=now_ms)
    current_file: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def record_error(self, file: str, error: str) -> None:
        self.errors.append({"file": file, "error": error, "timestamp": now_ms()})
        del self.errors[:-MAX_RECORDED_ERRORS]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IndexerService:
    """
    Indexes a catalog root and applies sync events.

    The service subscribes to the sync engine on construction, so events
    replayed while the engine initializes are applied too.
    """

    def __init__(
        self,
        store: AssetIndexStore,
        history: HistoryLog,
        asset_service: AssetService,
        tag_service: TagService,
        sync: SyncEngine,
        index_config: Optional[IndexConfig] = None,
        watch_config: Optional[WatchConfig] = None,
        extractor: Optional[MetadataExtractor] = None,
        thumbnailer: Optional[ThumbnailGenerator] = None,
        embedder: Optional[EmbeddingGenerator] = None,
        app_dir_name: str = APP_DIR_NAME
    ):
        self.store = store
        self.history = history
        self.asset_service = asset_service
        self.tag_service = tag_service
        self.sync = sync
        self.index_config = index_config or IndexConfig()
        self.watch_config = watch_config or WatchConfig()
        self.extractor = extractor or StatMetadataExtractor()
        self.thumbnailer = thumbnailer
        self.embedder = embedder
        self.app_dir_name = app_dir_name

        self.scanner = MediaScanner(
            self.index_config.image_extensions,
            self.index_config.video_extensions,
            skip_dotfiles=self.index_config.skip_dotfiles
        )
        self.watcher: Optional[MediaRootWatcher] = None

        self.root_path: Optional[str] = None
        self.stats = SyncStats()

        self._unsubscribe = self.sync.subscribe(self.apply_sync_event)

    @property
    def app_dir(self) -> Optional[Path]:
        return Path(self.root_path) / self.app_dir_name if self.root_path else None

    @property
    def thumbnail_dir(self) -> Optional[Path]:
        return self.app_dir / "thumbnails" if self.root_path else None

    @property
    def embeddings_dir(self) -> Optional[Path]:
        return self.app_dir / "embeddings" if self.root_path else None

    def get_stats(self) -> SyncStats:
        return SyncStats(**{**self.stats.to_dict(), "errors": list(self.stats.errors)})

    # Root lifecycle

    async def set_root_path(self, root_path: Path, start_watcher: bool = True) -> bool:
        """
        Switch the catalog to ``root_path`` and bring the index up to date.

        Runs pre-scan, full scan, re-homing, sync initialization (with
        replay), the thumbnail and embedding passes, then starts the media
        watcher.

        Returns:
            False if the root was already active and nothing was rescanned
        """
        try:
            real_path = os.path.realpath(root_path)
        except OSError as e:
            logger.warning(f"Failed to resolve real path for {root_path}, using it as given: {e}")
            real_path = str(root_path)

        if self.root_path == real_path:
            logger.info(f"Root path already set to {real_path}, skipping re-scan")
            self._propagate_root()
            if self.stats.total_files == 0:
                self._initialize_stats_from_db()
            return False

        await self.stop_watcher()

        self.root_path = real_path
        self._propagate_root()
        self.stats = SyncStats(status=IndexerStatus.SCANNING)
        self._initialize_stats_from_db()

        if self.thumbnail_dir is not None:
            try:
                self.thumbnail_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Cannot create thumbnail directory {self.thumbnail_dir}: {e}")

        logger.info(f"Pre-scanning {real_path}")
        self.scanner.reset_stats()
        scan_stats = self.scanner.pre_scan(Path(real_path))
        self.stats.total_files = scan_stats.total_files
        self.stats.total_folders = scan_stats.total_folders
        self.stats.skipped_files = scan_stats.skipped_files
        self.stats.images = scan_stats.images
        self.stats.videos = scan_stats.videos
        self.stats.other = scan_stats.other
        logger.info(f"Pre-scan complete, found {scan_stats.total_files} media files")

        self.stats.processed_files = 0
        await self.scanner.scan_directory(
            Path(real_path),
            lambda file_path: self.handle_file_add(file_path, skip_thumbnail=True)
        )
        logger.info(f"Scan complete, processed {self.stats.processed_files} files")

        self.store.rehome_assets(real_path)

        # Replay after the scan so remote changes land on existing rows
        await self.sync.initialize(Path(real_path))

        await self.process_thumbnails()
        await self.process_embeddings()

        self.stats.status = IndexerStatus.IDLE
        self.stats.current_file = None
        self.stats.last_sync = now_ms()

        if start_watcher and self.watch_config.enabled:
            await self.start_watcher()
        return True

    def _propagate_root(self) -> None:
        self.asset_service.set_root_path(self.root_path)

    def _initialize_stats_from_db(self) -> None:
        if not self.root_path:
            return
        assets = self.store.get_assets(self.root_path)
        self.stats.total_files = len(assets)
        self.stats.processed_files = len(assets)
        self.stats.images = sum(1 for a in assets if a.type == MediaType.IMAGE)
        self.stats.videos = sum(1 for a in assets if a.type == MediaType.VIDEO)
        self.stats.other = len(assets) - self.stats.images - self.stats.videos
        logger.debug(f"Stats from index: {self.stats.total_files} files under {self.root_path}")

    async def resync(self) -> None:
        """Rescan the current root from scratch"""
        if not self.root_path:
            return
        root = self.root_path
        was_watching = self.watcher is not None
        self.root_path = None
        await self.set_root_path(Path(root), start_watcher=was_watching)

    async def start_watcher(self) -> bool:
        if not self.root_path:
            return False
        await self.stop_watcher()
        self.watcher = MediaRootWatcher(
            Path(self.root_path),
            self.scanner.media_extensions,
            on_add=self._on_watch_add,
            on_change=self.handle_file_add,
            on_remove=self.handle_file_remove,
            debounce_ms=self.watch_config.debounce_ms,
            recursive=self.watch_config.recursive,
            skip_dotfiles=self.index_config.skip_dotfiles
        )
        return await self.watcher.start_monitoring()

    async def stop_watcher(self) -> None:
        if self.watcher is not None:
            await self.watcher.stop_monitoring()
            self.watcher = None

    async def stop(self) -> None:
        await self.stop_watcher()
        self._unsubscribe()

    async def _on_watch_add(self, file_path: Path) -> None:
        if self.stats.status != IndexerStatus.SCANNING:
            self.stats.total_files += 1
        await self.handle_file_add(file_path)

    # File events

    async def handle_file_add(self, file_path: Path, skip_thumbnail: bool = False) -> Optional[Asset]:
        """
        Index one file (new, changed or moved).

        Returns:
            The stored asset, or None if the file was skipped or failed
        """
        file_path = Path(file_path)
        if not self.root_path or not self.scanner.is_media_file(file_path):
            return None

        relative_path = to_relative_path(file_path, Path(self.root_path))
        if relative_path is None:
            logger.warning(f"Ignoring {file_path}: outside root {self.root_path}")
            return None

        self.stats.current_file = relative_path
        self.stats.processed_files += 1
        media_type = self.scanner.get_media_type(file_path)

        try:
            # stat follows symlinks; the asset stays at the link's own path
            stat = os.stat(file_path)
            mtime_ms = int(stat.st_mtime * 1000)

            asset_id = generate_asset_id(file_path, self.root_path, self.index_config.id_hash_bytes)
            existing = self.store.get_asset(asset_id, include_deleted=True)

            if existing is not None and existing.path != relative_path and self._still_on_disk(existing):
                # Same content at two paths: the copy gets its own identity
                asset_id = path_based_asset_id(str(file_path), self.root_path)
                existing = self.store.get_asset(asset_id, include_deleted=True)

            if existing is None:
                by_path = self.store.get_asset_by_path(self.root_path, relative_path)
                if by_path is not None:
                    # The row at this path will adopt the new id on upsert
                    existing = by_path

            if existing is not None and self._is_up_to_date(existing, relative_path, mtime_ms, media_type, skip_thumbnail):
                return existing

            extracted = await self.extractor.extract(file_path, media_type, stat.st_size)

            thumbnail_path = existing.thumbnail_path if existing else None
            if not thumbnail_path and not skip_thumbnail and media_type in (MediaType.IMAGE, MediaType.VIDEO):
                thumbnail_path = await self._generate_thumbnail(file_path, asset_id)

            # Re-read: the row may have changed during extraction
            current = self.store.get_asset(asset_id, include_deleted=True)
            if current is None:
                current = self.store.get_asset_by_path(self.root_path, relative_path)

            if current is not None:
                metadata = AssetMetadata.model_validate({**extracted, **current.metadata.to_json_dict()})
                thumbnail_path = current.thumbnail_path or thumbnail_path
            else:
                metadata = AssetMetadata.model_validate(extracted)

            status = current.status if current and current.status != DEFAULT_STATUS else DEFAULT_STATUS
            created_at = current.created_at if current else self._created_at_ms(stat)

            asset = Asset(
                id=asset_id,
                root_path=self.root_path,
                path=relative_path,
                type=media_type,
                status=status,
                created_at=created_at,
                updated_at=mtime_ms,
                metadata=metadata,
                thumbnail_path=thumbnail_path,
                deleted_at=None,
            )
            self.store.upsert_asset(asset)

            if current is None:
                self.history.log_event(asset_id, HistoryAction.CREATE, user_id=self.sync.user_id)
            elif current.deleted_at is not None:
                self.history.log_event(asset_id, HistoryAction.CREATE, "restored", user_id=self.sync.user_id)

            return self.store.get_asset(asset_id)

        except OSError as e:
            logger.error(f"Error processing file {file_path}: {e}")
            self.stats.record_error(relative_path, str(e))
            return None

    def _still_on_disk(self, asset: Asset) -> bool:
        return os.path.exists(os.path.join(asset.root_path, *asset.path.split('/')))

    def _is_up_to_date(
        self,
        existing: Asset,
        relative_path: str,
        mtime_ms: int,
        media_type: MediaType,
        skip_thumbnail: bool
    ) -> bool:
        if existing.root_path != self.root_path or existing.path != relative_path:
            return False
        if existing.deleted_at is not None:
            return False

        time_diff = abs(existing.updated_at - mtime_ms)
        if time_diff >= self.index_config.mtime_tolerance_ms and existing.updated_at <= mtime_ms:
            return False

        needs_thumbnail = (
            media_type == MediaType.VIDEO
            and self.thumbnailer is not None
            and not existing.thumbnail_path
            and not skip_thumbnail
        )
        return not needs_thumbnail

    @staticmethod
    def _created_at_ms(stat: os.stat_result) -> int:
        birth = getattr(stat, "st_birthtime", None)
        if birth:
            return int(birth * 1000)
        return int(min(stat.st_ctime, stat.st_mtime) * 1000)

    async def handle_file_remove(self, file_path: Path) -> bool:
        """Soft-delete the asset at a removed path"""
        if not self.root_path:
            return False
        relative_path = to_relative_path(Path(file_path), Path(self.root_path))
        if relative_path is None:
            return False

        asset = self.store.get_asset_by_path(self.root_path, relative_path)
        if asset is None or asset.deleted_at is not None:
            return False

        self.store.delete_asset(asset.id)
        self.history.log_event(asset.id, HistoryAction.DELETE, "path", relative_path, None, self.sync.user_id)
        self.stats.total_files = max(0, self.stats.total_files - 1)
        logger.info(f"Removed {relative_path} from the index")
        return True

    # Sync application

    async def apply_sync_event(self, event: SyncEvent) -> None:
        """Apply an event written by another process (no re-publication)"""
        previous = self.stats.status
        self.stats.status = IndexerStatus.SYNCING
        payload = event.payload
        try:
            if event.type == SyncEventType.ASSET_UPDATE:
                await self.asset_service.apply_remote_update(
                    payload["assetId"], payload.get("changes") or {}, user_id=event.user_id
                )
            elif event.type == SyncEventType.TAG_CREATE:
                tag = payload["tag"]
                await self.tag_service.create_tag(
                    tag["name"], tag.get("color"), from_sync=True, tag_id=tag.get("id")
                )
            elif event.type == SyncEventType.TAG_DELETE:
                await self.tag_service.delete_tag(self.tag_service.resolve_tag_id(payload["id"]), from_sync=True)
            elif event.type == SyncEventType.ASSET_TAG_ADD:
                await self.tag_service.add_tag_to_asset(
                    payload["assetId"], self.tag_service.resolve_tag_id(payload["tagId"]),
                    from_sync=True, user_id=event.user_id
                )
            elif event.type == SyncEventType.ASSET_TAG_REMOVE:
                await self.tag_service.remove_tag_from_asset(
                    payload["assetId"], self.tag_service.resolve_tag_id(payload["tagId"]),
                    from_sync=True, user_id=event.user_id
                )
        finally:
            self.stats.status = IndexerStatus.IDLE if previous == IndexerStatus.SYNCING else previous
            self.stats.last_sync = now_ms()

    # Background passes

    async def _generate_thumbnail(self, file_path: Path, asset_id: str) -> Optional[str]:
        if self.thumbnailer is None:
            return None
        try:
            thumbnail = await self.thumbnailer.generate(file_path, asset_id)
        except Exception as e:
            logger.error(f"Thumbnail generation failed for {file_path}: {e}")
            thumbnail = None
        if thumbnail:
            self.stats.thumbnails_generated += 1
        else:
            self.stats.thumbnails_failed += 1
        return thumbnail

    async def process_thumbnails(self) -> int:
        """
        Render missing thumbnails for the current root.

        Returns:
            Number of thumbnails generated
        """
        if not self.root_path or self.thumbnailer is None:
            return 0

        pending = [
            asset for asset in self.store.get_assets(self.root_path)
            if not asset.thumbnail_path and asset.type in (MediaType.IMAGE, MediaType.VIDEO)
        ]
        generated = 0
        for asset in pending:
            self.stats.current_file = f"Thumbnail: {asset.path}"
            full_path = Path(self.root_path, *asset.path.split('/'))
            thumbnail = await self._generate_thumbnail(full_path, asset.id)
            if thumbnail:
                self.store.update_thumbnail(asset.id, thumbnail)
                generated += 1

        self.stats.current_file = None
        if pending:
            logger.info(f"Generated {generated}/{len(pending)} thumbnails")
        return generated

    def _embedding_input(self, asset: Asset) -> str:
        full_path = Path(self.root_path, *asset.path.split('/'))
        if asset.type == MediaType.IMAGE:
            return str(full_path)
        if asset.type == MediaType.VIDEO and asset.thumbnail_path:
            thumbnail = Path(asset.thumbnail_path)
            if thumbnail.is_absolute():
                return str(thumbnail)
            cached = self.thumbnail_dir / thumbnail
            return str(cached if cached.exists() else Path(self.root_path) / thumbnail)
        parts = [
            full_path.name,
            *(tag.name for tag in asset.tags),
            asset.metadata.description or "",
            asset.metadata.prompt or "",
            asset.type.value,
        ]
        return " ".join(part for part in parts if part)

    async def process_embeddings(self) -> int:
        """
        Give every live asset of the root a vector.

        Shared vectors written by other processes are reused; the generator
        is only called for assets that have none. A generator returning None
        or failing skips that asset.

        Returns:
            Number of assets that received a vector
        """
        if not self.root_path or self.embedder is None:
            return 0

        dimensions = self.index_config.embedding_dimensions
        shared = SharedEmbeddingStore(self.embeddings_dir, dimensions)
        can_share = shared.ensure_dir()

        pending = [
            asset for asset in self.store.get_assets(self.root_path)
            if not is_valid_embedding(asset.metadata.embedding, dimensions)
        ]
        if not pending:
            logger.debug("No new embeddings to generate")
            return 0

        previous = self.stats.status
        self.stats.status = IndexerStatus.INDEXING
        logger.info(f"Generating embeddings for {len(pending)} assets")

        embedded = 0
        for asset in pending:
            self.stats.current_file = f"Embedding: {asset.path}"

            full_path = Path(self.root_path, *asset.path.split('/'))
            if not full_path.exists():
                logger.warning(f"Asset file missing, removing from index: {full_path}")
                await self.handle_file_remove(full_path)
                continue

            embedding = await shared.load(asset.id) if can_share else None
            if embedding is None:
                try:
                    embedding = await self.embedder.generate_embedding(self._embedding_input(asset))
                except Exception as e:
                    logger.error(f"Failed to generate embedding for {asset.path}: {e}")
                    continue
                if not embedding:
                    logger.warning(f"No embedding produced for {asset.path}")
                    continue
                if can_share:
                    await shared.save(asset.id, embedding)

            metadata = asset.metadata.model_copy(deep=True)
            metadata.embedding = [float(v) for v in embedding]
            self.store.update_metadata(asset.id, metadata)
            self.stats.embeddings_generated += 1
            embedded += 1

        self.stats.current_file = None
        self.stats.status = previous
        logger.info(f"Embedding pass complete, {embedded} assets updated")
        return embedded

    # Ingestion

    async def ingest_file(
        self,
        source_path: Path,
        project: Optional[str] = None,
        scene: Optional[str] = None,
        target_path: Optional[str] = None
    ) -> Asset:
        """
        Copy an external file into the root and index it.

        Without ``target_path`` the file lands in ``uploads/<project>/<scene>``.
        An existing name gets a ``_1``, ``_2``... suffix.

        Raises:
            IndexerError: If no root is set or the copy cannot be indexed
        """
        if not self.root_path:
            raise IndexerError("Root path not set")

        source = Path(source_path)
        if target_path:
            relative_dir = target_path.replace('\\', '/').strip('/')
        else:
            relative_dir = f"uploads/{project or 'default'}"
            if scene:
                relative_dir = f"{relative_dir}/{scene}"

        dest_dir = Path(self.root_path, *relative_dir.split('/'))
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            destination = dest_dir / source.name
            counter = 1
            while destination.exists():
                destination = dest_dir / f"{source.stem}_{counter}{source.suffix}"
                counter += 1
            shutil.copy2(source, destination)
        except OSError as e:
            raise IndexerError(f"Failed to copy {source} into {dest_dir}: {e}") from e

        logger.info(f"Ingested {source.name} as {destination}")
        asset = await self.handle_file_add(destination)
        if asset is None:
            raise IndexerError(f"Failed to index ingested file {destination}")
        return asset
