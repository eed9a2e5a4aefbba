"""
Asset service.

Mutations on assets that are recorded in the audit log and, unless they are
being applied from a sync event, published to the other processes sharing
the catalog root.
"""

import json
import logging
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set, Union

from ..models.assets import Asset, AssetMetadata, Comment
from ..models.history import HistoryAction
from ..storage.assets import AssetIndexStore
from ..storage.history import HistoryLog
from ..sync.engine import SyncEngine
from ..sync.events import SyncEventType

logger = logging.getLogger(__name__)


def _history_value(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


class AssetService:
    """Status, metadata, comments and lineage of assets in the current root"""

    def __init__(
        self,
        store: AssetIndexStore,
        history: HistoryLog,
        sync: Optional[SyncEngine] = None,
        root_path: Optional[str] = None
    ):
        self.store = store
        self.history = history
        self.sync = sync
        self.root_path = root_path

    def set_root_path(self, root_path: str) -> None:
        self.root_path = root_path

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        return self.store.get_asset(asset_id)

    def get_assets(self) -> List[Asset]:
        if not self.root_path:
            return []
        return self.store.get_assets(self.root_path)

    def _local_user(self) -> Optional[str]:
        return self.sync.user_id if self.sync else None

    async def _publish(self, event_type: SyncEventType, payload: Dict[str, Any]) -> None:
        if self.sync is not None:
            await self.sync.publish(event_type, payload)

    async def update_asset_status(
        self,
        asset_id: str,
        status: str,
        from_sync: bool = False,
        user_id: Optional[str] = None
    ) -> bool:
        """
        Set an asset's status.

        Returns:
            False if the asset is unknown
        """
        asset = self.store.get_asset(asset_id, include_deleted=True)
        if asset is None:
            logger.debug(f"Status update for unknown asset {asset_id}")
            return False

        if asset.status == status:
            return True

        self.store.update_status(asset_id, status)
        self.history.log_event(
            asset_id, HistoryAction.UPDATE, "status", asset.status, status,
            user_id or self._local_user()
        )

        if not from_sync:
            await self._publish(SyncEventType.ASSET_UPDATE, {"assetId": asset_id, "changes": {"status": status}})
        return True

    async def update_asset_metadata(
        self,
        asset_id: str,
        metadata: Union[AssetMetadata, Dict[str, Any]],
        from_sync: bool = False,
        user_id: Optional[str] = None
    ) -> bool:
        """
        Replace an asset's metadata.

        The published change carries the full metadata without the
        embedding vector; receivers merge it over their copy, so their own
        vectors survive.
        """
        asset = self.store.get_asset(asset_id, include_deleted=True)
        if asset is None:
            logger.debug(f"Metadata update for unknown asset {asset_id}")
            return False

        if not isinstance(metadata, AssetMetadata):
            metadata = AssetMetadata.model_validate(metadata)

        old = asset.metadata.to_json_dict(include_embedding=False)
        new = metadata.to_json_dict(include_embedding=False)

        self.store.update_metadata(asset_id, metadata)

        author = user_id or self._local_user()
        for key in sorted(set(old) | set(new)):
            if old.get(key) != new.get(key):
                self.history.log_event(
                    asset_id, HistoryAction.UPDATE, key,
                    _history_value(old.get(key)), _history_value(new.get(key)), author
                )

        if not from_sync:
            await self._publish(SyncEventType.ASSET_UPDATE, {"assetId": asset_id, "changes": {"metadata": new}})
        return True

    async def update_metadata(self, asset_id: str, key: str, value: Any) -> bool:
        """Set one metadata field"""
        asset = self.store.get_asset(asset_id, include_deleted=True)
        if asset is None:
            return False
        return await self.update_asset_metadata(asset_id, asset.metadata.merged({key: value}))

    async def add_comment(self, asset_id: str, text: str, author_id: Optional[str] = None) -> Optional[Comment]:
        asset = self.store.get_asset(asset_id, include_deleted=True)
        if asset is None:
            return None

        comment = Comment(id=str(uuid.uuid4()), text=text, author_id=author_id)
        metadata = asset.metadata.model_copy(deep=True)
        metadata.comments = [*metadata.comments, comment]

        await self.update_asset_metadata(asset_id, metadata)
        return comment

    async def apply_remote_update(self, asset_id: str, changes: Dict[str, Any], user_id: Optional[str] = None) -> None:
        """Apply an ``ASSET_UPDATE`` payload received from another process"""
        status = changes.get("status")
        if status:
            await self.update_asset_status(asset_id, status, from_sync=True, user_id=user_id)

        metadata_changes = changes.get("metadata")
        if isinstance(metadata_changes, dict):
            asset = self.store.get_asset(asset_id, include_deleted=True)
            if asset is None:
                logger.debug(f"Ignoring metadata update for unknown asset {asset_id}")
                return
            await self.update_asset_metadata(
                asset_id, asset.metadata.merged(metadata_changes), from_sync=True, user_id=user_id
            )

    def get_lineage(self, asset_id: str) -> List[Asset]:
        """
        Ancestors and descendants of an asset, transitively.

        Breadth-first over ``inputs`` links in both directions with a
        visited set, so cycles terminate. Unknown ids are skipped.
        """
        found: Dict[str, Asset] = {}
        visited: Set[str] = set()
        queue: Deque[str] = deque([asset_id])
        assets_by_root: Dict[str, List[Asset]] = {}

        while queue:
            current_id = queue.popleft()
            if current_id in visited:
                continue
            visited.add(current_id)

            asset = self.store.get_asset(current_id)
            if asset is None:
                continue
            found[asset.id] = asset

            for input_id in asset.inputs:
                if input_id not in visited:
                    queue.append(input_id)

            if asset.root_path not in assets_by_root:
                assets_by_root[asset.root_path] = self.store.get_assets(asset.root_path)
            for other in assets_by_root[asset.root_path]:
                if current_id in other.inputs and other.id not in visited:
                    queue.append(other.id)

        return list(found.values())

    def get_metadata_options(self) -> Dict[str, List[str]]:
        return self.store.get_metadata_options()
