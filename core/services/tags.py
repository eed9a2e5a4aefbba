"""
Tag service: tag mutations with audit logging and sync publication.
"""

import logging
from typing import Any, Dict, List, Optional

from ..models.assets import Tag
from ..models.history import HistoryAction
from ..storage.history import HistoryLog
from ..storage.tags import TagStore
from ..sync.engine import SyncEngine
from ..sync.events import SyncEventType

logger = logging.getLogger(__name__)


class TagService:
    """Creates, deletes and assigns tags"""

    def __init__(self, store: TagStore, history: HistoryLog, sync: Optional[SyncEngine] = None):
        self.store = store
        self.history = history
        self.sync = sync

    def get_tags(self) -> List[Tag]:
        return self.store.get_tags()

    def get_asset_tags(self, asset_id: str) -> List[Tag]:
        return self.store.get_asset_tags(asset_id)

    def resolve_tag_id(self, tag_id: str) -> str:
        return self.store.resolve_tag_id(tag_id)

    async def _publish(self, event_type: SyncEventType, payload: Dict[str, Any]) -> None:
        if self.sync is not None:
            await self.sync.publish(event_type, payload)

    def _local_user(self) -> Optional[str]:
        return self.sync.user_id if self.sync else None

    async def create_tag(
        self,
        name: str,
        color: Optional[str] = None,
        from_sync: bool = False,
        tag_id: Optional[str] = None
    ) -> Tag:
        """
        Create a tag; an existing tag with the same name is returned as is.

        Replayed creations pass the originating tag id so ids agree across
        processes.
        """
        tag, created = self.store.create_tag(name, color, tag_id=tag_id)
        if from_sync and tag_id and tag.id != tag_id:
            # Name already taken here: map the remote id onto the local tag
            self.store.add_alias(tag_id, tag.id)
        if created and not from_sync:
            await self._publish(SyncEventType.TAG_CREATE, {"tag": tag.model_dump()})
        return tag

    async def delete_tag(self, tag_id: str, from_sync: bool = False) -> bool:
        deleted = self.store.delete_tag(tag_id)
        if not from_sync:
            await self._publish(SyncEventType.TAG_DELETE, {"id": tag_id})
        return deleted

    async def add_tag_to_asset(
        self,
        asset_id: str,
        tag_id: str,
        from_sync: bool = False,
        user_id: Optional[str] = None
    ) -> bool:
        added = self.store.add_tag_to_asset(asset_id, tag_id)
        if added:
            tag = self.store.get_tag(tag_id)
            self.history.log_event(
                asset_id, HistoryAction.TAG_ADD, "tags", None,
                tag.name if tag else tag_id, user_id or self._local_user()
            )
        if not from_sync:
            await self._publish(SyncEventType.ASSET_TAG_ADD, {"assetId": asset_id, "tagId": tag_id})
        return added

    async def remove_tag_from_asset(
        self,
        asset_id: str,
        tag_id: str,
        from_sync: bool = False,
        user_id: Optional[str] = None
    ) -> bool:
        tag = self.store.get_tag(tag_id)
        removed = self.store.remove_tag_from_asset(asset_id, tag_id)
        if removed:
            self.history.log_event(
                asset_id, HistoryAction.TAG_REMOVE, "tags",
                tag.name if tag else tag_id, None, user_id or self._local_user()
            )
        if not from_sync:
            await self._publish(SyncEventType.ASSET_TAG_REMOVE, {"assetId": asset_id, "tagId": tag_id})
        return removed
