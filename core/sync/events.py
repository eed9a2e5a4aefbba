"""
Sync Event Models.

Defines the event types exchanged between processes sharing a catalog root,
and the on-disk naming and parsing rules for event files.
"""

import json
import uuid
from enum import Enum
from typing import Any, Dict, List, Tuple, Union
from pydantic import BaseModel, Field, ConfigDict, ValidationError

from ..models.assets import now_ms


COMPACTED_PREFIX = "compacted_"


class SyncEventType(str, Enum):
    """Mutations that are propagated across processes"""
    ASSET_UPDATE = "ASSET_UPDATE"
    TAG_CREATE = "TAG_CREATE"
    TAG_DELETE = "TAG_DELETE"
    ASSET_TAG_ADD = "ASSET_TAG_ADD"
    ASSET_TAG_REMOVE = "ASSET_TAG_REMOVE"


def new_session_user_id() -> str:
    """Writer identity for one process session"""
    return f"user_{uuid.uuid4().hex[:8]}"


class SyncEvent(BaseModel):
    """
    One immutable mutation record.

    Serialized as ``{id, timestamp, userId, type, payload}``. Events are
    identified by ``id`` for deduplication and ordered by
    ``(timestamp, id)`` wherever more than one is applied.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True
    )

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = Field(default_factory=now_ms)
    user_id: str = Field(alias="userId")
    type: SyncEventType
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, event_type: SyncEventType, payload: Dict[str, Any], user_id: str) -> 'SyncEvent':
        return cls(type=event_type, payload=payload, user_id=user_id)

    @property
    def sort_key(self) -> Tuple[int, str]:
        return (self.timestamp, self.id)

    @property
    def file_name(self) -> str:
        """Name of the individual event file"""
        return f"{self.timestamp}_{self.id}.json"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "type": self.type.value,
            "payload": self.payload,
        }

    def __str__(self) -> str:
        return f"{self.type.value} {self.id[:8]} @{self.timestamp} by {self.user_id}"


def compacted_file_name(events: List[SyncEvent]) -> str:
    """Name of a batch file holding ``events``"""
    max_timestamp = max(event.timestamp for event in events)
    return f"{COMPACTED_PREFIX}{max_timestamp}_{uuid.uuid4()}.json"


def is_compacted_file_name(name: str) -> bool:
    return name.startswith(COMPACTED_PREFIX)


def sort_events(events: List[SyncEvent]) -> List[SyncEvent]:
    return sorted(events, key=lambda event: event.sort_key)


def serialize_events(events: Union[SyncEvent, List[SyncEvent]]) -> str:
    """Serialize a single event or a batch to file content"""
    if isinstance(events, SyncEvent):
        return json.dumps(events.to_dict(), indent=2, ensure_ascii=False)
    return json.dumps([event.to_dict() for event in events], indent=2, ensure_ascii=False)


def parse_events(content: str) -> List[SyncEvent]:
    """
    Parse event file content.

    Accepts either one event object or an array of them. Raises
    ``ValueError`` when the content is not valid JSON or not event-shaped.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e

    items: List[Any]
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = [data]
    else:
        raise ValueError(f"Unexpected event content type: {type(data).__name__}")

    try:
        return [SyncEvent.model_validate(item) for item in items]
    except ValidationError as e:
        raise ValueError(f"Malformed event: {e}") from e

