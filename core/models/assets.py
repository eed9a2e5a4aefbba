"""
Core asset models for the media catalog.

Defines assets, their typed metadata bag, tags and comments as stored in the
asset index and carried in sync event payloads.
"""

import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


class MediaType(str, Enum):
    """Kinds of media tracked by the catalog"""
    IMAGE = "image"
    VIDEO = "video"
    OTHER = "other"


DEFAULT_STATUS = "unsorted"


class Comment(BaseModel):
    """Free-form comment attached to an asset"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    text: str
    author_id: Optional[str] = Field(default=None, alias="authorId")
    timestamp: int = Field(default_factory=now_ms)


class AssetMetadata(BaseModel):
    """
    Metadata bag for an asset.

    A handful of fields are known and typed; anything else written by tools
    or other processes is preserved in the extra map and written back out
    unchanged, so newer writers never lose data through older readers.
    """
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        validate_assignment=True
    )

    # Lineage: ids of assets that were used to produce this one
    inputs: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)
    embedding: Optional[List[float]] = None

    # Generation / production fields
    prompt: Optional[str] = None
    description: Optional[str] = None
    author_id: Optional[str] = Field(default=None, alias="authorId")
    project: Optional[str] = None
    scene: Optional[str] = None
    shot: Optional[str] = None
    model: Optional[str] = None
    platform: Optional[str] = None
    platform_url: Optional[str] = Field(default=None, alias="platformUrl")
    size: Optional[int] = None

    @field_validator('inputs', mode='before')
    @classmethod
    def validate_inputs(cls, v: Any) -> List[str]:
        """Accept a missing or null inputs list"""
        if v is None:
            return []
        return [str(item) for item in v]

    @property
    def extras(self) -> Dict[str, Any]:
        """Fields outside the known set"""
        return dict(self.model_extra or {})

    def to_json_dict(self, include_embedding: bool = True) -> Dict[str, Any]:
        """Wire/storage form: camelCase aliases, empty values dropped"""
        data = self.model_dump(by_alias=True, exclude_none=True)
        if not data.get('inputs'):
            data.pop('inputs', None)
        if not data.get('comments'):
            data.pop('comments', None)
        if not include_embedding:
            data.pop('embedding', None)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict(), ensure_ascii=False)

    def index_text(self) -> str:
        """Text mirrored into the full-text index (embedding excluded)"""
        return json.dumps(self.to_json_dict(include_embedding=False), ensure_ascii=False, sort_keys=True)

    def merged(self, changes: Dict[str, Any]) -> 'AssetMetadata':
        """Return a copy with ``changes`` overlaid on the current fields"""
        return AssetMetadata.model_validate({**self.to_json_dict(), **changes})

    @classmethod
    def from_json(cls, raw: Optional[str]) -> 'AssetMetadata':
        if not raw:
            return cls()
        return cls.model_validate(json.loads(raw))


class Tag(BaseModel):
    """User-defined label that can be attached to many assets"""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str
    color: Optional[str] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate tag name is not empty"""
        if not v:
            raise ValueError('Tag name cannot be empty')
        return v


class AssetTag(BaseModel):
    """Association between an asset and a tag"""
    model_config = ConfigDict(frozen=True)

    asset_id: str
    tag_id: str


class Asset(BaseModel):
    """A media file known to the catalog"""
    model_config = ConfigDict(
        validate_assignment=True,
        use_enum_values=False
    )

    id: str
    root_path: str
    path: str  # root-relative, forward slashes
    type: MediaType = MediaType.OTHER
    status: str = DEFAULT_STATUS
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    metadata: AssetMetadata = Field(default_factory=AssetMetadata)
    thumbnail_path: Optional[str] = None
    deleted_at: Optional[int] = None

    # Joined on read, never persisted on the asset row
    tags: List[Tag] = Field(default_factory=list)

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate asset id is not empty"""
        if not v or not v.strip():
            raise ValueError('Asset id cannot be empty')
        return v

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Normalize to forward slashes"""
        return v.replace('\\', '/')

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def inputs(self) -> List[str]:
        return self.metadata.inputs

    def __str__(self) -> str:
        return f"{self.type.value.upper()}: {self.root_path}::{self.path} [{self.id[:8]}]"
