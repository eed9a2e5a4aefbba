"""
Audit history models.

Append-only records of field-level changes made to assets, plus the
aggregate view used by activity dashboards.
"""

from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class HistoryAction(str, Enum):
    """Kinds of change recorded in the audit log"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    TAG_ADD = "tag_add"
    TAG_REMOVE = "tag_remove"


class HistoryEvent(BaseModel):
    """A single audit row"""
    id: int
    asset_id: str
    action: HistoryAction
    field: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    timestamp: int
    user_id: Optional[str] = None


class IngressPoint(BaseModel):
    date: str
    count: int


class ActivityStats(BaseModel):
    """Catalog-wide counts and recent activity"""
    total_assets: int = 0
    assets_by_status: Dict[str, int] = Field(default_factory=dict)
    assets_by_type: Dict[str, int] = Field(default_factory=dict)
    assets_by_author: Dict[str, int] = Field(default_factory=dict)
    recent_activity: List[HistoryEvent] = Field(default_factory=list)
    ingress_over_time: List[IngressPoint] = Field(default_factory=list)
