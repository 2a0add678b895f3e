"""
Pydantic schemas for notifications and synchronizer status.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NotificationResponse(BaseModel):
    """Stored notification."""

    id: int
    wallet_address: str
    type: str = Field(..., description="Notification type, e.g. new_sale")
    title: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class NotificationListResponse(BaseModel):
    """A page of notifications plus the unread counter."""

    notifications: List[NotificationResponse]
    unread_count: int


class MarkReadResponse(BaseModel):
    """Response schema for read markers."""

    status: str = Field(..., description="Operation status")
    updated: int = Field(..., description="Number of notifications marked read")


class SyncStatusResponse(BaseModel):
    """Synchronizer state."""

    enabled: bool = Field(..., description="False when no contract is configured or the feed is down")
    running: bool = Field(..., description="True while the live polling thread is alive")
    contract_address: str = ""
    chain_id: Optional[int] = None
    checkpoint: Optional[int] = Field(None, description="Last fully reconciled block")
    head: Optional[int] = Field(None, description="Latest block seen on the node")
    last_poll_at: Optional[datetime] = None
    last_error: Optional[str] = None
    events_processed: int = 0
    events_failed: int = 0
    dead_letters: int = Field(0, description="Unresolved dead-lettered events")
