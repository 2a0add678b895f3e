"""Pydantic schemas for API responses."""

from blockrent_sync.api.schemas.cache_schemas import (
    ListingResponse,
    TransactionResponse,
    DisputeResponse,
    ReviewResponse,
    WalletReviewsResponse,
)
from blockrent_sync.api.schemas.sync_schemas import (
    NotificationResponse,
    NotificationListResponse,
    MarkReadResponse,
    SyncStatusResponse,
)

__all__ = [
    'ListingResponse',
    'TransactionResponse',
    'DisputeResponse',
    'ReviewResponse',
    'WalletReviewsResponse',
    'NotificationResponse',
    'NotificationListResponse',
    'MarkReadResponse',
    'SyncStatusResponse',
]
