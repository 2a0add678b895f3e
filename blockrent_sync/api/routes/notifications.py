"""
Notification polling endpoints.

Every notification pushed over the websocket is also stored, so clients
that missed the push can catch up here.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from blockrent_sync.api.dependencies import get_notification_fanout
from blockrent_sync.api.schemas import MarkReadResponse, NotificationListResponse
from blockrent_sync.core.notification_fanout import NotificationFanout


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/{wallet_address}", response_model=NotificationListResponse)
async def list_notifications(
    wallet_address: str,
    unread_only: bool = Query(False, description="Only return unread notifications"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of notifications (1-200)"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    fanout: NotificationFanout = Depends(get_notification_fanout)
) -> dict:
    """List a wallet's notifications, newest first."""
    return {
        'notifications': fanout.list_for_wallet(wallet_address, unread_only, limit, offset),
        'unread_count': fanout.unread_count(wallet_address),
    }


@router.get("/{wallet_address}/unread-count")
async def get_unread_count(
    wallet_address: str,
    fanout: NotificationFanout = Depends(get_notification_fanout)
) -> dict:
    return {'count': fanout.unread_count(wallet_address)}


@router.put("/{wallet_address}/read-all", response_model=MarkReadResponse)
async def mark_all_read(
    wallet_address: str,
    fanout: NotificationFanout = Depends(get_notification_fanout)
) -> MarkReadResponse:
    """Mark every unread notification of the wallet as read."""
    updated = fanout.mark_all_read(wallet_address)
    return MarkReadResponse(status="success", updated=updated)


@router.put("/{wallet_address}/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    wallet_address: str,
    notification_id: int,
    fanout: NotificationFanout = Depends(get_notification_fanout)
) -> MarkReadResponse:
    """Mark one notification as read."""
    if not fanout.mark_read(notification_id, wallet_address):
        raise HTTPException(status_code=404, detail=f"Notification {notification_id} not found")
    return MarkReadResponse(status="success", updated=1)
