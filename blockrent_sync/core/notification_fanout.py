"""
Notification persistence and realtime delivery.

A notification is stored first and pushed second: the stored row is the
source of truth for clients that poll, the realtime push is a courtesy.
"""

import logging
from datetime import datetime
from typing import List, Optional

from peewee import IntegrityError
from playhouse.shortcuts import model_to_dict

from blockrent_sync.core.models import db, Notification
from blockrent_sync.core.realtime import RealtimePublisher, user_channel

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


def dedup_key_for(transaction_hash: str, log_index: int, recipient: str, type: str) -> str:
    """Build the idempotency key of a ledger-derived notification."""
    return f"{transaction_hash.lower()}:{log_index}:{recipient.lower()}:{type}"


class NotificationFanout:
    """Create notifications for wallets and push them on private channels."""

    def __init__(self, publisher: Optional[RealtimePublisher] = None):
        self.publisher = publisher

    def notify(
        self,
        recipient_wallet: str,
        type: str,
        title: str,
        message: str,
        data: Optional[dict] = None,
        dedup_key: Optional[str] = None
    ) -> Optional[dict]:
        """
        Persist a notification and publish it to the recipient's channel.

        Args:
            recipient_wallet: Wallet address of the recipient
            type: Notification type, e.g. ``new_sale``
            title: Short title
            message: Human-readable message
            data: Structured payload
            dedup_key: Idempotency key; a repeated key creates nothing

        Returns:
            The stored notification as a dict, or None if it was a duplicate
        """
        wallet = recipient_wallet.lower()

        try:
            with db.atomic():
                row = Notification.create(
                    wallet_address=wallet,
                    type=type,
                    title=title,
                    message=message,
                    data=data or {},
                    dedup_key=dedup_key,
                )
        except IntegrityError:
            # dedup_key conflict, notification already delivered, skip
            logger.info(f"Duplicate notification '{type}' for {wallet} skipped (key={dedup_key})")
            return None

        notification = serialize_notification(row)
        self._publish(wallet, notification)
        return notification

    def _publish(self, wallet: str, notification: dict):
        if self.publisher is None:
            return
        try:
            self.publisher.publish(user_channel(wallet), NOTIFICATION_EVENT, notification)
        except Exception as e:
            # Delivery failure must not undo persistence; clients can still poll
            logger.warning(f"Realtime delivery of notification {notification['id']} to {wallet} failed: {e}")

    @staticmethod
    def list_for_wallet(
        wallet_address: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0
    ) -> List[dict]:
        """Return a wallet's notifications, newest first."""
        query = Notification.select().where(Notification.wallet_address == wallet_address.lower())
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
        return [serialize_notification(row) for row in query.limit(limit).offset(offset)]

    @staticmethod
    def unread_count(wallet_address: str) -> int:
        return (
            Notification.select()
            .where(
                (Notification.wallet_address == wallet_address.lower())
                & (Notification.is_read == False)  # noqa: E712
            )
            .count()
        )

    @staticmethod
    def mark_read(notification_id: int, wallet_address: str) -> bool:
        """
        Mark one notification as read.

        Returns:
            False if no notification with that id belongs to the wallet
        """
        updated = (
            Notification.update(is_read=True, read_at=datetime.now())
            .where(
                (Notification.id == notification_id)
                & (Notification.wallet_address == wallet_address.lower())
            )
            .execute()
        )
        return updated > 0

    @staticmethod
    def mark_all_read(wallet_address: str) -> int:
        return (
            Notification.update(is_read=True, read_at=datetime.now())
            .where(
                (Notification.wallet_address == wallet_address.lower())
                & (Notification.is_read == False)  # noqa: E712
            )
            .execute()
        )


def serialize_notification(row: Notification) -> dict:
    data = model_to_dict(row)
    data.pop('dedup_key', None)
    return data
