"""Realtime publisher abstract base class and channel naming."""

from abc import ABC, abstractmethod
from typing import Callable

# Shared channel for public marketplace broadcasts
MARKETPLACE_CHANNEL = "marketplace"


def user_channel(wallet_address: str) -> str:
    """Return the private channel name of a wallet."""
    return f"user_{wallet_address.lower()}"


class RealtimePublisher(ABC):
    """Pub/sub transport for pushing cache updates to connected clients."""

    @abstractmethod
    def publish(self, channel: str, event: str, payload: dict):
        """
        Publish an event on a channel.

        Args:
            channel: Channel name (``user_<wallet>`` or ``marketplace``)
            event: Event name, e.g. ``listingCreated``
            payload: JSON-serializable payload
        """
        pass

    @abstractmethod
    def subscribe(self, channel: str, callback: Callable[[str, dict], None]) -> int:
        """
        Register a callback for a channel.

        Args:
            channel: Channel name
            callback: Function receiving ``(event, payload)``

        Returns:
            Subscription token usable with ``unsubscribe``
        """
        pass

    @abstractmethod
    def unsubscribe(self, token: int):
        """
        Remove a subscription.

        Args:
            token: Token returned by ``subscribe``
        """
        pass
