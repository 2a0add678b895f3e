"""In-memory realtime broker implementation."""

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Tuple

from blockrent_sync.core.logger import log
from blockrent_sync.core.realtime import RealtimePublisher


class InMemoryRealtimeBroker(RealtimePublisher):
    """In-process realtime broker used by the API websocket bridge and tests."""

    def __init__(self, max_workers: int = 4):
        """
        Initialize in-memory broker.

        Args:
            max_workers: Maximum number of worker threads for callback execution
        """
        self._subscriptions: Dict[int, Tuple[str, Callable[[str, dict], None]]] = {}
        self._tokens = itertools.count(1)
        self._lock = threading.Lock()
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="realtime")
        log.info(f"InMemoryRealtimeBroker initialized with max workers: {max_workers}")

    def publish(self, channel: str, event: str, payload: dict):
        """
        Publish an event and notify all subscribers of the channel.

        Args:
            channel: Channel name
            event: Event name
            payload: Event payload
        """
        with self._lock:
            callbacks = [cb for ch, cb in self._subscriptions.values() if ch == channel]

        if not callbacks:
            log.debug(f"Channel {channel} has no subscribers, dropping '{event}'")
            return

        log.debug(f"Channel {channel}: publishing '{event}' to {len(callbacks)} subscriber(s)")

        for callback in callbacks:
            # Use thread pool to execute callback, avoid blocking the publisher
            self.executor.submit(self._execute_callback, callback, channel, event, payload)

    def subscribe(self, channel: str, callback: Callable[[str, dict], None]) -> int:
        with self._lock:
            token = next(self._tokens)
            self._subscriptions[token] = (channel, callback)
        log.debug(f"New subscriber #{token} added to channel: {channel}")
        return token

    def unsubscribe(self, token: int):
        with self._lock:
            removed = self._subscriptions.pop(token, None)
        if removed:
            log.debug(f"Subscriber #{token} removed from channel: {removed[0]}")

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return sum(1 for ch, _ in self._subscriptions.values() if ch == channel)

    def _execute_callback(self, callback: Callable, channel: str, event: str, payload: dict):
        """
        Execute callback function, capture and log exceptions.

        Args:
            callback: Callback function
            channel: Channel name
            event: Event name
            payload: Event payload
        """
        try:
            callback(event, payload)
        except Exception as e:
            log.error(f"Error executing realtime callback on channel {channel}: {e}", exc_info=True)

    def shutdown(self):
        """Shutdown thread pool."""
        log.info("Shutting down InMemoryRealtimeBroker thread pool...")
        self.executor.shutdown(wait=True)
        log.info("InMemoryRealtimeBroker shut down")
