"""
Chain connector.

Owns the synchronization lifecycle: resolve the network, backfill history
from the checkpoint, then poll for new blocks. Both phases hand block
ranges to the same dispatcher and advance the checkpoint only after a
whole range has been reconciled.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from blockrent_sync.core.abi import load_abi
from blockrent_sync.core.activity_log import ActivityRecorder
from blockrent_sync.core.cache_store import CacheStore
from blockrent_sync.core.checkpoint_store import CheckpointStore
from blockrent_sync.core.event_dispatcher import EventDispatcher
from blockrent_sync.core.events import EVENT_NAMES, LISTING_CREATED, LedgerEvent
from blockrent_sync.core.exceptions import FeedConnectionError
from blockrent_sync.core.ledger_feed import LedgerFeed, Web3LedgerFeed
from blockrent_sync.core.logger import log
from blockrent_sync.core.metadata_resolver import MetadataResolver
from blockrent_sync.core.models import DeadLetterEvent
from blockrent_sync.core.notification_fanout import NotificationFanout
from blockrent_sync.core.realtime import RealtimePublisher

DEFAULT_WINDOW = 10000


def block_ranges(start: int, end: int, chunk_size: int) -> Iterator[Tuple[int, int]]:
    """
    Split ``[start, end]`` into consecutive inclusive ranges.

    Args:
        start: First block
        end: Last block
        chunk_size: Blocks per range; 0 yields the whole range at once
    """
    if chunk_size <= 0:
        yield start, end
        return
    while start <= end:
        stop = min(start + chunk_size - 1, end)
        yield start, stop
        start = stop + 1


@dataclass
class SyncContext:
    """Everything one synchronizer instance needs, passed in explicitly."""
    feed: Optional[LedgerFeed]
    cache: CacheStore
    checkpoint: CheckpointStore
    resolver: MetadataResolver
    notifier: NotificationFanout
    publisher: Optional[RealtimePublisher] = None
    activity: Optional[ActivityRecorder] = None
    contract_address: str = ""
    default_window: int = DEFAULT_WINDOW
    backfill_chunk_size: int = 2000
    confirmations: int = 0
    poll_interval: float = 5.0
    max_workers: int = 8
    max_attempts: int = 3
    retry_backoff: float = 0.5

    @classmethod
    def from_config(cls, config: dict, publisher: Optional[RealtimePublisher] = None) -> "SyncContext":
        """
        Build a context from a validated configuration dictionary.

        A missing contract address or an unusable feed leaves ``feed`` as
        None; ``ChainConnector.start`` then disables synchronization.

        Args:
            config: Configuration returned by ``load_config``
            publisher: Realtime publisher shared with the API (optional)
        """
        sync = config['sync']
        feed = None
        if sync['contract_address']:
            try:
                feed = Web3LedgerFeed(
                    rpc_url=sync['rpc_url'],
                    contract_address=sync['contract_address'],
                    abi=load_abi(sync.get('abi_path')),
                    proxy=sync.get('proxy'),
                    verify_ssl=sync.get('verify_ssl', True),
                    timeout=sync['request_timeout'],
                )
            except FeedConnectionError as e:
                log.error(f"Ledger feed unavailable: {e}")
            except (FileNotFoundError, ValueError, KeyError) as e:
                # Unreadable ABI or one missing a marketplace event
                log.error(f"Ledger feed unavailable, bad contract ABI: {e}")

        return cls(
            feed=feed,
            cache=CacheStore(),
            checkpoint=CheckpointStore(),
            resolver=MetadataResolver.from_config(config['metadata']),
            notifier=NotificationFanout(publisher),
            publisher=publisher,
            activity=ActivityRecorder(),
            contract_address=sync['contract_address'],
            default_window=sync['default_window'],
            backfill_chunk_size=sync['backfill_chunk_size'],
            confirmations=sync['confirmations'],
            poll_interval=sync['poll_interval_seconds'],
            max_workers=sync['max_workers'],
            max_attempts=sync['max_attempts'],
            retry_backoff=sync['retry_backoff_seconds'],
        )

    def build_dispatcher(self) -> EventDispatcher:
        return EventDispatcher(
            feed=self.feed,
            cache=self.cache,
            resolver=self.resolver,
            notifier=self.notifier,
            publisher=self.publisher,
            activity=self.activity,
            max_workers=self.max_workers,
            max_attempts=self.max_attempts,
            retry_backoff=self.retry_backoff,
        )

    def close(self):
        """Release resources owned by the context."""
        if self.activity:
            self.activity.shutdown(wait=True)
        self.resolver.close()


class SyncHandle:
    """Returned by a successful ``ChainConnector.start``."""

    def __init__(self, connector: "ChainConnector", network: Dict[str, Any]):
        self.connector = connector
        self.network = network

    def stop(self):
        self.connector.stop()


class ChainConnector:
    """Backfills and follows the marketplace contract's event log."""

    def __init__(self, context: SyncContext, dispatcher: Optional[EventDispatcher] = None):
        """
        Initialize connector.

        Args:
            context: Synchronization context
            dispatcher: Event dispatcher (built from the context when omitted)
        """
        self.context = context
        self.dispatcher = dispatcher
        # Built by start() when omitted; stop() discards it again
        self._owns_dispatcher = dispatcher is None
        self.network: Optional[Dict[str, Any]] = None

        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        # Backfill and live polling never reconcile ranges concurrently
        self._sync_lock = threading.Lock()

        self.last_head: Optional[int] = None
        self.last_poll_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.events_processed = 0
        self.events_failed = 0

    def start(self) -> Optional[SyncHandle]:
        """
        Connect, backfill and start live polling.

        Returns:
            SyncHandle, or None if synchronization is disabled or the feed
            is unreachable
        """
        if not self.context.contract_address:
            log.warning("Contract address not configured, blockchain sync disabled")
            return None
        if self.context.feed is None:
            log.error("Ledger feed not available, blockchain sync disabled")
            return None

        try:
            self.network = self.context.feed.get_network()
        except FeedConnectionError as e:
            log.error(f"Failed to start blockchain sync: {e}")
            self.last_error = str(e)
            return None

        log.info(
            f"Connected to chain {self.network.get('chain_id')}, "
            f"contract {self.context.contract_address}"
        )

        if self.dispatcher is None:
            self.dispatcher = self.context.build_dispatcher()

        try:
            self.backfill()
        except Exception as e:
            # The live loop resumes from the checkpoint, so nothing is skipped
            self.last_error = str(e)
            log.error(f"Historical backfill failed, live sync will retry: {e}", exc_info=True)

        self.stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="chain-connector", daemon=True)
        self._thread.start()
        log.info(f"Live sync started (poll interval {self.context.poll_interval}s)")

        return SyncHandle(self, self.network)

    def stop(self):
        """Stop polling and wait for in-flight reconciliation to finish."""
        log.info("Stopping chain connector...")
        self.stop_event.set()

        if self._thread:
            self._thread.join()
            self._thread = None

        if self.dispatcher:
            self.dispatcher.shutdown(wait=True)
            if self._owns_dispatcher:
                self.dispatcher = None

        log.info("Chain connector stopped")

    # ---- sync -----------------------------------------------------------

    def safe_head(self) -> int:
        """Latest block considered final under the configured confirmation depth."""
        head = self.context.feed.get_current_height()
        self.last_head = head
        return max(0, head - self.context.confirmations)

    def start_block(self, current_height: int) -> int:
        checkpoint = self.context.checkpoint.get()
        if checkpoint is not None:
            return checkpoint + 1
        return max(0, current_height - self.context.default_window)

    def backfill(self, current_height: Optional[int] = None) -> int:
        """
        Reconcile history between the checkpoint and ``current_height``.

        Args:
            current_height: Last block to backfill (defaults to the safe head)

        Returns:
            Number of events dispatched
        """
        if current_height is None:
            current_height = self.safe_head()
        return self._sync_to(current_height, skip_cached_listings=True, phase="Backfill")

    def poll_once(self) -> int:
        """Reconcile any blocks produced since the last checkpoint."""
        count = self._sync_to(self.safe_head(), skip_cached_listings=False, phase="Live sync")
        self.last_poll_at = datetime.now()
        return count

    def _sync_to(self, current_height: int, skip_cached_listings: bool, phase: str) -> int:
        with self._sync_lock:
            start = self.start_block(current_height)
            if start > current_height:
                log.debug(f"{phase}: already at block {current_height}")
                return 0

            log.info(f"{phase}: blocks {start} to {current_height}")
            total = 0
            for from_block, to_block in block_ranges(start, current_height, self.context.backfill_chunk_size):
                if self.stop_event.is_set():
                    log.info(f"{phase} interrupted at block {from_block}")
                    break
                total += self._sync_range(from_block, to_block, skip_cached_listings)
            return total

    def _sync_range(self, from_block: int, to_block: int, skip_cached_listings: bool) -> int:
        events: List[LedgerEvent] = []
        for event_name in EVENT_NAMES:
            batch = self.context.feed.query_range(event_name, from_block, to_block)
            if skip_cached_listings and event_name == LISTING_CREATED:
                batch = self._drop_cached_listings(batch)
            events.extend(batch)

        report = self.dispatcher.dispatch_batch(events)
        self.events_processed += report.succeeded
        self.events_failed += len(report.failed)

        # Failed events are dead-lettered, so the range counts as processed
        self.context.checkpoint.advance(to_block)

        if events:
            log.info(
                f"Blocks {from_block}-{to_block}: {report.succeeded}/{report.total} event(s) "
                f"reconciled in {report.lanes} lane(s)"
            )
        return report.total

    def _drop_cached_listings(self, events: List[LedgerEvent]) -> List[LedgerEvent]:
        kept = []
        for event in events:
            listing_id = event.args.get('listingId')
            if listing_id is not None and self.context.cache.listing_exists(int(listing_id)):
                log.debug(f"Listing #{listing_id} already cached, skipping")
                continue
            kept.append(event)
        return kept

    def _poll_loop(self):
        while not self.stop_event.wait(self.context.poll_interval):
            try:
                self.poll_once()
                self.last_error = None
            except Exception as e:
                self.last_error = str(e)
                log.error(f"Error polling ledger: {e}", exc_info=True)

    # ---- status ---------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> Dict[str, Any]:
        """Snapshot of the synchronizer state for the read API."""
        return {
            'enabled': bool(self.context.contract_address) and self.context.feed is not None,
            'running': self.running,
            'contract_address': self.context.contract_address,
            'chain_id': (self.network or {}).get('chain_id'),
            'checkpoint': self.context.checkpoint.get(),
            'head': self.last_head,
            'last_poll_at': self.last_poll_at,
            'last_error': self.last_error,
            'events_processed': self.events_processed,
            'events_failed': self.events_failed,
            'dead_letters': (
                DeadLetterEvent.select()
                .where(DeadLetterEvent.resolved == False)  # noqa: E712
                .count()
            ),
        }
