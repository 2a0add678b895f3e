"""
Event dispatcher.

Turns decoded ledger events into cache mutations, realtime broadcasts and
notifications. Backfill and live mode both feed events through
``dispatch_batch``, so there is a single reconciliation path.

Key features:
- One handler per contract event type
- Lanes keyed by listing: events of the same listing run in log order,
  different listings run concurrently
- Bounded retry, then a dead-letter row that can be replayed later
- Notifications carry an idempotency key, so replays do not duplicate them
"""

import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait as wait_for_all
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from blockrent_sync.core.activity_log import ActivityRecorder
from blockrent_sync.core.cache_store import CacheStore, DisputeStatus, TransactionKind, TransactionStatus
from blockrent_sync.core.events import (
    DISPUTE_CREATED,
    DISPUTE_RESOLVED,
    LISTING_CREATED,
    REVIEW_SUBMITTED,
    TRANSACTION_COMPLETED,
    TRANSACTION_CONFIRMED,
    TRANSACTION_STARTED,
    TRANSACTION_TYPE_SALE,
    LedgerEvent,
)
from blockrent_sync.core.exceptions import ReconciliationError
from blockrent_sync.core.ledger_feed import LedgerFeed
from blockrent_sync.core.logger import log
from blockrent_sync.core.metadata_resolver import MetadataResolver, listing_fields
from blockrent_sync.core.models import DeadLetterEvent
from blockrent_sync.core.notification_fanout import NotificationFanout, dedup_key_for
from blockrent_sync.core.realtime import MARKETPLACE_CHANNEL, RealtimePublisher, user_channel
from blockrent_sync.core.utils.event_logger import log_event


def from_unix(timestamp) -> Optional[datetime]:
    """Convert a unix timestamp to a naive UTC datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)


@dataclass
class DispatchReport:
    """Outcome of one ``dispatch_batch`` call."""
    total: int = 0
    succeeded: int = 0
    failed: List[LedgerEvent] = field(default_factory=list)
    lanes: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed


class EventDispatcher:
    """Reconcile ledger events into the cache."""

    def __init__(
        self,
        feed: LedgerFeed,
        cache: CacheStore,
        resolver: MetadataResolver,
        notifier: NotificationFanout,
        publisher: Optional[RealtimePublisher] = None,
        activity: Optional[ActivityRecorder] = None,
        max_workers: int = 8,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize dispatcher.

        Args:
            feed: Ledger feed, used for lazy block timestamp lookups
            cache: Cache store
            resolver: Metadata resolver for listing documents
            notifier: Notification fanout
            publisher: Realtime publisher for broadcasts (optional)
            activity: Activity recorder (optional)
            max_workers: Number of lanes processed concurrently
            max_attempts: Handler attempts before an event is dead-lettered
            retry_backoff: Seconds to wait before retry n is ``n * retry_backoff``
            sleep: Sleep function (injectable for tests)
        """
        self.feed = feed
        self.cache = cache
        self.resolver = resolver
        self.notifier = notifier
        self.publisher = publisher
        self.activity = activity
        self.max_attempts = max(max_attempts, 1)
        self.retry_backoff = retry_backoff
        self._sleep = sleep

        self.executor = ThreadPoolExecutor(max_workers=max(max_workers, 1), thread_name_prefix="dispatch")
        self._block_timestamp = lru_cache(maxsize=1024)(feed.get_block_timestamp)

        self._handlers: Dict[str, Callable[[LedgerEvent], None]] = {
            LISTING_CREATED: self._handle_listing_created,
            TRANSACTION_STARTED: self._handle_transaction_started,
            TRANSACTION_CONFIRMED: self._handle_transaction_confirmed,
            TRANSACTION_COMPLETED: self._handle_transaction_completed,
            DISPUTE_CREATED: self._handle_dispute_created,
            DISPUTE_RESOLVED: self._handle_dispute_resolved,
            REVIEW_SUBMITTED: self._handle_review_submitted,
        }

    # ---- dispatch -------------------------------------------------------

    def dispatch(self, event: LedgerEvent) -> bool:
        """
        Reconcile one event, retrying and dead-lettering on failure.

        Args:
            event: Ledger event

        Returns:
            True if the event was reconciled
        """
        error, attempts = self._run_with_retries(event)
        if error is None:
            return True
        self._dead_letter(event, error, attempts)
        return False

    def dispatch_batch(self, events: Iterable[LedgerEvent]) -> DispatchReport:
        """
        Reconcile a set of events and wait for all of them.

        Events are ordered by chain position and split into lanes by the
        listing they belong to. Each lane runs sequentially on the worker
        pool; lanes run concurrently.

        Args:
            events: Events from one block range, in any order

        Returns:
            DispatchReport for the batch
        """
        ordered = sorted(events, key=lambda e: e.position)
        report = DispatchReport(total=len(ordered))
        if not ordered:
            return report

        lanes = self._partition(ordered)
        report.lanes = len(lanes)
        log.debug(f"Dispatching {len(ordered)} event(s) across {len(lanes)} lane(s)")

        futures = [self.executor.submit(self._run_lane, lane) for lane in lanes.values()]
        wait_for_all(futures)

        for future in futures:
            failed = future.result()
            report.failed.extend(failed)
        report.succeeded = report.total - len(report.failed)
        return report

    def _run_lane(self, events: List[LedgerEvent]) -> List[LedgerEvent]:
        failed = []
        for event in events:
            if not self.dispatch(event):
                failed.append(event)
        return failed

    def _run_with_retries(self, event: LedgerEvent) -> Tuple[Optional[Exception], int]:
        """Run the handler; return the last error (None on success) and the attempts made."""
        handler = self._handlers.get(event.event_name)
        if handler is None:
            log.warning(f"No handler for event {event.describe()}, skipping")
            return ReconciliationError(f"Unknown event type {event.event_name}", event), 0

        log_event(event)

        error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                handler(event)
                return None, attempt
            except (ReconciliationError, KeyError, TypeError) as e:
                # Retrying cannot fix missing rows or malformed arguments
                log.error(f"Cannot reconcile {event.describe()}: {e}")
                return e, attempt
            except Exception as e:
                error = e
                log.error(
                    f"Error handling {event.describe()} (attempt {attempt}/{self.max_attempts}): {e}",
                    exc_info=True
                )
                if attempt < self.max_attempts and self.retry_backoff > 0:
                    self._sleep(self.retry_backoff * attempt)
        return error, self.max_attempts

    def _partition(self, ordered: List[LedgerEvent]) -> "OrderedDict[str, List[LedgerEvent]]":
        """Group events into lanes keyed by their listing (or own id when unknown)."""
        tx_listing: Dict[int, int] = {}
        dispute_tx: Dict[int, int] = {}
        lanes: "OrderedDict[str, List[LedgerEvent]]" = OrderedDict()

        for event in ordered:
            key = self._lane_key(event, tx_listing, dispute_tx)
            lanes.setdefault(key, []).append(event)
        return lanes

    def _lane_key(self, event: LedgerEvent, tx_listing: Dict[int, int], dispute_tx: Dict[int, int]) -> str:
        args = event.args
        name = event.event_name
        try:
            if name == LISTING_CREATED:
                return f"listing:{int(args['listingId'])}"

            if name == TRANSACTION_STARTED:
                tx_listing[int(args['transactionId'])] = int(args['listingId'])
                return f"listing:{int(args['listingId'])}"

            if name == DISPUTE_RESOLVED:
                dispute_id = int(args['disputeId'])
                tx_id = dispute_tx.get(dispute_id)
                if tx_id is None:
                    dispute = self.cache.get_dispute(dispute_id)
                    if dispute is None:
                        return f"dispute:{dispute_id}"
                    tx_id = dispute['transaction_id']
            else:
                tx_id = int(args['transactionId'])
                if name == DISPUTE_CREATED:
                    dispute_tx[int(args['disputeId'])] = tx_id

            listing_id = tx_listing.get(tx_id)
            if listing_id is None:
                tx = self.cache.get_transaction(tx_id)
                if tx is None:
                    return f"transaction:{tx_id}"
                listing_id = tx['listing_id']
                tx_listing[tx_id] = listing_id
            return f"listing:{listing_id}"
        except (KeyError, TypeError, ValueError):
            # Malformed arguments, the handler will report it
            return f"event:{event.transaction_hash}:{event.log_index}"

    # ---- dead letters ---------------------------------------------------

    def _dead_letter(self, event: LedgerEvent, error: Exception, attempts: int):
        try:
            DeadLetterEvent.insert(
                event_name=event.event_name,
                args=event.args,
                block_number=event.block_number,
                tx_hash=event.transaction_hash,
                log_index=event.log_index,
                error=str(error),
                attempts=attempts,
            ).on_conflict(
                conflict_target=[DeadLetterEvent.tx_hash, DeadLetterEvent.log_index],
                update={
                    DeadLetterEvent.error: str(error),
                    DeadLetterEvent.attempts: DeadLetterEvent.attempts + attempts,
                    DeadLetterEvent.resolved: False,
                    DeadLetterEvent.resolved_at: None,
                }
            ).execute()
            log.warning(f"Event {event.describe()} dead-lettered: {error}")
        except Exception as e:
            log.error(f"Failed to dead-letter {event.describe()}: {e}", exc_info=True)

    def replay_dead_letters(self, limit: int = 100) -> Tuple[int, int]:
        """
        Re-dispatch unresolved dead-lettered events in chain order.

        Args:
            limit: Maximum number of events to replay

        Returns:
            Tuple of (resolved_count, still_failing_count)
        """
        rows = list(
            DeadLetterEvent.select()
            .where(DeadLetterEvent.resolved == False)  # noqa: E712
            .order_by(DeadLetterEvent.block_number, DeadLetterEvent.log_index)
            .limit(limit)
        )
        if not rows:
            log.info("No dead-lettered events to replay")
            return 0, 0

        resolved = 0
        for row in rows:
            event = LedgerEvent(
                event_name=row.event_name,
                args=row.args or {},
                block_number=row.block_number,
                transaction_hash=row.tx_hash,
                log_index=row.log_index,
            )
            error, attempts = self._run_with_retries(event)
            if error is None:
                DeadLetterEvent.update(resolved=True, resolved_at=datetime.now()).where(
                    DeadLetterEvent.id == row.id
                ).execute()
                resolved += 1
            else:
                DeadLetterEvent.update(
                    error=str(error),
                    attempts=DeadLetterEvent.attempts + attempts,
                ).where(DeadLetterEvent.id == row.id).execute()

        log.info(f"Dead-letter replay: {resolved} resolved, {len(rows) - resolved} still failing")
        return resolved, len(rows) - resolved

    # ---- side effects ---------------------------------------------------

    def _block_time(self, event: LedgerEvent) -> Optional[datetime]:
        return from_unix(self._block_timestamp(event.block_number))

    def _broadcast(self, channel: str, name: str, payload: dict):
        if self.publisher is None:
            return
        try:
            self.publisher.publish(channel, name, payload)
        except Exception as e:
            log.warning(f"Realtime broadcast '{name}' to {channel} failed: {e}")

    def _notify(self, event: LedgerEvent, recipient: str, type: str, title: str, message: str, data: dict):
        self.notifier.notify(
            recipient_wallet=recipient,
            type=type,
            title=title,
            message=message,
            data=data,
            dedup_key=dedup_key_for(event.transaction_hash, event.log_index, recipient, type),
        )

    # ---- handlers -------------------------------------------------------

    def _handle_listing_created(self, event: LedgerEvent):
        args = event.args
        listing_id = int(args['listingId'])
        owner = args['owner'].lower()

        document = self.resolver.resolve(args.get('ipfsHash'))
        fields = listing_fields(document, args.get('category'))
        created_at = self._block_time(event)

        # is_active, views and favorites are left to column defaults so a
        # replay never reactivates a sold listing or resets counters
        self.cache.upsert_listing({
            'listing_id': listing_id,
            'owner_wallet': owner,
            'price_wei': str(args['price']),
            'deposit_wei': str(args.get('deposit') or 0),
            'ipfs_hash': args.get('ipfsHash') or '',
            'is_for_rent': bool(args.get('isForRent')),
            'blockchain_created_at': created_at,
            'blockchain_updated_at': created_at,
            **fields,
        })
        log.info(f"Listing #{listing_id} cached (title: {fields['title']})")

        listing = self.cache.get_listing(listing_id)
        if listing:
            self._broadcast(MARKETPLACE_CHANNEL, 'listingCreated', listing)

        if self.activity:
            self.activity.record(
                owner, 'create', 'listing', str(listing_id),
                {'listingId': listing_id, 'transactionHash': event.transaction_hash},
            )

    def _handle_transaction_started(self, event: LedgerEvent):
        args = event.args
        transaction_id = int(args['transactionId'])
        listing_id = int(args['listingId'])
        buyer = args['buyer'].lower()
        seller = args['seller'].lower()
        kind = TransactionKind.SALE if int(args['transactionType']) == TRANSACTION_TYPE_SALE else TransactionKind.RENT

        self.cache.upsert_transaction({
            'transaction_id': transaction_id,
            'listing_id': listing_id,
            'buyer_wallet': buyer,
            'seller_wallet': seller,
            'price_wei': str(args['amount']),
            'status': TransactionStatus.ACTIVE,
            'tx_hash': event.transaction_hash,
            'tx_type': kind,
            'blockchain_created_at': self._block_time(event),
        })

        if kind == TransactionKind.SALE and not self.cache.set_listing_active(listing_id, False):
            log.warning(f"Sale #{transaction_id} references uncached listing #{listing_id}")

        payload = {'transactionId': transaction_id, 'listingId': listing_id}
        self._broadcast(user_channel(buyer), 'transactionCreated', payload)
        self._broadcast(user_channel(seller), 'newSale', payload)

        self._notify(
            event, buyer, 'transaction_created', 'Purchase Initiated',
            f"Your purchase has been initiated for listing #{listing_id}", payload,
        )
        self._notify(
            event, seller, 'new_sale', 'New Sale',
            f"New purchase for your listing #{listing_id}", payload,
        )

    def _handle_transaction_confirmed(self, event: LedgerEvent):
        transaction_id = int(event.args['transactionId'])
        confirmed_by = event.args['confirmedBy'].lower()

        tx = self.cache.get_transaction(transaction_id)
        if tx is None:
            raise ReconciliationError(f"Transaction #{transaction_id} is not cached", event)

        if tx['buyer_wallet'].lower() == confirmed_by:
            party, other = 'buyer', tx['seller_wallet']
        elif tx['seller_wallet'].lower() == confirmed_by:
            party, other = 'seller', tx['buyer_wallet']
        else:
            raise ReconciliationError(
                f"{confirmed_by} is not a party of transaction #{transaction_id}", event
            )

        self.cache.confirm_transaction(transaction_id, party)

        self._broadcast(user_channel(other), 'transactionConfirmed', {
            'transactionId': transaction_id,
            'confirmedBy': confirmed_by,
        })
        self._notify(
            event, other, 'transaction_confirmed', 'Transaction Confirmed',
            f"Transaction #{transaction_id} has been confirmed by {party}",
            {'transactionId': transaction_id},
        )

    def _handle_transaction_completed(self, event: LedgerEvent):
        transaction_id = int(event.args['transactionId'])
        completed_at = from_unix(event.args.get('timestamp'))

        tx = self.cache.get_transaction(transaction_id)
        if tx is None:
            raise ReconciliationError(f"Transaction #{transaction_id} is not cached", event)

        if not self.cache.transition_transaction(transaction_id, TransactionStatus.COMPLETED, completed_at):
            return

        payload = {'transactionId': transaction_id}
        for party in (tx['buyer_wallet'], tx['seller_wallet']):
            self._broadcast(user_channel(party), 'transactionCompleted', payload)
        for party in (tx['buyer_wallet'], tx['seller_wallet']):
            self._notify(
                event, party, 'transaction_completed', 'Transaction Completed',
                f"Transaction #{transaction_id} has been completed", payload,
            )

    def _handle_dispute_created(self, event: LedgerEvent):
        args = event.args
        dispute_id = int(args['disputeId'])
        transaction_id = int(args['transactionId'])
        initiator = args['initiator'].lower()

        tx = self.cache.get_transaction(transaction_id)
        if tx is None:
            raise ReconciliationError(f"Transaction #{transaction_id} is not cached", event)

        defendant = tx['seller_wallet'] if tx['buyer_wallet'].lower() == initiator else tx['buyer_wallet']
        defendant = defendant.lower()

        self.cache.upsert_dispute({
            'dispute_id': dispute_id,
            'transaction_id': transaction_id,
            'initiator_wallet': initiator,
            'defendant_wallet': defendant,
            'reason': args.get('reason') or '',
            'status': DisputeStatus.OPEN,
            'blockchain_created_at': self._block_time(event),
        })
        self.cache.transition_transaction(transaction_id, TransactionStatus.DISPUTED)

        payload = {'disputeId': dispute_id, 'transactionId': transaction_id}
        self._broadcast(user_channel(defendant), 'newDispute', payload)
        self._notify(
            event, defendant, 'new_dispute', 'Dispute Opened',
            f"A dispute has been opened for transaction #{transaction_id}", payload,
        )

    def _handle_dispute_resolved(self, event: LedgerEvent):
        args = event.args
        dispute_id = int(args['disputeId'])
        winner = args['winner'].lower()

        if not self.cache.resolve_dispute(dispute_id, winner, from_unix(args.get('timestamp'))):
            raise ReconciliationError(f"Dispute #{dispute_id} is not cached", event)

        dispute = self.cache.get_dispute(dispute_id)
        transaction_id = dispute['transaction_id']
        if dispute['initiator_wallet'].lower() == winner:
            loser = dispute['defendant_wallet'].lower()
        else:
            loser = dispute['initiator_wallet'].lower()

        payload = {'disputeId': dispute_id, 'winner': winner}
        self._broadcast(user_channel(winner), 'disputeResolved', payload)
        self._broadcast(user_channel(loser), 'disputeResolved', payload)

        data = {'disputeId': dispute_id, 'transactionId': transaction_id}
        self._notify(
            event, winner, 'dispute_resolved', 'Dispute Won',
            f"You have won the dispute for transaction #{transaction_id}", data,
        )
        self._notify(
            event, loser, 'dispute_resolved', 'Dispute Lost',
            f"You have lost the dispute for transaction #{transaction_id}", data,
        )

    def _handle_review_submitted(self, event: LedgerEvent):
        args = event.args
        review_id = int(args['reviewId'])
        transaction_id = int(args['transactionId'])
        reviewee = args['reviewee'].lower()
        rating = int(args['rating'])

        self.cache.upsert_review({
            'review_id': review_id,
            'transaction_id': transaction_id,
            'reviewer_wallet': args['reviewer'].lower(),
            'reviewee_wallet': reviewee,
            'rating': rating,
            'ipfs_hash': args.get('ipfsHash') or '',
            'blockchain_timestamp': self._block_time(event),
        })

        self._broadcast(user_channel(reviewee), 'newReview', {
            'rating': rating,
            'transactionId': transaction_id,
        })
        self._notify(
            event, reviewee, 'new_review', 'New Review',
            f"You received a {rating}-star review",
            {'transactionId': transaction_id, 'reviewId': review_id, 'rating': rating},
        )

    def shutdown(self, wait: bool = True):
        """Stop accepting work; with ``wait`` block until in-flight lanes finish."""
        log.info("Shutting down EventDispatcher...")
        self.executor.shutdown(wait=wait)
        log.info("EventDispatcher shut down")
