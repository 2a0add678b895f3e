"""
Cache store for ledger-derived rows.

Every write is an upsert keyed by the identifier the contract assigned,
so replaying an event converges on the same row. Status columns only move
forward; a replayed or late event never drags a row back to an earlier
state.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Type

from peewee import Case, Field, Model
from playhouse.shortcuts import model_to_dict

from blockrent_sync.core.models import (
    ListingCache,
    TransactionCache,
    DisputeCache,
    ReviewCache,
)

logger = logging.getLogger(__name__)


class TransactionStatus:
    PENDING = 'PENDING'
    ACTIVE = 'ACTIVE'
    DISPUTED = 'DISPUTED'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'


class DisputeStatus:
    OPEN = 'OPEN'
    RESOLVED = 'RESOLVED'


class TransactionKind:
    SALE = 'SALE'
    RENT = 'RENT'


TRANSACTION_STATUS_RANK = {
    TransactionStatus.PENDING: 0,
    TransactionStatus.ACTIVE: 1,
    TransactionStatus.DISPUTED: 2,
    TransactionStatus.COMPLETED: 3,
    TransactionStatus.CANCELLED: 3,
}
TERMINAL_TRANSACTION_STATUSES = {TransactionStatus.COMPLETED, TransactionStatus.CANCELLED}

DISPUTE_STATUS_RANK = {
    DisputeStatus.OPEN: 0,
    DisputeStatus.RESOLVED: 1,
}


def can_transition(current: Optional[str], new: str, ranks: Dict[str, int], terminal=()) -> bool:
    """
    Check a forward-only status change.

    Args:
        current: Stored status (None for a row that does not exist yet)
        new: Requested status
        ranks: Ordering of statuses
        terminal: Statuses that never change once reached

    Returns:
        True if the change is allowed (re-asserting the same status is)
    """
    if new not in ranks:
        raise ValueError(f"Unknown status: {new}")
    if current is None or current == new:
        return True
    if current in terminal:
        return False
    return ranks[new] >= ranks.get(current, 0)


def allowed_sources(new: str, ranks: Dict[str, int], terminal=()) -> List[str]:
    """Stored statuses from which ``new`` may be written."""
    return [current for current in ranks if can_transition(current, new, ranks, terminal)]


def _to_dict(row: Optional[Model]) -> Optional[dict]:
    return model_to_dict(row) if row is not None else None


class CacheStore:
    """Idempotent upserts and point lookups over the cache tables."""

    # ---- generic helpers ------------------------------------------------

    @staticmethod
    def _upsert(
        model: Type[Model],
        key_field: Field,
        row: dict,
        status_field: Optional[Field] = None,
        allowed_from: Optional[List[str]] = None
    ):
        key = key_field.name
        if row.get(key) is None:
            raise ValueError(f"{model.__name__} upsert requires '{key}'")

        unknown = set(row) - set(model._meta.fields)
        if unknown:
            raise ValueError(f"{model.__name__} has no field(s): {', '.join(sorted(unknown))}")

        data = dict(row)
        data['last_synced'] = datetime.now()

        # Only overwrite the columns the caller supplied
        update = {model._meta.fields[name]: value for name, value in data.items() if name != key}
        if status_field is not None and status_field.name in data:
            # Evaluated against the stored row inside the same statement
            update[status_field] = Case(
                None,
                [(status_field.in_(allowed_from), data[status_field.name])],
                status_field
            )

        model.insert(**data).on_conflict(
            conflict_target=[key_field],
            update=update
        ).execute()

    @staticmethod
    def _get(model: Type[Model], key_field: Field, value) -> Optional[dict]:
        return _to_dict(model.get_or_none(key_field == value))

    # ---- listings -------------------------------------------------------

    def upsert_listing(self, row: dict):
        """Insert or update a listing keyed by ``listing_id``."""
        self._upsert(ListingCache, ListingCache.listing_id, row)

    def get_listing(self, listing_id: int) -> Optional[dict]:
        return self._get(ListingCache, ListingCache.listing_id, listing_id)

    def listing_exists(self, listing_id: int) -> bool:
        return ListingCache.select().where(ListingCache.listing_id == listing_id).exists()

    def set_listing_active(self, listing_id: int, active: bool) -> bool:
        """
        Soft-activate or deactivate a listing.

        Returns:
            False if the listing is not cached
        """
        updated = (
            ListingCache.update(is_active=active, last_synced=datetime.now())
            .where(ListingCache.listing_id == listing_id)
            .execute()
        )
        return updated > 0

    def list_listings(
        self,
        category: Optional[str] = None,
        owner_wallet: Optional[str] = None,
        is_for_rent: Optional[bool] = None,
        active_only: bool = True,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[dict]:
        """Filtered listing query, newest first."""
        query = ListingCache.select()
        if active_only:
            query = query.where(ListingCache.is_active == True)  # noqa: E712
        if category:
            query = query.where(ListingCache.category == category)
        if owner_wallet:
            query = query.where(ListingCache.owner_wallet == owner_wallet.lower())
        if is_for_rent is not None:
            query = query.where(ListingCache.is_for_rent == is_for_rent)
        if search:
            query = query.where(
                ListingCache.title.contains(search) | ListingCache.description.contains(search)
            )
        query = query.order_by(ListingCache.listing_id.desc()).limit(limit).offset(offset)
        return [model_to_dict(row) for row in query]

    # ---- transactions ---------------------------------------------------

    def upsert_transaction(self, row: dict):
        """
        Insert or update a transaction keyed by ``transaction_id``.

        A supplied ``status`` is only written when it is a legal forward
        move from the stored one; the check and the write are one statement.
        """
        allowed = None
        if 'status' in row:
            allowed = allowed_sources(row['status'], TRANSACTION_STATUS_RANK, TERMINAL_TRANSACTION_STATUSES)
        self._upsert(
            TransactionCache, TransactionCache.transaction_id, row,
            status_field=TransactionCache.status, allowed_from=allowed
        )

    def get_transaction(self, transaction_id: int) -> Optional[dict]:
        return self._get(TransactionCache, TransactionCache.transaction_id, transaction_id)

    def transition_transaction(
        self,
        transaction_id: int,
        status: str,
        completed_at: Optional[datetime] = None
    ) -> bool:
        """
        Check-and-set a transaction status.

        Args:
            transaction_id: Transaction identifier
            status: Requested status
            completed_at: Completion time to store alongside (optional)

        Returns:
            True if the row exists and the status was written
        """
        allowed = allowed_sources(status, TRANSACTION_STATUS_RANK, TERMINAL_TRANSACTION_STATUSES)
        fields = {'status': status, 'last_synced': datetime.now()}
        if completed_at is not None:
            fields['blockchain_completed_at'] = completed_at

        updated = (
            TransactionCache.update(**fields)
            .where(
                (TransactionCache.transaction_id == transaction_id)
                & (TransactionCache.status.in_(allowed))
            )
            .execute()
        )
        if updated:
            return True

        existing = TransactionCache.get_or_none(TransactionCache.transaction_id == transaction_id)
        if existing is None:
            logger.warning(f"Transaction {transaction_id} not cached, cannot set status {status}")
        else:
            logger.warning(
                f"Transaction {transaction_id}: illegal status change "
                f"{existing.status} -> {status} ignored"
            )
        return False

    def confirm_transaction(self, transaction_id: int, party: str) -> bool:
        """
        Record a party's confirmation.

        The flag is set unconditionally; the status is re-asserted to ACTIVE
        only while the transaction has not moved past it.

        Args:
            transaction_id: Transaction identifier
            party: ``buyer`` or ``seller``

        Returns:
            False if the transaction is not cached
        """
        if party not in ('buyer', 'seller'):
            raise ValueError(f"party must be 'buyer' or 'seller', got {party!r}")

        flag = TransactionCache.buyer_confirmed if party == 'buyer' else TransactionCache.seller_confirmed
        updated = (
            TransactionCache.update({flag: True, TransactionCache.last_synced: datetime.now()})
            .where(TransactionCache.transaction_id == transaction_id)
            .execute()
        )
        if not updated:
            return False

        (
            TransactionCache.update(status=TransactionStatus.ACTIVE)
            .where(
                (TransactionCache.transaction_id == transaction_id)
                & (TransactionCache.status.in_([TransactionStatus.PENDING, TransactionStatus.ACTIVE]))
            )
            .execute()
        )
        return True

    def list_transactions_for_wallet(self, wallet_address: str, limit: int = 50, offset: int = 0) -> List[dict]:
        wallet = wallet_address.lower()
        query = (
            TransactionCache.select()
            .where((TransactionCache.buyer_wallet == wallet) | (TransactionCache.seller_wallet == wallet))
            .order_by(TransactionCache.transaction_id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [model_to_dict(row) for row in query]

    # ---- disputes -------------------------------------------------------

    def upsert_dispute(self, row: dict):
        """Insert or update a dispute keyed by ``dispute_id``; status moves forward only."""
        allowed = None
        if 'status' in row:
            allowed = allowed_sources(row['status'], DISPUTE_STATUS_RANK, {DisputeStatus.RESOLVED})
        self._upsert(
            DisputeCache, DisputeCache.dispute_id, row,
            status_field=DisputeCache.status, allowed_from=allowed
        )

    def get_dispute(self, dispute_id: int) -> Optional[dict]:
        return self._get(DisputeCache, DisputeCache.dispute_id, dispute_id)

    def resolve_dispute(self, dispute_id: int, winner_wallet: str, resolved_at: Optional[datetime]) -> bool:
        """
        Mark a dispute resolved.

        Returns:
            False if the dispute is not cached
        """
        updated = (
            DisputeCache.update(
                status=DisputeStatus.RESOLVED,
                winner_wallet=winner_wallet.lower(),
                blockchain_resolved_at=resolved_at,
                last_synced=datetime.now(),
            )
            .where(DisputeCache.dispute_id == dispute_id)
            .execute()
        )
        return updated > 0

    # ---- reviews --------------------------------------------------------

    def upsert_review(self, row: dict):
        """Insert or update a review keyed by ``review_id``."""
        self._upsert(ReviewCache, ReviewCache.review_id, row)

    def get_review(self, review_id: int) -> Optional[dict]:
        return self._get(ReviewCache, ReviewCache.review_id, review_id)
