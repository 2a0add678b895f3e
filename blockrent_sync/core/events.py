"""Ledger event types emitted by the marketplace contract."""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

LISTING_CREATED = "ListingCreated"
TRANSACTION_STARTED = "TransactionStarted"
TRANSACTION_CONFIRMED = "TransactionConfirmed"
TRANSACTION_COMPLETED = "TransactionCompleted"
DISPUTE_CREATED = "DisputeCreated"
DISPUTE_RESOLVED = "DisputeResolved"
REVIEW_SUBMITTED = "ReviewSubmitted"

# Query order within a block range; events are re-sorted by log position anyway
EVENT_NAMES = (
    LISTING_CREATED,
    TRANSACTION_STARTED,
    TRANSACTION_CONFIRMED,
    TRANSACTION_COMPLETED,
    DISPUTE_CREATED,
    DISPUTE_RESOLVED,
    REVIEW_SUBMITTED,
)

# On-chain transactionType enum
TRANSACTION_TYPE_SALE = 0
TRANSACTION_TYPE_RENT = 1


@dataclass(frozen=True)
class LedgerEvent:
    """
    One decoded contract log.

    ``args`` uses the contract's argument names; integers stay Python ints
    (uint256 values do not fit any fixed-width column type) and addresses
    are lowercase hex strings.
    """
    event_name: str
    args: Dict[str, Any] = field(default_factory=dict)
    block_number: int = 0
    transaction_hash: str = ""
    log_index: int = 0

    @property
    def position(self) -> Tuple[int, int]:
        """Position of the log in the chain, used for ordering."""
        return self.block_number, self.log_index

    def describe(self) -> str:
        return (
            f"{self.event_name} (block={self.block_number}, "
            f"tx={self.transaction_hash}, log={self.log_index})"
        )
