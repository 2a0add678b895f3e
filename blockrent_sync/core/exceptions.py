"""Exceptions raised inside the synchronization engine."""


class SyncError(Exception):
    """Base exception for ledger synchronization."""
    pass


class FeedConnectionError(SyncError):
    """The ledger feed could not be reached or the contract is not configured."""
    pass


class ReconciliationError(SyncError):
    """A ledger event could not be reconciled into the cache."""

    def __init__(self, message: str, event=None):
        super().__init__(message)
        self.event = event
