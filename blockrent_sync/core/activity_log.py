"""Best-effort activity trail writer."""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from blockrent_sync.core.models import ActivityLog

logger = logging.getLogger(__name__)


class ActivityRecorder:
    """
    Write ``activity_log`` rows off the reconciliation path.

    Writes run on a single background thread; failures are logged and
    dropped.
    """

    def __init__(self, executor: Optional[ThreadPoolExecutor] = None):
        self.executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="activity-log")

    def record(
        self,
        wallet_address: Optional[str],
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> Optional[Future]:
        """
        Queue an activity entry.

        Args:
            wallet_address: Acting wallet
            action: Action name, e.g. ``create``
            entity_type: Entity kind, e.g. ``listing``
            entity_id: Entity identifier
            metadata: Extra structured data

        Returns:
            Future of the write, or None if it could not be queued
        """
        try:
            return self.executor.submit(
                self._write,
                wallet_address.lower() if wallet_address else None,
                action,
                entity_type,
                entity_id,
                metadata or {},
            )
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Activity '{action}' for {wallet_address} not recorded: {e}")
            return None

    @staticmethod
    def _write(wallet_address, action, entity_type, entity_id, metadata):
        try:
            ActivityLog.create(
                wallet_address=wallet_address,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
            )
        except Exception as e:
            logger.warning(f"Failed to record activity '{action}' for {wallet_address}: {e}")

    def shutdown(self, wait: bool = True):
        self.executor.shutdown(wait=wait)
