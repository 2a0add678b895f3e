"""Durable sync cursor stored in the system settings table."""

import threading
from datetime import datetime
from typing import Optional

from blockrent_sync.core.logger import log
from blockrent_sync.core.models import SystemSetting

CHECKPOINT_KEY = "last_synced_block"


def get_setting(key: str) -> Optional[str]:
    """
    Read a raw system setting.

    Args:
        key: Setting key

    Returns:
        Stored value or None if the key has never been written
    """
    try:
        return SystemSetting.get(SystemSetting.setting_key == key).setting_value
    except SystemSetting.DoesNotExist:
        return None


def update_setting(key: str, value: str):
    """
    Insert or overwrite a raw system setting.

    Args:
        key: Setting key
        value: New value
    """
    now = datetime.now()

    SystemSetting.insert(
        setting_key=key,
        setting_value=value,
        updated_at=now
    ).on_conflict(
        conflict_target=[SystemSetting.setting_key],
        update={
            SystemSetting.setting_value: value,
            SystemSetting.updated_at: now
        }
    ).execute()


class CheckpointStore:
    """
    Last fully reconciled block height.

    ``advance`` never moves the cursor backwards, so overlapping callers
    can report progress in any order without losing ground.
    """

    def __init__(self, key: str = CHECKPOINT_KEY):
        self.key = key
        self._lock = threading.Lock()

    def get(self) -> Optional[int]:
        """Return the checkpoint, or None if the engine has never synced."""
        value = get_setting(self.key)
        if value is None or value == '':
            return None
        try:
            return int(value)
        except ValueError:
            log.warning(f"Ignoring malformed checkpoint value for '{self.key}': {value!r}")
            return None

    def set(self, block_number: int):
        """Overwrite the checkpoint unconditionally (maintenance use only)."""
        if block_number < 0:
            raise ValueError(f"Checkpoint must be non-negative, got {block_number}")
        with self._lock:
            update_setting(self.key, str(block_number))

    def advance(self, block_number: int) -> bool:
        """
        Move the checkpoint forward to ``block_number``.

        Args:
            block_number: Highest block whose events are fully reconciled

        Returns:
            True if the stored value changed
        """
        with self._lock:
            current = self.get()
            if current is not None and block_number <= current:
                log.debug(f"Checkpoint {current} already at or past block {block_number}")
                return False
            update_setting(self.key, str(block_number))

        log.debug(f"Checkpoint advanced to block {block_number}")
        return True
