"""
Ledger event logging utilities.

Provides formatted logging for reconciled contract events.
"""

from typing import Any

from blockrent_sync.core.events import LedgerEvent
from blockrent_sync.core.logger import log

WEI_PER_ETHER = 10 ** 18


def format_wei(amount: Any) -> str:
    """
    Format a wei amount as ether for display.

    Args:
        amount: Amount in wei (int or decimal string)

    Returns:
        Human-readable amount, or the raw value if it is not numeric
    """
    try:
        wei = int(amount)
    except (TypeError, ValueError):
        return str(amount)
    whole, frac = divmod(wei, WEI_PER_ETHER)
    frac_str = f"{frac:018d}".rstrip('0')[:6]
    return f"{whole}.{frac_str} ETH" if frac_str else f"{whole} ETH"


def log_event(event: LedgerEvent) -> None:
    """
    Log a ledger event in a formatted block.

    Args:
        event: Decoded ledger event
    """
    log.info("╔════════════════════════════════════════════════════╗")
    log.info(f"║ Event: {event.event_name}")
    log.info(f"║ Block: {event.block_number} | Log index: {event.log_index}")
    log.info(f"║ Tx: {event.transaction_hash}")
    for name, value in event.args.items():
        if name in ('price', 'deposit', 'amount'):
            value = format_wei(value)
        log.info(f"║ {name}: {value}")
    log.info("╚════════════════════════════════════════════════════╝")
