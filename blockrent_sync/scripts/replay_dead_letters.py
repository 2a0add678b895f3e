"""
Dead-letter replay script.

Re-dispatches ledger events whose reconciliation failed after every retry
(for example because the node or the database was unavailable), and marks
the ones that now succeed as resolved.

Usage:
    python -m blockrent_sync.scripts.replay_dead_letters [config.yaml] [--limit N]
"""

import argparse
import logging
import sys

from blockrent_sync.core.chain_connector import SyncContext
from blockrent_sync.core.config_loader import load_config
from blockrent_sync.core.database_handler import DatabaseHandler


logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Replay dead-lettered ledger events")
    parser.add_argument("config", nargs="?", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--limit", type=int, default=100, help="Maximum number of events to replay")
    args = parser.parse_args(argv)

    config = load_config(args.config)
    DatabaseHandler.initialize_database(config['database']['url'])

    context = SyncContext.from_config(config)
    if context.feed is None:
        logger.error("Ledger feed not available, cannot resolve block timestamps")
        return 1

    dispatcher = context.build_dispatcher()
    try:
        resolved, failing = dispatcher.replay_dead_letters(limit=args.limit)
        logger.info(f"Replay finished: {resolved} resolved, {failing} still failing")
    finally:
        dispatcher.shutdown(wait=True)
        context.close()
        DatabaseHandler.close_database()

    return 0 if failing == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
