"""
Main entry point for the Blockrent ledger synchronizer.

Initializes storage and the chain connector based on configuration.
"""

import signal
import sys
import threading
from typing import Optional

from blockrent_sync.core.chain_connector import ChainConnector, SyncContext
from blockrent_sync.core.config_loader import load_config
from blockrent_sync.core.database_handler import DatabaseHandler
from blockrent_sync.core.in_memory_realtime import InMemoryRealtimeBroker
from blockrent_sync.core.logger import log, setup_logger_from_config


def main(config_path: str = "config.yaml"):
    """Program entry point."""
    broker: Optional[InMemoryRealtimeBroker] = None
    context: Optional[SyncContext] = None
    connector: Optional[ChainConnector] = None
    shutdown = threading.Event()

    def cleanup():
        nonlocal broker, context, connector
        if connector:
            connector.stop()
            connector = None
        if context:
            context.close()
            context = None
        if broker:
            broker.shutdown()
            broker = None
        DatabaseHandler.close_database()

    try:
        # Load configuration
        config = load_config(config_path)

        setup_logger_from_config(config['logging'])
        log.info("Configuration loaded")

        DatabaseHandler.initialize_database(config['database']['url'])

        # Broadcasts from this process have no websocket clients; the broker
        # only keeps the publish path identical to the API process
        broker = InMemoryRealtimeBroker(max_workers=config['realtime']['max_workers'])
        context = SyncContext.from_config(config, publisher=broker)
        connector = ChainConnector(context)

        # Set up signal handler for graceful shutdown
        def signal_handler(sig, frame):
            log.info("Received exit signal, shutting down...")
            shutdown.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        handle = connector.start()
        if handle is None:
            log.warning("Synchronization is disabled, exiting")
            cleanup()
            return

        # Keep main thread running
        log.info("Synchronizer running, press Ctrl+C to exit...")
        while not shutdown.wait(3600):
            pass

        cleanup()
        log.info("Synchronizer stopped")

    except FileNotFoundError as e:
        cleanup()
        log.error(f"Configuration file error: {e}")
        sys.exit(1)
    except Exception as e:
        cleanup()
        log.error(f"Program startup failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
