"""
FastAPI dependency injection.

Provides shared dependencies for API routes.
"""

from typing import Optional
import logging

from blockrent_sync.core.chain_connector import ChainConnector, SyncContext
from blockrent_sync.core.config_loader import apply_defaults, load_config
from blockrent_sync.core.database_handler import DatabaseHandler
from blockrent_sync.core.in_memory_realtime import InMemoryRealtimeBroker
from blockrent_sync.core.logger import setup_logger_from_config
from blockrent_sync.core.notification_fanout import NotificationFanout
from blockrent_sync.services.marketplace_service import MarketplaceService

logger = logging.getLogger(__name__)


# Global instances (initialized on startup)
_config: Optional[dict] = None
_broker: Optional[InMemoryRealtimeBroker] = None
_context: Optional[SyncContext] = None
_connector: Optional[ChainConnector] = None
_marketplace_service: Optional[MarketplaceService] = None
_notification_fanout: Optional[NotificationFanout] = None


def initialize_services(config: Optional[dict] = None):
    """
    Initialize all services on application startup.

    This should be called once when the FastAPI app starts.

    Args:
        config: Configuration dictionary (loaded from config.yaml when omitted)
    """
    global _config, _broker, _context, _connector
    global _marketplace_service, _notification_fanout

    if config is None:
        _config = load_config()
        setup_logger_from_config(_config['logging'])
    else:
        _config = apply_defaults(config)
    logger.info("Configuration loaded")

    DatabaseHandler.initialize_database(_config['database']['url'])
    logger.info("Database initialized")

    _broker = InMemoryRealtimeBroker(max_workers=_config['realtime']['max_workers'])
    logger.info(f"Realtime broker initialized with {_config['realtime']['max_workers']} workers")

    _context = SyncContext.from_config(_config, publisher=_broker)
    _connector = ChainConnector(_context)
    _marketplace_service = MarketplaceService(_context.cache)
    _notification_fanout = _context.notifier

    if _config['api']['run_sync']:
        logger.info("Starting blockchain sync inside the API process...")
        _connector.start()
    else:
        logger.info("Blockchain sync disabled for this process (api.run_sync = false)")

    logger.info("All services initialized successfully")


def shutdown_services():
    """Stop the synchronizer and release shared resources."""
    global _connector, _context, _broker

    if _connector is not None:
        _connector.stop()
        _connector = None
    if _context is not None:
        _context.close()
        _context = None
    if _broker is not None:
        _broker.shutdown()
        _broker = None

    DatabaseHandler.close_database()
    logger.info("Services shut down")


def get_broker() -> InMemoryRealtimeBroker:
    """Get realtime broker instance."""
    if _broker is None:
        raise RuntimeError("Services not initialized. Call initialize_services() first.")
    return _broker


def get_connector() -> ChainConnector:
    """Get chain connector instance."""
    if _connector is None:
        raise RuntimeError("Services not initialized. Call initialize_services() first.")
    return _connector


def get_marketplace_service() -> MarketplaceService:
    """Get marketplace service instance."""
    if _marketplace_service is None:
        raise RuntimeError("Services not initialized. Call initialize_services() first.")
    return _marketplace_service


def get_notification_fanout() -> NotificationFanout:
    """Get notification fanout instance."""
    if _notification_fanout is None:
        raise RuntimeError("Services not initialized. Call initialize_services() first.")
    return _notification_fanout
