"""
Database initialization script.

Creates all cache, checkpoint and side-effect tables.
Run this script before starting the synchronizer for the first time.

Usage:
    python -m blockrent_sync.scripts.init_db [config.yaml]
"""

import logging
import sys

from blockrent_sync.core.config_loader import apply_defaults, load_config
from blockrent_sync.core.database_handler import DatabaseHandler
from blockrent_sync.core.models import ALL_MODELS


logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
logger = logging.getLogger(__name__)


def main(config_path: str = "config.yaml"):
    """Initialize database and create all tables."""
    try:
        try:
            config = load_config(config_path)
        except FileNotFoundError:
            # DATABASE_URL alone is enough to create tables
            logger.info(f"{config_path} not found, using environment defaults")
            config = apply_defaults({})

        database = DatabaseHandler.initialize_database(config['database']['url'])
        logger.info(f"Created tables: {', '.join(m._meta.table_name for m in ALL_MODELS)}")

        # Verify tables exist
        tables = database.get_tables()
        logger.info(f"Tables in database: {tables}")
        logger.info("✅ All database tables created successfully!")

        DatabaseHandler.close_database()

    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else "config.yaml")
