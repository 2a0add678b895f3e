"""Logging configuration for the synchronizer, the API and the scripts."""

import logging
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "blockrent_sync"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Rotated files kept on disk (one per day)
LOG_RETENTION_DAYS = 30


def parse_level(level: Union[int, str, None]) -> int:
    """Turn a config level such as ``"debug"`` or ``10`` into a logging level."""
    if isinstance(level, int):
        return level
    return getattr(logging, str(level or 'INFO').upper(), logging.INFO)


def _rotating_file_handler(
    log_dir: str,
    log_filename: Optional[str],
    level: int,
    formatter: logging.Formatter
) -> TimedRotatingFileHandler:
    log_path = Path(log_dir)
    if not log_path.is_absolute():
        # Relative directories live under the project root
        log_path = Path(__file__).parent.parent.parent / log_dir
    log_path.mkdir(parents=True, exist_ok=True)

    stem = log_filename or datetime.now().strftime('%Y-%m-%d')
    handler = TimedRotatingFileHandler(
        filename=str(log_path / f"{stem}.log"),
        when='midnight',
        interval=1,
        backupCount=LOG_RETENTION_DAYS,
        encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.suffix = "%Y-%m-%d"
    return handler


def setup_logger(
    name: str = LOGGER_NAME,
    level: Union[int, str] = logging.INFO,
    log_dir: Optional[str] = None,
    log_filename: Optional[str] = None
) -> logging.Logger:
    """
    Configure and return the shared logger.

    Module loggers created with ``logging.getLogger(__name__)`` inside the
    package are children of this logger, so a single call covers the
    engine, the API and the maintenance scripts.

    Args:
        name: Logger name
        level: Logging level, numeric or by name
        log_dir: Directory for daily-rotated log files (optional, relative to project root)
        log_filename: Base log filename without extension (defaults to YYYY-MM-DD)

    Returns:
        Configured logger instance
    """
    level = parse_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear existing handlers to allow reconfiguration
    if logger.handlers:
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_dir:
        file_handler = _rotating_file_handler(log_dir, log_filename, level, formatter)
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {Path(file_handler.baseFilename).absolute()}")

    return logger


def setup_logger_from_config(logging_config: dict) -> logging.Logger:
    """
    Configure the shared logger from the ``logging`` config section.

    Args:
        logging_config: Dict with ``level``, ``log_dir`` and ``log_filename``
    """
    return setup_logger(
        level=logging_config.get('level', 'INFO'),
        log_dir=logging_config.get('log_dir'),
        log_filename=logging_config.get('log_filename'),
    )


# Console-only until a process applies its configuration
log = setup_logger()
