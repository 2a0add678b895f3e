"""Configuration loading utilities."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from blockrent_sync.core.logger import log

DEFAULT_RPC_URL = "http://127.0.0.1:8545"
DEFAULT_GATEWAY_URL = "https://gateway.pinata.cloud/ipfs"
DEFAULT_DATABASE_URL = "sqlite:///blockrent_sync.db"

# Non-negative integer settings of the sync section and their defaults
_SYNC_INT_DEFAULTS = {
    'default_window': 10000,
    'backfill_chunk_size': 2000,
    'confirmations': 0,
    'max_workers': 8,
    'max_attempts': 3,
}

# Non-negative float settings of the sync section and their defaults
_SYNC_FLOAT_DEFAULTS = {
    'poll_interval_seconds': 5.0,
    'request_timeout': 30.0,
    'retry_backoff_seconds': 0.5,
}


def load_config(path: str = "config.yaml") -> dict:
    """
    Load YAML configuration file from specified path and return as dictionary.

    Environment variables from the project's ``.env`` file are loaded first
    so that defaults such as ``CONTRACT_ADDRESS`` can be picked up while the
    sections are validated.

    Args:
        path: Configuration file path (default: config.yaml)

    Returns:
        Configuration dictionary with validated ``sync``, ``metadata``,
        ``database``, ``logging`` and ``realtime`` sections

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        ValueError: If configuration file is empty or invalid
    """
    # __file__ is blockrent_sync/core/config_loader.py, project root is 3 levels up
    root_dir = Path(__file__).parent.parent.parent
    env_path = root_dir / '.env'
    if env_path.exists():
        load_dotenv(env_path)
        log.info(f"Loaded .env file: {env_path}")
    else:
        log.info("Note: .env file not found, will use system environment variables")

    config_path = Path(path)

    if not config_path.is_absolute():
        config_path = root_dir / path

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file does not exist: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f)

    if not config:
        raise ValueError(f"Configuration file is empty or has invalid format: {path}")

    return apply_defaults(config)


def apply_defaults(config: dict) -> dict:
    """
    Validate every known section of a configuration dictionary in place.

    Args:
        config: Raw configuration dictionary

    Returns:
        The same dictionary with defaults filled in
    """
    config['sync'] = _validate_sync_config(config.get('sync') or {})
    config['metadata'] = _validate_metadata_config(config.get('metadata') or {})

    database = config.get('database') or {}
    database.setdefault('url', os.environ.get('DATABASE_URL') or DEFAULT_DATABASE_URL)
    config['database'] = database

    logging_cfg = config.get('logging') or {}
    logging_cfg.setdefault('log_dir', 'logs')
    logging_cfg.setdefault('level', 'INFO')
    config['logging'] = logging_cfg

    realtime = config.get('realtime') or {}
    realtime.setdefault('max_workers', 4)
    config['realtime'] = realtime

    api = config.get('api') or {}
    api.setdefault('host', '0.0.0.0')
    api.setdefault('port', 8000)
    # Run the synchronizer inside the API process so /ws sees its broadcasts
    api.setdefault('run_sync', True)
    config['api'] = api

    return config


def _validate_sync_config(sync: dict) -> dict:
    """
    Validate the ``sync`` section and set default values.

    Args:
        sync: Sync configuration dictionary

    Returns:
        Validated sync configuration

    Raises:
        ValueError: Configuration validation failed
    """
    if not isinstance(sync, dict):
        raise ValueError("'sync' configuration must be a dictionary")

    sync.setdefault('rpc_url', os.environ.get('BLOCKCHAIN_RPC_URL') or DEFAULT_RPC_URL)
    # An empty contract address is allowed: synchronization is simply disabled
    sync.setdefault('contract_address', os.environ.get('CONTRACT_ADDRESS') or '')
    sync.setdefault('abi_path', None)
    sync.setdefault('proxy', None)
    sync.setdefault('verify_ssl', True)

    for key, default in _SYNC_INT_DEFAULTS.items():
        value = sync.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"sync.{key} must be a non-negative integer, current value: {value}")
        sync[key] = value

    for key, default in _SYNC_FLOAT_DEFAULTS.items():
        value = sync.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"sync.{key} must be a non-negative number, current value: {value}")
        sync[key] = float(value)

    if sync['max_workers'] < 1:
        raise ValueError("sync.max_workers must be at least 1")
    if sync['max_attempts'] < 1:
        raise ValueError("sync.max_attempts must be at least 1")

    return sync


def _validate_metadata_config(metadata: dict) -> dict:
    """
    Validate the ``metadata`` section (content-addressed store gateway).

    Args:
        metadata: Metadata configuration dictionary

    Returns:
        Validated metadata configuration

    Raises:
        ValueError: Configuration validation failed
    """
    metadata.setdefault(
        'gateway_url',
        os.environ.get('PINATA_GATEWAY_URL') or DEFAULT_GATEWAY_URL
    )
    metadata['gateway_url'] = metadata['gateway_url'].rstrip('/')

    timeout = metadata.setdefault('timeout_seconds', 5)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError(f"metadata.timeout_seconds must be positive, current value: {timeout}")

    max_bytes = metadata.setdefault('max_bytes', 5 * 1024 * 1024)
    if isinstance(max_bytes, bool) or not isinstance(max_bytes, int) or max_bytes <= 0:
        raise ValueError(f"metadata.max_bytes must be a positive integer, current value: {max_bytes}")

    return metadata
