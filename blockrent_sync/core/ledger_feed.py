"""
Ledger event feed.

Abstracts the blockchain node so the connector and dispatcher can be driven
by a real JSON-RPC endpoint or by an in-memory fake in tests.
"""

import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import Web3RPCError

from blockrent_sync.core.abi import event_signature, load_abi
from blockrent_sync.core.events import EVENT_NAMES, LedgerEvent
from blockrent_sync.core.exceptions import FeedConnectionError
from blockrent_sync.core.logger import log


class LedgerFeed(ABC):
    """Read access to the contract's event history and chain head."""

    @abstractmethod
    def get_network(self) -> Dict[str, Any]:
        """Return network identity, at least ``chain_id``."""
        pass

    @abstractmethod
    def get_current_height(self) -> int:
        """Return the latest block number."""
        pass

    @abstractmethod
    def get_block_timestamp(self, block_number: int) -> int:
        """Return the unix timestamp of a block."""
        pass

    @abstractmethod
    def query_range(self, event_name: str, from_block: int, to_block: int) -> List[LedgerEvent]:
        """
        Return decoded events of one type in ``[from_block, to_block]``.

        Args:
            event_name: Contract event name
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
        """
        pass


def _normalize_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, HexBytes)):
        return Web3.to_hex(value)
    if isinstance(value, str) and Web3.is_address(value) and value.startswith('0x'):
        return value.lower()
    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]
    return value


class Web3LedgerFeed(LedgerFeed):
    """JSON-RPC feed backed by web3.py."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        abi: Optional[List[dict]] = None,
        proxy: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: float = 30.0,
        w3: Optional[Web3] = None
    ):
        """
        Initialize feed.

        Args:
            rpc_url: JSON-RPC endpoint
            contract_address: Marketplace contract address
            abi: Contract ABI (defaults to the built-in event ABI)
            proxy: HTTP proxy for RPC requests (optional, falls back to BLOCKCHAIN_RPC_PROXY)
            verify_ssl: Whether to verify SSL certificates
            timeout: RPC request timeout in seconds
            w3: Pre-built Web3 instance (optional)

        Raises:
            FeedConnectionError: If the contract address is missing or invalid
        """
        if not contract_address:
            raise FeedConnectionError("Contract address is not configured")
        if not Web3.is_address(contract_address):
            raise FeedConnectionError(f"Invalid contract address: {contract_address}")

        self.rpc_url = rpc_url
        self.abi = abi or load_abi()
        self.w3 = w3 or self._init_web3(rpc_url, proxy, verify_ssl, timeout)
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(address=self.contract_address, abi=self.abi)

        self._topics = {
            name: Web3.to_hex(Web3.keccak(text=event_signature(self.abi, name)))
            for name in EVENT_NAMES
        }

    @staticmethod
    def _init_web3(rpc_url: str, proxy: Optional[str], verify_ssl: bool, timeout: float) -> Web3:
        """Initialize Web3 client with proxy and SSL configuration."""
        proxy = proxy or os.environ.get('BLOCKCHAIN_RPC_PROXY')

        session = requests.Session()
        session.verify = verify_ssl
        if proxy:
            session.proxies = {
                'http': proxy,
                'https': proxy
            }
            log.info(f"Using proxy for blockchain RPC: {proxy} (SSL verify: {verify_ssl})")

        provider = Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}, session=session)
        return Web3(provider)

    def get_network(self) -> Dict[str, Any]:
        try:
            return {
                'chain_id': self.w3.eth.chain_id,
                'rpc_url': self.rpc_url,
                'contract_address': self.contract_address,
            }
        except Exception as e:
            raise FeedConnectionError(f"Cannot reach blockchain node at {self.rpc_url}: {e}") from e

    def get_current_height(self) -> int:
        return int(self.w3.eth.block_number)

    def get_block_timestamp(self, block_number: int) -> int:
        block = self.w3.eth.get_block(block_number)
        return int(block['timestamp'])

    def query_range(self, event_name: str, from_block: int, to_block: int) -> List[LedgerEvent]:
        if event_name not in self._topics:
            raise KeyError(f"Unknown event: {event_name}")
        if from_block > to_block:
            return []

        logs = self._get_logs(event_name, from_block, to_block)
        event_type = getattr(self.contract.events, event_name)()

        events = []
        for raw in logs:
            decoded = event_type.process_log(raw)
            events.append(LedgerEvent(
                event_name=event_name,
                args={k: _normalize_value(v) for k, v in dict(decoded['args']).items()},
                block_number=int(decoded['blockNumber']),
                transaction_hash=Web3.to_hex(decoded['transactionHash']),
                log_index=int(decoded['logIndex']),
            ))
        return events

    def _get_logs(self, event_name: str, from_block: int, to_block: int) -> list:
        """Fetch raw logs, splitting the range when the node rejects it as too large."""
        try:
            return list(self.w3.eth.get_logs({
                'fromBlock': from_block,
                'toBlock': to_block,
                'address': self.contract_address,
                'topics': [self._topics[event_name]],
            }))
        except (ValueError, Web3RPCError) as e:
            msg = str(e).lower()
            if from_block >= to_block or not ("more than" in msg or "too many" in msg or "range" in msg):
                raise
            middle = (from_block + to_block) // 2
            log.warning(
                f"get_logs for {event_name} {from_block}-{to_block} too large, "
                f"splitting at block {middle}"
            )
            return (
                self._get_logs(event_name, from_block, middle)
                + self._get_logs(event_name, middle + 1, to_block)
            )
