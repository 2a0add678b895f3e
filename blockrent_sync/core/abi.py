"""
Marketplace contract ABI.

Only the event fragments are needed for synchronization. A full ABI (or a
Hardhat artifact containing one) can be supplied through ``sync.abi_path``
when the deployed contract differs from the built-in definition.
"""

import json
from pathlib import Path
from typing import List, Optional


def _event(name: str, inputs: list) -> dict:
    return {
        "anonymous": False,
        "inputs": [
            {"indexed": indexed, "internalType": type_, "name": arg, "type": type_}
            for arg, type_, indexed in inputs
        ],
        "name": name,
        "type": "event",
    }


# (argument name, solidity type, indexed)
MARKETPLACE_EVENTS_ABI = [
    _event("ListingCreated", [
        ("listingId", "uint256", True),
        ("owner", "address", True),
        ("category", "string", False),
        ("price", "uint256", False),
        ("deposit", "uint256", False),
        ("ipfsHash", "string", False),
        ("isForRent", "bool", False),
    ]),
    _event("TransactionStarted", [
        ("transactionId", "uint256", True),
        ("listingId", "uint256", True),
        ("buyer", "address", False),
        ("seller", "address", False),
        ("amount", "uint256", False),
        ("transactionType", "uint8", False),
    ]),
    _event("TransactionConfirmed", [
        ("transactionId", "uint256", True),
        ("confirmedBy", "address", True),
    ]),
    _event("TransactionCompleted", [
        ("transactionId", "uint256", True),
        ("timestamp", "uint256", False),
    ]),
    _event("DisputeCreated", [
        ("disputeId", "uint256", True),
        ("transactionId", "uint256", True),
        ("initiator", "address", False),
        ("reason", "string", False),
    ]),
    _event("DisputeResolved", [
        ("disputeId", "uint256", True),
        ("winner", "address", False),
        ("timestamp", "uint256", False),
    ]),
    _event("ReviewSubmitted", [
        ("reviewId", "uint256", True),
        ("transactionId", "uint256", True),
        ("reviewer", "address", False),
        ("reviewee", "address", False),
        ("rating", "uint8", False),
        ("ipfsHash", "string", False),
    ]),
]


def load_abi(abi_path: Optional[str] = None) -> List[dict]:
    """
    Load the contract ABI.

    Args:
        abi_path: JSON file holding either a bare ABI list or a Hardhat
            artifact with an ``abi`` key (optional)

    Returns:
        ABI list

    Raises:
        FileNotFoundError: If ``abi_path`` does not exist
        ValueError: If the file holds no ABI
    """
    if not abi_path:
        return MARKETPLACE_EVENTS_ABI

    path = Path(abi_path)
    if not path.exists():
        raise FileNotFoundError(f"ABI file does not exist: {abi_path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    abi = data.get('abi') if isinstance(data, dict) else data
    if not isinstance(abi, list) or not abi:
        raise ValueError(f"No ABI found in {abi_path}")
    return abi


def event_signature(abi: List[dict], event_name: str) -> str:
    """
    Build the canonical signature of an event, e.g. ``TransactionCompleted(uint256,uint256)``.

    Raises:
        KeyError: If the ABI has no such event
    """
    for entry in abi:
        if entry.get('type') == 'event' and entry.get('name') == event_name:
            types = ",".join(inp['type'] for inp in entry.get('inputs', []))
            return f"{event_name}({types})"
    raise KeyError(f"Event {event_name} not found in ABI")
