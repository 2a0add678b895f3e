"""
Blockrent Sync: ledger-to-cache synchronization for the Blockrent marketplace

Keeps a queryable cache of listings, transactions, disputes and reviews
consistent with the marketplace smart contract:
- Engine: historical backfill plus live event reconciliation
- API: FastAPI read surface and realtime websocket bridge
"""

__version__ = "0.1.0"
