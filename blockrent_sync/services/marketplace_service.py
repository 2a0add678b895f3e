"""
Marketplace read service.

Query layer over the cache tables for the read API. All data here is
ledger-derived and potentially stale; the synchronizer is the only writer.
"""

import logging
from typing import Any, Dict, List, Optional

from playhouse.shortcuts import model_to_dict

from blockrent_sync.core.cache_store import CacheStore
from blockrent_sync.core.models import DisputeCache, ReviewCache

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class MarketplaceService:
    """Service for querying cached listings, transactions, disputes and reviews."""

    def __init__(self, cache: Optional[CacheStore] = None):
        """
        Initialize marketplace service.

        Args:
            cache: CacheStore instance (a fresh one when omitted)
        """
        self.cache = cache or CacheStore()

    def get_listing(self, listing_id: int) -> Optional[Dict[str, Any]]:
        return self.cache.get_listing(listing_id)

    def search_listings(
        self,
        category: Optional[str] = None,
        owner: Optional[str] = None,
        is_for_rent: Optional[bool] = None,
        search: Optional[str] = None,
        include_inactive: bool = False,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Search active listings.

        Args:
            category: Exact category filter
            owner: Owner wallet filter
            is_for_rent: Rent/sale filter
            search: Substring matched against title and description
            include_inactive: Also return sold or deactivated listings
            limit: Page size (capped)
            offset: Page offset

        Returns:
            List of listing dicts, newest first
        """
        return self.cache.list_listings(
            category=category,
            owner_wallet=owner,
            is_for_rent=is_for_rent,
            active_only=not include_inactive,
            search=search,
            limit=min(limit, MAX_PAGE_SIZE),
            offset=offset,
        )

    def get_transaction(self, transaction_id: int) -> Optional[Dict[str, Any]]:
        """Return a transaction with its disputes attached."""
        tx = self.cache.get_transaction(transaction_id)
        if tx is None:
            return None
        tx['disputes'] = [
            model_to_dict(row)
            for row in DisputeCache.select()
            .where(DisputeCache.transaction_id == transaction_id)
            .order_by(DisputeCache.dispute_id)
        ]
        return tx

    def get_wallet_transactions(self, wallet_address: str, limit: int = 20, offset: int = 0) -> List[Dict[str, Any]]:
        return self.cache.list_transactions_for_wallet(
            wallet_address, limit=min(limit, MAX_PAGE_SIZE), offset=offset
        )

    def get_dispute(self, dispute_id: int) -> Optional[Dict[str, Any]]:
        return self.cache.get_dispute(dispute_id)

    def get_wallet_reviews(self, wallet_address: str) -> Dict[str, Any]:
        """
        Reviews received by a wallet with the average rating.

        Returns:
            Dict with ``reviews``, ``count`` and ``average_rating`` (None if no reviews)
        """
        rows = list(
            ReviewCache.select()
            .where(ReviewCache.reviewee_wallet == wallet_address.lower())
            .order_by(ReviewCache.review_id.desc())
        )
        reviews = [model_to_dict(row) for row in rows]
        average = round(sum(r['rating'] for r in reviews) / len(reviews), 2) if reviews else None
        return {
            'wallet_address': wallet_address.lower(),
            'reviews': reviews,
            'count': len(reviews),
            'average_rating': average,
        }
