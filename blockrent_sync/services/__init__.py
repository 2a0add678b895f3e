"""
Services layer for the marketplace cache.

Read-side queries shared by the API and maintenance scripts.
"""

from blockrent_sync.services.marketplace_service import MarketplaceService

__all__ = [
    'MarketplaceService',
]
