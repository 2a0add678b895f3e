"""
Cached listing endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from blockrent_sync.api.dependencies import get_marketplace_service
from blockrent_sync.api.schemas import ListingResponse
from blockrent_sync.services.marketplace_service import MarketplaceService


router = APIRouter(prefix="/listings", tags=["listings"])


@router.get("", response_model=List[ListingResponse])
async def search_listings(
    category: Optional[str] = Query(None, description="Filter by category"),
    owner: Optional[str] = Query(None, description="Filter by owner wallet"),
    is_for_rent: Optional[bool] = Query(None, description="Filter rentals (true) or sales (false)"),
    search: Optional[str] = Query(None, description="Substring of title or description"),
    include_inactive: bool = Query(False, description="Include sold or deactivated listings"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of listings (1-100)"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    service: MarketplaceService = Depends(get_marketplace_service)
) -> List[dict]:
    """Search cached listings, newest first."""
    return service.search_listings(
        category=category,
        owner=owner,
        is_for_rent=is_for_rent,
        search=search,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: int,
    service: MarketplaceService = Depends(get_marketplace_service)
) -> dict:
    """Get one cached listing."""
    listing = service.get_listing(listing_id)
    if listing is None:
        raise HTTPException(status_code=404, detail=f"Listing {listing_id} not found")
    return listing
