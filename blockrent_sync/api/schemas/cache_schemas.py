"""
Pydantic schemas for cached marketplace rows.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class ListingResponse(BaseModel):
    """Cached listing."""

    listing_id: int = Field(..., description="Ledger-assigned listing ID")
    owner_wallet: str = Field(..., description="Owner wallet (lowercase)")
    category: Optional[str] = Field(None, description="Listing category")
    price_wei: str = Field(..., description="Price in wei (decimal string)")
    deposit_wei: str = Field("0", description="Rental deposit in wei (decimal string)")
    ipfs_hash: Optional[str] = Field(None, description="Content hash of the metadata document")
    is_for_rent: bool = Field(False, description="True for rentals, False for sales")
    is_active: bool = Field(True, description="False once sold or deactivated")
    views: int = 0
    favorites: int = 0
    title: str = "Untitled"
    description: str = ""
    location: str = "Global"
    tags: List[Any] = Field(default_factory=list)
    images: List[Any] = Field(default_factory=list)
    blockchain_created_at: Optional[datetime] = None
    blockchain_updated_at: Optional[datetime] = None
    last_synced: Optional[datetime] = None


class DisputeResponse(BaseModel):
    """Cached dispute."""

    dispute_id: int
    transaction_id: int
    initiator_wallet: str
    defendant_wallet: str
    reason: str = ""
    status: str = Field(..., description="OPEN or RESOLVED")
    winner_wallet: Optional[str] = None
    blockchain_created_at: Optional[datetime] = None
    blockchain_resolved_at: Optional[datetime] = None
    last_synced: Optional[datetime] = None


class TransactionResponse(BaseModel):
    """Cached transaction with its disputes."""

    transaction_id: int
    listing_id: int
    buyer_wallet: str
    seller_wallet: str
    price_wei: str = Field(..., description="Amount in wei (decimal string)")
    status: str = Field(..., description="PENDING, ACTIVE, DISPUTED, COMPLETED or CANCELLED")
    buyer_confirmed: bool = False
    seller_confirmed: bool = False
    tx_hash: Optional[str] = None
    tx_type: str = Field(..., description="SALE or RENT")
    blockchain_created_at: Optional[datetime] = None
    blockchain_completed_at: Optional[datetime] = None
    last_synced: Optional[datetime] = None
    disputes: List[DisputeResponse] = Field(default_factory=list)


class ReviewResponse(BaseModel):
    """Cached review."""

    review_id: int
    transaction_id: int
    reviewer_wallet: str
    reviewee_wallet: str
    rating: int
    ipfs_hash: Optional[str] = None
    blockchain_timestamp: Optional[datetime] = None
    last_synced: Optional[datetime] = None


class WalletReviewsResponse(BaseModel):
    """Reviews received by a wallet."""

    wallet_address: str
    reviews: List[ReviewResponse]
    count: int
    average_rating: Optional[float] = None
