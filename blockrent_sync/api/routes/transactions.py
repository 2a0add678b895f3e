"""
Cached transaction, dispute and review endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from blockrent_sync.api.dependencies import get_marketplace_service
from blockrent_sync.api.schemas import (
    DisputeResponse,
    TransactionResponse,
    WalletReviewsResponse,
)
from blockrent_sync.services.marketplace_service import MarketplaceService


router = APIRouter(tags=["transactions"])


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: int,
    service: MarketplaceService = Depends(get_marketplace_service)
) -> dict:
    """Get one cached transaction with its disputes."""
    tx = service.get_transaction(transaction_id)
    if tx is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return tx


@router.get("/wallets/{wallet_address}/transactions", response_model=List[TransactionResponse])
async def get_wallet_transactions(
    wallet_address: str,
    limit: int = Query(20, ge=1, le=100, description="Maximum number of transactions (1-100)"),
    offset: int = Query(0, ge=0, description="Offset for pagination"),
    service: MarketplaceService = Depends(get_marketplace_service)
) -> List[dict]:
    """Transactions where the wallet is buyer or seller."""
    return service.get_wallet_transactions(wallet_address, limit=limit, offset=offset)


@router.get("/wallets/{wallet_address}/reviews", response_model=WalletReviewsResponse)
async def get_wallet_reviews(
    wallet_address: str,
    service: MarketplaceService = Depends(get_marketplace_service)
) -> dict:
    """Reviews received by the wallet and its average rating."""
    return service.get_wallet_reviews(wallet_address)


@router.get("/disputes/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: int,
    service: MarketplaceService = Depends(get_marketplace_service)
) -> dict:
    """Get one cached dispute."""
    dispute = service.get_dispute(dispute_id)
    if dispute is None:
        raise HTTPException(status_code=404, detail=f"Dispute {dispute_id} not found")
    return dispute
