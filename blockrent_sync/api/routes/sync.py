"""
Synchronizer status endpoints.
"""

from fastapi import APIRouter, Depends

from blockrent_sync.api.dependencies import get_connector
from blockrent_sync.api.schemas import SyncStatusResponse
from blockrent_sync.core.chain_connector import ChainConnector


router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    connector: ChainConnector = Depends(get_connector)
) -> SyncStatusResponse:
    """
    Get synchronizer state.

    Returns:
        Checkpoint, chain head, counters and the last polling error
    """
    return SyncStatusResponse(**connector.status())
