"""
Claimant Routes
===============

Read-only queries against the verifying contract.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from services.relay.dependencies import get_chain_relay
from zkrelay.chain import ChainRelay
from zkrelay.errors import SubmissionError
from zkrelay.logging import get_logger


logger = get_logger(__name__)
router = APIRouter()


class VerifiedStatusResponse(BaseModel):
    """Verified flag for one address."""

    address: str
    verified: bool


@router.get("/{address}/verified", response_model=VerifiedStatusResponse)
async def get_verified_status(
    address: str,
    chain: ChainRelay = Depends(get_chain_relay),
) -> VerifiedStatusResponse:
    """Whether the verifying contract has recorded `address` as verified."""
    try:
        verified = await chain.has_verified(address)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid address: {address}",
        ) from e
    except SubmissionError as e:
        logger.error("verified_status_query_failed", address=address, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Target chain unavailable",
        ) from e

    return VerifiedStatusResponse(address=address, verified=verified)
