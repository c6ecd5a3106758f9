"""
Relay Reconciliation Routes
===========================

API endpoints for inspecting and reconciling verification transactions.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from services.relay.dependencies import get_orchestrator
from zkrelay.errors import SubmissionError
from zkrelay.logging import get_logger
from zkrelay.pipeline import PipelineOrchestrator, RelayRecord


logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_model=list[RelayRecord])
async def list_unresolved_relays(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> list[RelayRecord]:
    """Relays that were attempted but whose outcome is not known yet."""
    return await orchestrator.unresolved_relays()


@router.get("/{attestation_id}", response_model=RelayRecord)
async def get_relay(
    attestation_id: int,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> RelayRecord:
    """Recorded relay outcome for an attestation."""
    record = await orchestrator.relay_record(attestation_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No relay recorded for attestation {attestation_id}",
        )
    return record


@router.post("/{attestation_id}/reconcile", response_model=RelayRecord)
async def reconcile_relay(
    attestation_id: int,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> RelayRecord:
    """
    Re-check an unresolved relay against the chain.

    Resolved records are returned unchanged.
    """
    try:
        record = await orchestrator.reconcile(attestation_id)
    except SubmissionError as e:
        logger.error("relay_reconcile_failed", attestation_id=attestation_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Target chain unavailable",
        ) from e

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No relay recorded for attestation {attestation_id}",
        )
    return record
