"""
Proof Relay Routes
==================

API endpoints that run a claim through the relay pipeline.
"""

from enum import Enum

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from services.relay.dependencies import get_orchestrator
from zkrelay.logging import get_logger
from zkrelay.pipeline import PipelineOrchestrator, PipelineStage, PipelineState
from zkrelay.zk import ProofRequest


logger = get_logger(__name__)
router = APIRouter()

# Failures caused by the claim itself rather than infrastructure
INVALID_CLAIM_ERRORS = frozenset({"ProofGenerationError", "ContractRevertError"})


# ============================================================================
# Request/Response Models
# ============================================================================


class VerificationOutcome(str, Enum):
    """Outcome reported to the caller."""

    VALID = "valid"
    INVALID = "invalid"
    ERROR = "error"
    PENDING = "pending"


class VerifyClaimRequest(BaseModel):
    """Request to prove and relay an income claim."""

    claimant_id: str = Field(..., min_length=1, description="Claimant address or identifier")
    private_claim: int = Field(..., ge=0, description="Private income value")
    threshold: int = Field(..., ge=0, description="Public threshold to exceed")
    request_id: str | None = Field(None, description="Idempotency key")


class MerkleProofBody(BaseModel):
    """Inclusion proof sent to the verifying contract."""

    path: list[str]
    leaf_count: int
    leaf_index: int


class RelayBody(BaseModel):
    """Verification transaction outcome."""

    tx_hash: str
    success: bool
    block_number: int | None = None
    verified_event: bool = False


class FailureBody(BaseModel):
    """Where and why the pipeline stopped."""

    stage: str
    type: str
    reason: str
    tx_hash: str | None = None


class VerifyClaimResponse(BaseModel):
    """Pipeline result for one request."""

    status: VerificationOutcome
    request_id: str
    stage: str
    attestation_id: int | None = None
    leaf_digest: str | None = None
    merkle_proof: MerkleProofBody | None = None
    relay: RelayBody | None = None
    error: FailureBody | None = None


def build_response(state: PipelineState) -> VerifyClaimResponse:
    """Flatten a pipeline state into the public response shape."""
    if state.stage == PipelineStage.CONFIRMED:
        outcome = VerificationOutcome.VALID
    elif state.failure is not None:
        outcome = (
            VerificationOutcome.INVALID
            if state.failure.error in INVALID_CLAIM_ERRORS
            else VerificationOutcome.ERROR
        )
    else:
        outcome = VerificationOutcome.PENDING

    inclusion = state.inclusion_proof
    return VerifyClaimResponse(
        status=outcome,
        request_id=state.request_id,
        stage=state.stage.value,
        attestation_id=state.attestation.attestation_id if state.attestation else None,
        leaf_digest=state.attestation.leaf_digest if state.attestation else None,
        merkle_proof=(
            MerkleProofBody(
                path=list(inclusion.path),
                leaf_count=inclusion.leaf_count,
                leaf_index=inclusion.leaf_index,
            )
            if inclusion
            else None
        ),
        relay=(
            RelayBody(
                tx_hash=state.relay.tx_hash,
                success=state.relay.success,
                block_number=state.relay.block_number,
                verified_event=state.relay.verified_event,
            )
            if state.relay
            else None
        ),
        error=(
            FailureBody(
                stage=state.failure.stage.value,
                type=state.failure.error,
                reason=state.failure.reason,
                tx_hash=state.failure.tx_hash,
            )
            if state.failure
            else None
        ),
    )


_STATUS_CODES = {
    VerificationOutcome.VALID: 200,
    VerificationOutcome.INVALID: 422,
    VerificationOutcome.ERROR: 502,
}


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/verify", response_model=VerifyClaimResponse)
async def verify_claim(
    body: VerifyClaimRequest,
    response: Response,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> VerifyClaimResponse:
    """
    Prove an income claim and verify it on the target chain.

    Blocks until the pipeline reaches Confirmed or Failed. Replaying a
    request_id returns the recorded result without generating a new proof.

    Returns:
        200 for a valid claim, 422 for an invalid one, 502 for
        infrastructure failures
    """
    fields = body.model_dump(exclude_none=True)
    request = ProofRequest(**fields)

    logger.info(
        "claim_verification_requested",
        request_id=request.request_id,
        claimant_id=request.claimant_id,
        threshold=request.threshold,
    )

    state = await orchestrator.run(request)
    result = build_response(state)
    response.status_code = _STATUS_CODES.get(result.status, status.HTTP_200_OK)
    return result


@router.get("/{request_id}", response_model=VerifyClaimResponse)
async def get_progress(
    request_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> VerifyClaimResponse:
    """Latest pipeline state for a request."""
    state = orchestrator.progress(request_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Request {request_id} not found",
        )
    return build_response(state)
