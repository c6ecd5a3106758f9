"""
Pipeline State
==============

Immutable per-request state machine for the relay pipeline.

Version: 0.1.0
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from zkrelay.chain.client import RelayResult, RootObservedEvent
from zkrelay.errors import InvalidTransitionError
from zkrelay.ledger.client import Attestation, MerkleInclusionProof
from zkrelay.zk.models import Proof, ProofRequest


class PipelineStage(str, Enum):
    """Stages a request moves through, in order."""

    CREATED = "Created"
    PROOF_GENERATED = "ProofGenerated"
    SUBMITTED = "Submitted"
    INCLUDED_IN_BLOCK = "IncludedInBlock"
    FINALIZED = "Finalized"
    INCLUSION_PROOF_FETCHED = "InclusionProofFetched"
    ROOT_OBSERVED_ON_CHAIN = "RootObservedOnChain"
    RELAYED = "Relayed"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"

    @property
    def rank(self) -> int:
        return _ORDER.index(self) if self in _ORDER else len(_ORDER)

    @property
    def next_stage(self) -> "PipelineStage | None":
        """The only stage `advance` accepts from this one."""
        if self not in _ORDER or self == PipelineStage.CONFIRMED:
            return None
        return _ORDER[_ORDER.index(self) + 1]


_ORDER = [
    PipelineStage.CREATED,
    PipelineStage.PROOF_GENERATED,
    PipelineStage.SUBMITTED,
    PipelineStage.INCLUDED_IN_BLOCK,
    PipelineStage.FINALIZED,
    PipelineStage.INCLUSION_PROOF_FETCHED,
    PipelineStage.ROOT_OBSERVED_ON_CHAIN,
    PipelineStage.RELAYED,
    PipelineStage.CONFIRMED,
]


class PipelineFailure(BaseModel):
    """Where and why a pipeline stopped."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage = Field(..., description="Stage that could not be reached")
    error: str = Field(..., description="Exception class name")
    reason: str
    tx_hash: str | None = None


class PipelineState(BaseModel):
    """
    Snapshot of one request's progress.

    Every transition returns a new state. `private_claim` never enters
    the state; only the claimant id and threshold are kept.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    claimant_id: str
    threshold: int
    stage: PipelineStage = PipelineStage.CREATED

    proof: Proof | None = None
    attestation: Attestation | None = None
    inclusion_proof: MerkleInclusionProof | None = None
    root_event: RootObservedEvent | None = None
    relay: RelayResult | None = None
    failure: PipelineFailure | None = None

    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def start(cls, request: ProofRequest) -> "PipelineState":
        return cls(
            request_id=request.request_id,
            claimant_id=request.claimant_id,
            threshold=request.threshold,
        )

    @property
    def is_terminal(self) -> bool:
        return self.stage in (PipelineStage.CONFIRMED, PipelineStage.FAILED)

    def advance(self, stage: PipelineStage, **updates: object) -> "PipelineState":
        """
        Move to the immediate next stage.

        Raises:
            InvalidTransitionError: `stage` is not the next stage
        """
        if stage != self.stage.next_stage:
            raise InvalidTransitionError(
                f"Cannot move from {self.stage.value} to {stage.value}"
            )
        return self.model_copy(
            update={**updates, "stage": stage, "updated_at": datetime.now(UTC)}
        )

    def fail(self, stage: PipelineStage, error: BaseException) -> "PipelineState":
        """
        Move to Failed, recording the stage that was being reached.

        Raises:
            InvalidTransitionError: The state is already terminal
        """
        if self.is_terminal:
            raise InvalidTransitionError(f"Pipeline already {self.stage.value}")
        failure = PipelineFailure(
            stage=stage,
            error=type(error).__name__,
            reason=str(error) or type(error).__name__,
            tx_hash=getattr(error, "tx_hash", None),
        )
        return self.model_copy(
            update={
                "stage": PipelineStage.FAILED,
                "failure": failure,
                "updated_at": datetime.now(UTC),
            }
        )
