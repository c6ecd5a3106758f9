"""
Attestation Ledger Client Interface
===================================

Abstract base class and models for the attestation ledger session.

The ledger batches submitted proofs, commits them under a Merkle root and
finalizes that root. One client instance is shared by every in-flight
pipeline.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from zkrelay.config.settings import LedgerMode, LedgerSettings
from zkrelay.logging import get_logger
from zkrelay.zk.models import Proof

if TYPE_CHECKING:
    from zkrelay.ledger.subscription import LifecycleSubscription

logger = get_logger(__name__)


class AttestationStatus(str, Enum):
    """Attestation lifecycle status as reported by the ledger."""

    SUBMITTED = "Submitted"
    INCLUDED_IN_BLOCK = "IncludedInBlock"
    FINALIZED = "Finalized"
    FAILED = "Failed"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (AttestationStatus.FINALIZED, AttestationStatus.FAILED)


_STATUS_RANK = {
    AttestationStatus.SUBMITTED: 0,
    AttestationStatus.INCLUDED_IN_BLOCK: 1,
    AttestationStatus.FINALIZED: 2,
    AttestationStatus.FAILED: 3,
}


class Attestation(BaseModel):
    """A proof record accepted by the ledger."""

    model_config = ConfigDict(frozen=True)

    attestation_id: int = Field(..., ge=0, description="Ledger-assigned attestation id")
    leaf_digest: str = Field(..., description="Hash of the submitted proof record")
    status: AttestationStatus = AttestationStatus.SUBMITTED
    tx_hash: str | None = Field(default=None, description="Ledger inclusion tx hash")
    block_hash: str | None = Field(default=None, description="Ledger finalized block hash")
    failure_reason: str | None = None
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("leaf_digest")
    @classmethod
    def normalize_leaf(cls, v: str) -> str:
        return normalize_hash(v)

    def with_status(
        self,
        status: AttestationStatus,
        tx_hash: str | None = None,
        block_hash: str | None = None,
        reason: str | None = None,
    ) -> "Attestation":
        """
        Return a copy moved forward to `status`.

        Stale statuses and any change after a terminal status leave the
        attestation unchanged; status never regresses.
        """
        if self.status.is_terminal or status.rank <= self.status.rank:
            return self
        return self.model_copy(
            update={
                "status": status,
                "tx_hash": tx_hash or self.tx_hash,
                "block_hash": block_hash or self.block_hash,
                "failure_reason": reason,
            }
        )


class LifecycleEvent(BaseModel):
    """A single lifecycle notification for one attestation."""

    model_config = ConfigDict(frozen=True)

    attestation_id: int
    status: AttestationStatus
    tx_hash: str | None = None
    block_hash: str | None = None
    reason: str | None = None
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def normalize_hash(value: str | bytes) -> str:
    """Normalize a 32-byte hash to lowercase 0x-prefixed hex."""
    if isinstance(value, bytes):
        raw = value
    else:
        text = value[2:] if value.lower().startswith("0x") else value
        raw = bytes.fromhex(text)
    if len(raw) != 32:
        raise ValueError(f"Expected a 32-byte hash, got {len(raw)} bytes")
    return "0x" + raw.hex()


class MerkleInclusionProof(BaseModel):
    """Sibling path proving a leaf's membership under a finalized root."""

    model_config = ConfigDict(frozen=True)

    attestation_id: int
    leaf_digest: str
    path: tuple[str, ...] = Field(default=(), description="Sibling hashes, leaf to root")
    leaf_count: int = Field(..., ge=1)
    leaf_index: int = Field(..., ge=0)

    @field_validator("leaf_digest")
    @classmethod
    def normalize_leaf(cls, v: str) -> str:
        return normalize_hash(v)

    @field_validator("path", mode="before")
    @classmethod
    def normalize_path(cls, v: Any) -> tuple[str, ...]:
        return tuple(normalize_hash(p) for p in v)

    @model_validator(mode="after")
    def index_within_tree(self) -> "MerkleInclusionProof":
        if self.leaf_index >= self.leaf_count:
            raise ValueError(
                f"leaf_index {self.leaf_index} out of range for {self.leaf_count} leaves"
            )
        return self


class AttestationClient(ABC):
    """
    Abstract base class for attestation ledger sessions.

    Implementations must be safe to share between concurrent pipelines.
    """

    @property
    @abstractmethod
    def mode(self) -> LedgerMode:
        """Get the ledger mode."""
        ...

    @property
    @abstractmethod
    def active_subscriptions(self) -> int:
        """Number of lifecycle subscriptions still registered."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the ledger session."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the session and release every subscription."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check ledger health."""
        ...

    @abstractmethod
    async def submit(self, proof: Proof) -> Attestation:
        """
        Submit a proof record to the ledger.

        Args:
            proof: Proof bundle to attest

        Returns:
            Attestation in Submitted status

        Raises:
            SubmissionError: Transport or session failure (retryable)
            AttestationRejectedError: The ledger refused the record
        """
        ...

    @abstractmethod
    def subscribe_lifecycle(self, attestation_id: int) -> "LifecycleSubscription":
        """
        Subscribe to lifecycle events for one attestation.

        The returned subscription is an async iterator and async context
        manager. It ends after Failed, or after Finalized once
        IncludedInBlock has been delivered, and deregisters itself when
        closed.
        """
        ...

    @abstractmethod
    async def fetch_inclusion_proof(
        self,
        attestation_id: int,
        leaf_digest: str,
    ) -> MerkleInclusionProof:
        """
        Fetch the Merkle inclusion proof for a finalized leaf.

        Raises:
            NotReadyError: Attestation not finalized yet
            NotFoundError: Unknown attestation or leaf
        """
        ...


def create_attestation_client(config: LedgerSettings) -> AttestationClient:
    """
    Build the attestation client selected by configuration.

    Args:
        config: Ledger settings

    Returns:
        AttestationClient instance (not yet connected)
    """
    if config.mode == LedgerMode.MOCK:
        from zkrelay.ledger.mock import MockAttestationClient

        client: AttestationClient = MockAttestationClient()
    elif config.mode == LedgerMode.GATEWAY:
        from zkrelay.ledger.gateway import GatewayAttestationClient

        client = GatewayAttestationClient(
            base_url=config.url,
            api_key=config.api_key.get_secret_value(),
            poll_interval=config.poll_interval_seconds,
            timeout=config.request_timeout_seconds,
        )
    else:
        raise ValueError(f"Unknown ledger mode: {config.mode}")

    logger.info("attestation_client_initialized", mode=config.mode.value)
    return client
