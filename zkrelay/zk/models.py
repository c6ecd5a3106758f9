"""
ZK-SNARK Data Models
====================

Pydantic models for income threshold proofs.

Version: 0.1.0
"""

import json
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class ZKProof(BaseModel):
    """
    A zero-knowledge proof.

    Compatible with snarkjs Groth16 proof format.
    """

    model_config = ConfigDict(frozen=True)

    # Proof points (G1 and G2 elements)
    pi_a: list[str] = Field(..., description="Proof point A (G1)")
    pi_b: list[list[str]] = Field(..., description="Proof point B (G2)")
    pi_c: list[str] = Field(..., description="Proof point C (G1)")

    # Protocol info
    protocol: str = Field(default="groth16")
    curve: str = Field(default="bn128")

    def to_calldata(self) -> list[int]:
        """Convert to Solidity calldata format (8 uint256)."""
        return [
            int(self.pi_a[0]),
            int(self.pi_a[1]),
            int(self.pi_b[0][0]),
            int(self.pi_b[0][1]),
            int(self.pi_b[1][0]),
            int(self.pi_b[1][1]),
            int(self.pi_c[0]),
            int(self.pi_c[1]),
        ]


class PublicSignals(BaseModel):
    """Ordered public signals disclosed to verifiers."""

    model_config = ConfigDict(frozen=True)

    signals: list[str] = Field(..., description="Public signals as decimal strings")


class ProofMetadata(BaseModel):
    """Metadata about a generated proof."""

    model_config = ConfigDict(frozen=True)

    circuit_name: str
    generated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    proving_time_ms: int = Field(..., ge=0)
    claimant_hash: str
    threshold: int


class Proof(BaseModel):
    """
    Proof bundle handed to the attestation ledger.

    Carries the verification key so the ledger can check the proof
    without a separate registration step.
    """

    model_config = ConfigDict(frozen=True)

    proof: ZKProof
    public_signals: PublicSignals
    metadata: ProofMetadata
    verification_key: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        """Proof record in the ledger's submission format."""
        return {
            "proofType": self.proof.protocol,
            "proofOptions": {"library": "snarkjs", "curve": self.proof.curve},
            "proofData": {
                "proof": self.proof.model_dump(),
                "publicSignals": self.public_signals.signals,
                "vk": self.verification_key,
            },
        }

    def canonical_bytes(self) -> bytes:
        """Canonical JSON encoding of the proof record."""
        return json.dumps(self.to_record(), sort_keys=True, separators=(",", ":")).encode()


class ProofRequest(BaseModel):
    """
    One claimant's request to prove income above a threshold.

    The private claim is never serialized and never shown in reprs.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid4().hex)
    claimant_id: str = Field(..., min_length=1, description="Claimant address or public key")
    private_claim: int = Field(..., ge=0, repr=False, exclude=True)
    threshold: int = Field(..., ge=0)
