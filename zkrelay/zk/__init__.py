"""
ZK-SNARK Integration Module
===========================

Proof generation for income threshold claims.

Usage:
    from zkrelay.zk import ProofRequest, create_proof_provider

    prover = create_proof_provider(settings.prover)
    proof = await prover.generate(
        ProofRequest(claimant_id="0xABC", private_claim=60000, threshold=50000)
    )

Version: 0.1.0
"""

from zkrelay.zk.mock import MockProofProvider
from zkrelay.zk.models import (
    Proof,
    ProofMetadata,
    ProofRequest,
    PublicSignals,
    ZKProof,
)
from zkrelay.zk.prover import (
    ProofProvider,
    SnarkjsProofProvider,
    claimant_field_element,
    create_proof_provider,
)


__all__ = [
    # Provider
    "ProofProvider",
    "SnarkjsProofProvider",
    "MockProofProvider",
    "create_proof_provider",
    "claimant_field_element",
    # Models
    "Proof",
    "ProofMetadata",
    "ProofRequest",
    "PublicSignals",
    "ZKProof",
]
