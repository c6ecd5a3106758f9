"""
Attestation Ledger Module
=========================

Session with the ledger that batches proofs under finalized Merkle roots.

Usage:
    from zkrelay.ledger import create_attestation_client

    ledger = create_attestation_client(settings.ledger)
    await ledger.connect()
    attestation = await ledger.submit(proof)
    async with ledger.subscribe_lifecycle(attestation.attestation_id) as events:
        async for event in events:
            ...

Version: 0.1.0
"""

from zkrelay.ledger.client import (
    Attestation,
    AttestationClient,
    AttestationStatus,
    LifecycleEvent,
    MerkleInclusionProof,
    create_attestation_client,
    normalize_hash,
)
from zkrelay.ledger.gateway import GatewayAttestationClient
from zkrelay.ledger.merkle import merkle_path, merkle_root, verify_path
from zkrelay.ledger.mock import MockAttestationClient
from zkrelay.ledger.subscription import LifecycleSubscription


__all__ = [
    # Client
    "AttestationClient",
    "GatewayAttestationClient",
    "MockAttestationClient",
    "create_attestation_client",
    "LifecycleSubscription",
    # Models
    "Attestation",
    "AttestationStatus",
    "LifecycleEvent",
    "MerkleInclusionProof",
    "normalize_hash",
    # Merkle
    "merkle_root",
    "merkle_path",
    "verify_path",
]
