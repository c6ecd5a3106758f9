"""
Mock Proof Provider
===================

Deterministic in-process prover for development and testing.

Version: 0.1.0
"""

import asyncio
import hashlib

from zkrelay.config.settings import ProverMode
from zkrelay.logging import get_logger
from zkrelay.zk.models import Proof, ProofMetadata, ProofRequest, PublicSignals, ZKProof
from zkrelay.zk.prover import FIELD_ORDER, ProofProvider, check_claim, claimant_field_element


logger = get_logger(__name__)

MOCK_VERIFICATION_KEY = {
    "protocol": "groth16",
    "curve": "bn128",
    "nPublic": 2,
}


class MockProofProvider(ProofProvider):
    """
    Fake Groth16 prover.

    Enforces the same claim > threshold rule as the circuit and derives
    the proof points from a hash of the inputs, so identical requests
    produce identical proofs.
    """

    def __init__(self, proving_delay: float = 0.0) -> None:
        self.proving_delay = proving_delay
        self.calls = 0

    @property
    def mode(self) -> ProverMode:
        return ProverMode.MOCK

    def _point(self, seed: bytes, label: str) -> str:
        digest = hashlib.sha256(seed + label.encode()).digest()
        return str(int.from_bytes(digest, "big") % FIELD_ORDER)

    async def generate(self, request: ProofRequest) -> Proof:
        """Generate a deterministic fake proof."""
        self.calls += 1
        check_claim(request)
        address = claimant_field_element(request.claimant_id)

        if self.proving_delay:
            await asyncio.sleep(self.proving_delay)

        seed = f"{address}:{request.private_claim}:{request.threshold}".encode()
        proof = ZKProof(
            pi_a=[self._point(seed, "a0"), self._point(seed, "a1"), "1"],
            pi_b=[
                [self._point(seed, "b00"), self._point(seed, "b01")],
                [self._point(seed, "b10"), self._point(seed, "b11")],
                ["1", "0"],
            ],
            pi_c=[self._point(seed, "c0"), self._point(seed, "c1"), "1"],
        )

        logger.debug("mock_proof_generated", claimant_hash=str(address))

        return Proof(
            proof=proof,
            public_signals=PublicSignals(signals=[str(address), str(request.threshold)]),
            metadata=ProofMetadata(
                circuit_name="incomeProof",
                proving_time_ms=int(self.proving_delay * 1000),
                claimant_hash=str(address),
                threshold=request.threshold,
            ),
            verification_key=MOCK_VERIFICATION_KEY,
        )
