"""
ZK-SNARK Proof Generation
=========================

Proof provider interface and the snarkjs-backed implementation.

The orchestrator treats proof generation as an opaque, side-effect-free
call: `generate(request) -> Proof`, raising ProofGenerationError on any
failure.

Version: 0.1.0
"""

import asyncio
import hashlib
import json
import shlex
import subprocess
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from zkrelay.config.settings import ProverMode, ProverSettings
from zkrelay.errors import ProofGenerationError
from zkrelay.logging import get_logger
from zkrelay.zk.models import Proof, ProofMetadata, ProofRequest, PublicSignals, ZKProof


logger = get_logger(__name__)

# BN254 scalar field order
FIELD_ORDER = 21888242871839275222246405745257275088548364400416034343698204186575808495617


def claimant_field_element(claimant_id: str) -> int:
    """
    Map a claimant identifier to a field element.

    Hex addresses are used as-is; anything else is SHA-256 hashed and
    reduced mod the field order.
    """
    if claimant_id.lower().startswith("0x"):
        try:
            return int(claimant_id, 16) % FIELD_ORDER
        except ValueError as e:
            raise ProofGenerationError(f"Malformed claimant address: {claimant_id}") from e

    digest = hashlib.sha256(claimant_id.encode()).digest()
    return int.from_bytes(digest, "big") % FIELD_ORDER


def check_claim(request: ProofRequest) -> None:
    """Reject inputs the income circuit cannot satisfy."""
    if request.private_claim <= request.threshold:
        raise ProofGenerationError("Claim does not exceed threshold")


class ProofProvider(ABC):
    """Abstract proof generator."""

    @property
    @abstractmethod
    def mode(self) -> ProverMode:
        """Get the prover mode."""
        ...

    @abstractmethod
    async def generate(self, request: ProofRequest) -> Proof:
        """
        Generate a proof that the private claim exceeds the threshold.

        Args:
            request: Claimant, private claim and public threshold

        Returns:
            Proof bundle ready for ledger submission

        Raises:
            ProofGenerationError: On malformed input or circuit failure
        """
        ...


class SnarkjsProofProvider(ProofProvider):
    """
    Groth16 prover that shells out to `snarkjs groth16 fullprove`.

    Each proof runs in its own temporary directory, so concurrent
    requests never share input or output files.
    """

    def __init__(
        self,
        build_dir: str | Path,
        circuit_name: str = "incomeProof",
        zkey_file: str = "incomeProof_0001.zkey",
        verification_key_file: str = "verification_key.json",
        snarkjs_command: str = "npx snarkjs",
    ) -> None:
        self.build_dir = Path(build_dir)
        self.circuit_name = circuit_name
        self.wasm_path = self.build_dir / f"{circuit_name}_js" / f"{circuit_name}.wasm"
        self.zkey_path = self.build_dir / zkey_file
        self.vkey_path = self.build_dir / verification_key_file
        self._command = shlex.split(snarkjs_command)
        self._vkey: dict[str, Any] | None = None

        if not self.build_dir.exists():
            logger.warning("zk_circuit_build_dir_not_found", path=str(self.build_dir))

    @property
    def mode(self) -> ProverMode:
        return ProverMode.SNARKJS

    def verification_key(self) -> dict[str, Any]:
        """Load and cache the verification key."""
        if self._vkey is None:
            if not self.vkey_path.exists():
                raise ProofGenerationError(f"Verification key not found: {self.vkey_path}")
            self._vkey = json.loads(self.vkey_path.read_text())
            logger.info("verification_key_loaded", path=str(self.vkey_path))
        return self._vkey

    async def _run_snarkjs(self, input_data: dict[str, Any]) -> tuple[dict, list[str], int]:
        """
        Run snarkjs to generate a proof.

        Returns:
            Tuple of (proof_json, public_signals, proving_time_ms)
        """
        if not self.wasm_path.exists():
            raise ProofGenerationError(f"Circuit WASM not found: {self.wasm_path}")
        if not self.zkey_path.exists():
            raise ProofGenerationError(f"Proving key not found: {self.zkey_path}")

        with tempfile.TemporaryDirectory(prefix="zkrelay-") as workdir:
            work = Path(workdir)
            input_file = work / "input.json"
            proof_file = work / "proof.json"
            public_file = work / "public.json"
            input_file.write_text(json.dumps(input_data))

            start_time = time.time()
            try:
                result = await asyncio.to_thread(
                    subprocess.run,
                    [
                        *self._command,
                        "groth16",
                        "fullprove",
                        str(input_file),
                        str(self.wasm_path),
                        str(self.zkey_path),
                        str(proof_file),
                        str(public_file),
                    ],
                    capture_output=True,
                    text=True,
                )
            except OSError as e:
                raise ProofGenerationError(f"Could not start snarkjs: {e}") from e

            proving_time_ms = int((time.time() - start_time) * 1000)

            if result.returncode != 0:
                logger.error(
                    "snarkjs_proof_generation_failed",
                    stderr=result.stderr,
                    circuit=self.circuit_name,
                )
                raise ProofGenerationError(f"Proof generation failed: {result.stderr.strip()}")

            proof_json = json.loads(proof_file.read_text())
            public_signals = json.loads(public_file.read_text())

        return proof_json, public_signals, proving_time_ms

    async def generate(self, request: ProofRequest) -> Proof:
        """Generate an income threshold proof with snarkjs."""
        check_claim(request)
        address = claimant_field_element(request.claimant_id)
        vkey = self.verification_key()

        proof_json, public_signals, proving_time_ms = await self._run_snarkjs(
            {
                "address": str(address),
                "income": str(request.private_claim),
                "threshold": str(request.threshold),
            }
        )

        logger.info(
            "zk_proof_generated",
            circuit=self.circuit_name,
            proving_time_ms=proving_time_ms,
        )

        return Proof(
            proof=ZKProof(**proof_json),
            public_signals=PublicSignals(signals=[str(s) for s in public_signals]),
            metadata=ProofMetadata(
                circuit_name=self.circuit_name,
                proving_time_ms=proving_time_ms,
                claimant_hash=str(address),
                threshold=request.threshold,
            ),
            verification_key=vkey,
        )


def create_proof_provider(config: ProverSettings) -> ProofProvider:
    """
    Build the proof provider selected by configuration.

    Args:
        config: Prover settings

    Returns:
        ProofProvider instance
    """
    if config.mode == ProverMode.MOCK:
        from zkrelay.zk.mock import MockProofProvider

        provider: ProofProvider = MockProofProvider()
    elif config.mode == ProverMode.SNARKJS:
        provider = SnarkjsProofProvider(
            build_dir=config.build_dir,
            circuit_name=config.circuit_name,
            zkey_file=config.zkey_file,
            verification_key_file=config.verification_key_file,
            snarkjs_command=config.snarkjs_command,
        )
    else:
        raise ValueError(f"Unknown prover mode: {config.mode}")

    logger.info("proof_provider_initialized", mode=config.mode.value)
    return provider
