"""
zkrelay
=======

Relay pipeline that carries a private income-threshold proof from the
prover, through an attestation ledger, to a verifying contract on a
target chain.

Modules:
    - config: Configuration management with Pydantic Settings
    - logging: Structured logging with structlog
    - errors: Pipeline error taxonomy
    - zk: Proof generation (snarkjs / mock)
    - ledger: Attestation ledger session (gateway / mock)
    - chain: Target chain relay (web3 / mock)
    - pipeline: Per-request state machine and orchestrator

Version: 0.1.0
"""

__version__ = "0.1.0"

from zkrelay.config import settings
from zkrelay.logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "__version__",
]
