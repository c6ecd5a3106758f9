"""
Relay Service Dependencies
==========================

Builds the pipeline from settings and exposes it to route handlers.
"""

from fastapi import HTTPException, Request, status

from zkrelay.chain import ChainRelay, MockChainRelay, create_chain_relay
from zkrelay.config import Settings
from zkrelay.ledger import MockAttestationClient, create_attestation_client
from zkrelay.logging import get_logger
from zkrelay.pipeline import PipelineConfig, PipelineOrchestrator, create_relay_registry
from zkrelay.zk import create_proof_provider


logger = get_logger(__name__)


def build_orchestrator(config: Settings) -> PipelineOrchestrator:
    """
    Construct every collaborator from configuration.

    When both the ledger and the chain are mocks, finalized roots are
    posted to the mock bridge so the pipeline can run end to end.
    """
    prover = create_proof_provider(config.prover)
    ledger = create_attestation_client(config.ledger)
    chain = create_chain_relay(config.chain)
    registry = create_relay_registry(config)

    if isinstance(ledger, MockAttestationClient) and isinstance(chain, MockChainRelay):
        ledger.add_finalization_listener(chain.post_attestation)
        logger.info("mock_bridge_wired")

    return PipelineOrchestrator(
        prover=prover,
        ledger=ledger,
        chain=chain,
        registry=registry,
        config=PipelineConfig.from_settings(config.pipeline),
    )


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """FastAPI dependency returning the running orchestrator."""
    orchestrator: PipelineOrchestrator | None = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay pipeline is not running",
        )
    return orchestrator


def get_chain_relay(request: Request) -> ChainRelay:
    """FastAPI dependency returning the shared chain relay."""
    return get_orchestrator(request).chain
