"""
Test Configuration
==================

Pytest fixtures for zkrelay tests.
"""

import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["PROVER_MODE"] = "mock"
os.environ["LEDGER_MODE"] = "mock"
os.environ["CHAIN_MODE"] = "mock"
os.environ["REGISTRY_BACKEND"] = "memory"

from zkrelay.chain import MockChainRelay  # noqa: E402
from zkrelay.ledger import MockAttestationClient  # noqa: E402
from zkrelay.pipeline import (  # noqa: E402
    InMemoryRelayRegistry,
    PipelineConfig,
    PipelineOrchestrator,
)
from zkrelay.zk import MockProofProvider, ProofRequest  # noqa: E402


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Use asyncio backend for async tests."""
    return "asyncio"


@pytest.fixture
def prover() -> MockProofProvider:
    return MockProofProvider()


@pytest.fixture
def ledger() -> MockAttestationClient:
    return MockAttestationClient()


@pytest.fixture
def chain() -> MockChainRelay:
    return MockChainRelay()


@pytest.fixture
def registry() -> InMemoryRelayRegistry:
    return InMemoryRelayRegistry()


@pytest.fixture
def fast_config() -> PipelineConfig:
    """Pipeline bounds small enough for unit tests."""
    return PipelineConfig(
        submit_max_attempts=3,
        submit_backoff_min=0,
        submit_backoff_max=0,
        finalization_timeout=1.0,
        inclusion_max_attempts=4,
        inclusion_backoff_min=0,
        inclusion_backoff_max=0,
        root_observed_timeout=1.0,
        shutdown_grace=2.0,
    )


@pytest.fixture
def orchestrator(
    prover: MockProofProvider,
    ledger: MockAttestationClient,
    chain: MockChainRelay,
    registry: InMemoryRelayRegistry,
    fast_config: PipelineConfig,
) -> PipelineOrchestrator:
    """Orchestrator over mocks, with finalized roots posted to the mock bridge."""
    ledger.add_finalization_listener(chain.post_attestation)
    return PipelineOrchestrator(prover, ledger, chain, registry, fast_config)


@pytest.fixture
def claim_request() -> ProofRequest:
    """Claim that clears its threshold."""
    return ProofRequest(claimant_id="0xABC", private_claim=60000, threshold=50000)


@pytest_asyncio.fixture
async def relay_client(
    orchestrator: PipelineOrchestrator,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Relay Service."""
    from services.relay.main import app

    app.state.orchestrator = orchestrator
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
    app.state.orchestrator = None
