"""Tests for the relay service API."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from zkrelay.chain import MockChainRelay, TransactionStatus
from zkrelay.chain.mock import MOCK_RELAYER_ADDRESS
from zkrelay.errors import InvalidTransitionError
from zkrelay.ledger import MockAttestationClient
from zkrelay.pipeline import PipelineOrchestrator
from zkrelay.zk import MockProofProvider

VALID_CLAIM = {"claimant_id": "0xABC", "private_claim": 60000, "threshold": 50000}


class TestVerifyEndpoint:
    """Tests for POST /api/v1/proofs/verify."""

    @pytest.mark.asyncio
    async def test_valid_claim(self, relay_client: AsyncClient) -> None:
        """Test a claim above threshold is confirmed on chain."""
        response = await relay_client.post("/api/v1/proofs/verify", json=VALID_CLAIM)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "valid"
        assert data["stage"] == "Confirmed"
        assert data["attestation_id"] == 1
        assert data["leaf_digest"].startswith("0x")
        assert data["merkle_proof"]["leaf_count"] > data["merkle_proof"]["leaf_index"]
        assert data["relay"]["success"] is True
        assert data["relay"]["tx_hash"].startswith("0x")
        assert data["error"] is None
        assert "private_claim" not in response.text

    @pytest.mark.asyncio
    async def test_claim_below_threshold(self, relay_client: AsyncClient) -> None:
        """Test a claim below threshold is rejected before submission."""
        response = await relay_client.post(
            "/api/v1/proofs/verify",
            json={**VALID_CLAIM, "threshold": 70000},
        )

        assert response.status_code == 422
        data = response.json()
        assert data["status"] == "invalid"
        assert data["error"]["stage"] == "ProofGenerated"
        assert data["error"]["type"] == "ProofGenerationError"
        assert data["attestation_id"] is None

    @pytest.mark.asyncio
    async def test_contract_revert_is_invalid(
        self, relay_client: AsyncClient, chain: MockChainRelay
    ) -> None:
        chain.revert_reason = "Invalid proof attestation"

        response = await relay_client.post("/api/v1/proofs/verify", json=VALID_CLAIM)

        assert response.status_code == 422
        data = response.json()
        assert data["error"]["stage"] == "Relayed"
        assert data["error"]["reason"] == "Invalid proof attestation"
        assert data["error"]["tx_hash"].startswith("0x")

    @pytest.mark.asyncio
    async def test_ledger_outage_is_error(
        self, relay_client: AsyncClient, ledger: MockAttestationClient
    ) -> None:
        ledger.submit_failures = 10

        response = await relay_client.post("/api/v1/proofs/verify", json=VALID_CLAIM)

        assert response.status_code == 502
        data = response.json()
        assert data["status"] == "error"
        assert data["error"]["stage"] == "Submitted"
        assert data["error"]["type"] == "SubmissionError"

    @pytest.mark.asyncio
    async def test_request_id_is_replayed(
        self, relay_client: AsyncClient, prover: MockProofProvider
    ) -> None:
        body = {**VALID_CLAIM, "request_id": "req-42"}

        first = await relay_client.post("/api/v1/proofs/verify", json=body)
        second = await relay_client.post("/api/v1/proofs/verify", json=body)

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()
        assert first.json()["request_id"] == "req-42"
        assert prover.calls == 1

    @pytest.mark.asyncio
    async def test_negative_claim_rejected(self, relay_client: AsyncClient) -> None:
        response = await relay_client.post(
            "/api/v1/proofs/verify",
            json={**VALID_CLAIM, "private_claim": -1},
        )

        assert response.status_code == 422
        assert "detail" in response.json()


class TestProgressEndpoint:
    """Tests for GET /api/v1/proofs/{request_id}."""

    @pytest.mark.asyncio
    async def test_completed_request(self, relay_client: AsyncClient) -> None:
        await relay_client.post(
            "/api/v1/proofs/verify", json={**VALID_CLAIM, "request_id": "req-7"}
        )

        response = await relay_client.get("/api/v1/proofs/req-7")

        assert response.status_code == 200
        assert response.json()["stage"] == "Confirmed"

    @pytest.mark.asyncio
    async def test_unknown_request(self, relay_client: AsyncClient) -> None:
        response = await relay_client.get("/api/v1/proofs/missing")

        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["status_code"] == 404


class TestRelayEndpoints:
    """Tests for /api/v1/relays."""

    @pytest.mark.asyncio
    async def test_get_confirmed_relay(self, relay_client: AsyncClient) -> None:
        await relay_client.post("/api/v1/proofs/verify", json=VALID_CLAIM)

        response = await relay_client.get("/api/v1/relays/1")

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

    @pytest.mark.asyncio
    async def test_unknown_relay(self, relay_client: AsyncClient) -> None:
        response = await relay_client.get("/api/v1/relays/99")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unconfirmed_relay_listed_and_reconciled(
        self, relay_client: AsyncClient, chain: MockChainRelay
    ) -> None:
        chain.confirmation_timeout = True
        verify = await relay_client.post("/api/v1/proofs/verify", json=VALID_CLAIM)
        assert verify.status_code == 502
        tx_hash = verify.json()["error"]["tx_hash"]

        listed = await relay_client.get("/api/v1/relays")
        assert [r["attestation_id"] for r in listed.json()] == [1]
        assert listed.json()[0]["status"] == "unconfirmed"

        chain.set_transaction_status(tx_hash, TransactionStatus.CONFIRMED)
        reconciled = await relay_client.post("/api/v1/relays/1/reconcile")

        assert reconciled.status_code == 200
        assert reconciled.json()["status"] == "confirmed"
        assert reconciled.json()["tx_hash"] == tx_hash
        assert (await relay_client.get("/api/v1/relays")).json() == []

    @pytest.mark.asyncio
    async def test_reconcile_unknown(self, relay_client: AsyncClient) -> None:
        response = await relay_client.post("/api/v1/relays/99/reconcile")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pipeline_error_envelope(
        self, relay_client: AsyncClient, orchestrator: PipelineOrchestrator
    ) -> None:
        with patch.object(
            orchestrator,
            "reconcile",
            AsyncMock(side_effect=InvalidTransitionError("Relayed -> Confirmed")),
        ):
            response = await relay_client.post("/api/v1/relays/1/reconcile")

        assert response.status_code == 502
        data = response.json()
        assert data["success"] is False
        assert data["error"]["type"] == "InvalidTransitionError"


class TestClaimantEndpoints:
    """Tests for /api/v1/claimants."""

    @pytest.mark.asyncio
    async def test_relayer_verified_after_relay(self, relay_client: AsyncClient) -> None:
        before = await relay_client.get(f"/api/v1/claimants/{MOCK_RELAYER_ADDRESS}/verified")
        await relay_client.post("/api/v1/proofs/verify", json=VALID_CLAIM)
        after = await relay_client.get(f"/api/v1/claimants/{MOCK_RELAYER_ADDRESS}/verified")

        assert before.json()["verified"] is False
        assert after.status_code == 200
        assert after.json() == {"address": MOCK_RELAYER_ADDRESS, "verified": True}


class TestServiceEndpoints:
    """Tests for health and root endpoints."""

    @pytest.mark.asyncio
    async def test_health(self, relay_client: AsyncClient) -> None:
        response = await relay_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "relay"
        assert set(data["components"]) == {"prover", "ledger", "chain", "registry", "pipeline"}

    @pytest.mark.asyncio
    async def test_root(self, relay_client: AsyncClient) -> None:
        response = await relay_client.get("/")

        assert response.status_code == 200
        assert response.json()["service"] == "ZK Relay Service"

    @pytest.mark.asyncio
    async def test_not_running(
        self, relay_client: AsyncClient, orchestrator: PipelineOrchestrator
    ) -> None:
        from services.relay.main import app

        app.state.orchestrator = None
        response = await relay_client.get("/health")
        app.state.orchestrator = orchestrator

        assert response.status_code == 503
