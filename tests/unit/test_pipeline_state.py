"""
Unit tests for the pipeline state machine.
"""

import pytest

from zkrelay.errors import ContractRevertError, InvalidTransitionError
from zkrelay.pipeline import PipelineStage, PipelineState
from zkrelay.zk import ProofRequest


@pytest.fixture
def state() -> PipelineState:
    request = ProofRequest(
        request_id="req-1", claimant_id="0xABC", private_claim=987654321, threshold=50000
    )
    return PipelineState.start(request)


class TestPipelineStage:
    """Test stage ordering."""

    def test_next_stage_follows_pipeline_order(self) -> None:
        assert PipelineStage.CREATED.next_stage == PipelineStage.PROOF_GENERATED
        assert PipelineStage.FINALIZED.next_stage == PipelineStage.INCLUSION_PROOF_FETCHED
        assert PipelineStage.RELAYED.next_stage == PipelineStage.CONFIRMED

    def test_terminal_stages_have_no_successor(self) -> None:
        assert PipelineStage.CONFIRMED.next_stage is None
        assert PipelineStage.FAILED.next_stage is None

    def test_rank_is_monotonic(self) -> None:
        ranks = [stage.rank for stage in PipelineStage]
        assert ranks == sorted(ranks)


class TestPipelineState:
    """Test PipelineState transitions."""

    def test_start_drops_private_claim(self, state: PipelineState) -> None:
        """Test that only public request fields are kept."""
        assert state.stage == PipelineStage.CREATED
        assert state.threshold == 50000
        assert "987654321" not in state.model_dump_json()

    def test_advance_returns_new_state(self, state: PipelineState) -> None:
        advanced = state.advance(PipelineStage.PROOF_GENERATED)

        assert advanced.stage == PipelineStage.PROOF_GENERATED
        assert state.stage == PipelineStage.CREATED
        assert advanced.updated_at >= state.updated_at

    def test_advance_rejects_skipped_stage(self, state: PipelineState) -> None:
        with pytest.raises(InvalidTransitionError):
            state.advance(PipelineStage.SUBMITTED)

    def test_advance_rejects_repeated_stage(self, state: PipelineState) -> None:
        advanced = state.advance(PipelineStage.PROOF_GENERATED)
        with pytest.raises(InvalidTransitionError):
            advanced.advance(PipelineStage.PROOF_GENERATED)

    def test_state_is_frozen(self, state: PipelineState) -> None:
        with pytest.raises(Exception):
            state.stage = PipelineStage.CONFIRMED  # type: ignore[misc]

    def test_fail_records_stage_and_error(self, state: PipelineState) -> None:
        failed = state.fail(PipelineStage.PROOF_GENERATED, RuntimeError("boom"))

        assert failed.stage == PipelineStage.FAILED
        assert failed.is_terminal
        assert failed.failure is not None
        assert failed.failure.stage == PipelineStage.PROOF_GENERATED
        assert failed.failure.error == "RuntimeError"
        assert failed.failure.reason == "boom"
        assert failed.failure.tx_hash is None

    def test_fail_keeps_transaction_hash(self, state: PipelineState) -> None:
        error = ContractRevertError("Invalid Merkle proof", tx_hash="0xdead")

        failed = state.fail(PipelineStage.RELAYED, error)

        assert failed.failure is not None
        assert failed.failure.tx_hash == "0xdead"
        assert failed.failure.reason == "Invalid Merkle proof"

    def test_terminal_state_cannot_fail_again(self, state: PipelineState) -> None:
        failed = state.fail(PipelineStage.PROOF_GENERATED, RuntimeError("boom"))

        with pytest.raises(InvalidTransitionError):
            failed.fail(PipelineStage.PROOF_GENERATED, RuntimeError("again"))

    def test_failed_state_cannot_advance(self, state: PipelineState) -> None:
        failed = state.fail(PipelineStage.PROOF_GENERATED, RuntimeError("boom"))

        with pytest.raises(InvalidTransitionError):
            failed.advance(PipelineStage.PROOF_GENERATED)
