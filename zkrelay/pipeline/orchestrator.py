"""
Pipeline Orchestrator
=====================

Drives one request from proof generation to a confirmed on-chain
verification:

    prove -> submit -> IncludedInBlock -> Finalized
          -> (inclusion proof || root posted on chain)
          -> relay -> confirm

Every stage failure is recorded on the returned PipelineState; `run`
does not raise for pipeline failures.

Usage:
    orchestrator = PipelineOrchestrator(prover, ledger, chain, registry)
    state = await orchestrator.run(
        ProofRequest(claimant_id="0xABC", private_claim=60000, threshold=50000)
    )

Version: 0.1.0
"""

import asyncio
from collections import Counter, OrderedDict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from zkrelay.chain.client import ChainRelay, RelayResult, RootObservedEvent, TransactionStatus
from zkrelay.config.settings import PipelineSettings
from zkrelay.errors import (
    AttestationFailedError,
    AttestationTimeoutError,
    ChainEventTimeoutError,
    ConfirmationTimeoutError,
    ContractRevertError,
    InvalidInclusionProofError,
    NotReadyError,
    RelayAlreadyAttemptedError,
    RelayError,
    SubmissionError,
)
from zkrelay.ledger.client import (
    Attestation,
    AttestationClient,
    AttestationStatus,
    LifecycleEvent,
    MerkleInclusionProof,
)
from zkrelay.ledger.merkle import verify_path
from zkrelay.logging import bind_context, get_logger
from zkrelay.pipeline.registry import RelayRecord, RelayRegistry, RelayStatus
from zkrelay.pipeline.state import PipelineStage, PipelineState
from zkrelay.zk.models import ProofRequest
from zkrelay.zk.prover import ProofProvider

logger = get_logger(__name__)


@dataclass(frozen=True)
class PipelineConfig:
    """Timeouts and retry bounds for one orchestrator."""

    submit_max_attempts: int = 3
    submit_backoff_min: float = 0.5
    submit_backoff_max: float = 8.0
    finalization_timeout: float = 120.0
    inclusion_max_attempts: int = 6
    inclusion_backoff_min: float = 1.0
    inclusion_backoff_max: float = 16.0
    root_observed_timeout: float = 600.0
    completed_cache_size: int = 1024
    verify_root_locally: bool = False
    shutdown_grace: float = 30.0

    @classmethod
    def from_settings(cls, config: PipelineSettings) -> "PipelineConfig":
        return cls(
            submit_max_attempts=config.submit_max_attempts,
            submit_backoff_min=config.submit_backoff_min_seconds,
            submit_backoff_max=config.submit_backoff_max_seconds,
            finalization_timeout=config.finalization_timeout_seconds,
            inclusion_max_attempts=config.inclusion_max_attempts,
            inclusion_backoff_min=config.inclusion_backoff_min_seconds,
            inclusion_backoff_max=config.inclusion_backoff_max_seconds,
            root_observed_timeout=config.root_observed_timeout_seconds,
            completed_cache_size=config.completed_cache_size,
            verify_root_locally=config.verify_root_locally,
            shutdown_grace=config.shutdown_grace_seconds,
        )


class StageFailure(Exception):
    """Internal carrier for an error tagged with the stage it failed."""

    def __init__(self, stage: PipelineStage, error: BaseException) -> None:
        super().__init__(f"{stage.value}: {error}")
        self.stage = stage
        self.error = error


def _log_retry(event: str) -> Any:
    def before_sleep(retry_state: RetryCallState) -> None:
        logger.warning(
            event,
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep,  # type: ignore[union-attr]
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    return before_sleep


class PipelineOrchestrator:
    """
    Runs relay pipelines against shared ledger and chain clients.

    Requests are deduplicated by `request_id`: concurrent runs share one
    pipeline task and finished states are replayed from a bounded cache.
    Verification transactions run in background tasks owned by the
    orchestrator, so a cancelled caller never leaves a relay unrecorded.
    """

    def __init__(
        self,
        prover: ProofProvider,
        ledger: AttestationClient,
        chain: ChainRelay,
        registry: RelayRegistry,
        config: PipelineConfig | None = None,
    ) -> None:
        self.prover = prover
        self.ledger = ledger
        self.chain = chain
        self.registry = registry
        self.config = config or PipelineConfig()

        self._inflight: dict[str, asyncio.Task[PipelineState]] = {}
        self._waiters: Counter[str] = Counter()
        self._completed: OrderedDict[str, PipelineState] = OrderedDict()
        self._progress: dict[str, PipelineState] = {}
        self._background: set[asyncio.Task[RelayResult]] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    @property
    def pending_relays(self) -> int:
        return len(self._background)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def run(self, request: ProofRequest) -> PipelineState:
        """
        Run (or join) the pipeline for `request`.

        Returns:
            Terminal PipelineState, Confirmed or Failed
        """
        request_id = request.request_id
        cached = self._completed.get(request_id)
        if cached is not None:
            self._completed.move_to_end(request_id)
            logger.debug("pipeline_replayed", request_id=request_id)
            return cached

        task = self._inflight.get(request_id)
        if task is None:
            task = asyncio.create_task(self._execute(request), name=f"pipeline-{request_id}")
            self._inflight[request_id] = task
            task.add_done_callback(partial(self._finish, request_id))

        self._waiters[request_id] += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._waiters[request_id] == 1 and not task.done():
                task.cancel()
                await asyncio.wait([task])
            raise
        finally:
            self._waiters[request_id] -= 1
            if self._waiters[request_id] <= 0:
                del self._waiters[request_id]

    def progress(self, request_id: str) -> PipelineState | None:
        """Latest known state for a request, in flight or completed."""
        return self._progress.get(request_id) or self._completed.get(request_id)

    def _finish(self, request_id: str, task: asyncio.Task[PipelineState]) -> None:
        self._inflight.pop(request_id, None)
        self._progress.pop(request_id, None)
        if task.cancelled():
            logger.info("pipeline_cancelled", request_id=request_id)
            return
        if task.exception() is not None:
            return

        self._completed[request_id] = task.result()
        self._completed.move_to_end(request_id)
        while len(self._completed) > self.config.completed_cache_size:
            self._completed.popitem(last=False)

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _commit(self, state: PipelineState) -> PipelineState:
        self._progress[state.request_id] = state
        logger.info("pipeline_stage_advanced", stage=state.stage.value)
        return state

    @contextmanager
    def _stage(self, stage: PipelineStage) -> Iterator[None]:
        """Tag any error raised inside the block with `stage`."""
        try:
            yield
        except StageFailure:
            raise
        except RelayError as e:
            raise StageFailure(stage, e) from e
        except Exception as e:
            logger.exception("pipeline_stage_crashed", stage=stage.value)
            raise StageFailure(stage, e) from e

    async def _execute(self, request: ProofRequest) -> PipelineState:
        bind_context(request_id=request.request_id, claimant_id=request.claimant_id)
        state = self._commit(PipelineState.start(request))
        logger.info("pipeline_started", threshold=request.threshold)

        try:
            state = await self._prove(state, request)
            state = await self._submit(state)
            state = await self._await_finalization(state)
            state = await self._collect_relay_inputs(state)
            state = await self._relay(state)
        except StageFailure as failure:
            current = self._progress.get(request.request_id, state)
            state = current.fail(failure.stage, failure.error)
            self._progress[request.request_id] = state
            logger.warning(
                "pipeline_failed",
                stage=failure.stage.value,
                error=type(failure.error).__name__,
                reason=state.failure.reason if state.failure else None,
            )
            return state

        logger.info(
            "pipeline_confirmed",
            attestation_id=state.attestation.attestation_id if state.attestation else None,
            tx_hash=state.relay.tx_hash if state.relay else None,
        )
        return state

    async def _prove(self, state: PipelineState, request: ProofRequest) -> PipelineState:
        with self._stage(PipelineStage.PROOF_GENERATED):
            proof = await self.prover.generate(request)
        return self._commit(state.advance(PipelineStage.PROOF_GENERATED, proof=proof))

    async def _submit(self, state: PipelineState) -> PipelineState:
        assert state.proof is not None
        with self._stage(PipelineStage.SUBMITTED):
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(SubmissionError),
                stop=stop_after_attempt(self.config.submit_max_attempts),
                wait=wait_exponential(
                    multiplier=1,
                    min=self.config.submit_backoff_min,
                    max=self.config.submit_backoff_max,
                ),
                before_sleep=_log_retry("attestation_submit_retry"),
                reraise=True,
            ):
                with attempt:
                    attestation = await self.ledger.submit(state.proof)

        bind_context(attestation_id=attestation.attestation_id)
        return self._commit(state.advance(PipelineStage.SUBMITTED, attestation=attestation))

    async def _await_finalization(self, state: PipelineState) -> PipelineState:
        """Apply lifecycle events in order until Finalized."""
        attestation = state.attestation
        assert attestation is not None
        buffered: LifecycleEvent | None = None

        def apply(current: PipelineState, event: LifecycleEvent) -> PipelineState:
            assert current.attestation is not None
            updated = current.attestation.with_status(
                event.status,
                tx_hash=event.tx_hash,
                block_hash=event.block_hash,
            )
            return self._commit(current.advance(PipelineStage(event.status.value), attestation=updated))

        with self._stage(PipelineStage.FINALIZED):
            try:
                async with self.ledger.subscribe_lifecycle(attestation.attestation_id) as events:
                    async with asyncio.timeout(self.config.finalization_timeout):
                        async for event in events:
                            if event.status == AttestationStatus.FAILED:
                                awaited = state.stage.next_stage or PipelineStage.FINALIZED
                                raise StageFailure(
                                    awaited,
                                    AttestationFailedError(event.reason or "attestation failed"),
                                )

                            if event.status == AttestationStatus.INCLUDED_IN_BLOCK:
                                if state.stage != PipelineStage.SUBMITTED:
                                    continue
                                state = apply(state, event)
                                if buffered is not None:
                                    state = apply(state, buffered)
                            elif event.status == AttestationStatus.FINALIZED:
                                if state.stage == PipelineStage.SUBMITTED:
                                    logger.debug("finalized_before_inclusion_buffered")
                                    buffered = event
                                elif state.stage == PipelineStage.INCLUDED_IN_BLOCK:
                                    state = apply(state, event)

                            if state.stage == PipelineStage.FINALIZED:
                                break
            except TimeoutError as e:
                raise AttestationTimeoutError(
                    f"Attestation {attestation.attestation_id} not finalized within "
                    f"{self.config.finalization_timeout}s"
                ) from e

            if state.stage != PipelineStage.FINALIZED:
                raise AttestationTimeoutError(
                    f"Lifecycle stream for attestation {attestation.attestation_id} "
                    "ended before finalization"
                )
        return state

    async def _collect_relay_inputs(self, state: PipelineState) -> PipelineState:
        """Fetch the inclusion proof while waiting for the root on chain."""
        attestation = state.attestation
        assert attestation is not None

        fetch = asyncio.create_task(self._fetch_inclusion_proof(attestation))
        observe = asyncio.create_task(self._observe_root(attestation.attestation_id))
        try:
            await asyncio.wait({fetch, observe}, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            for task in (fetch, observe):
                if not task.done():
                    task.cancel()
            await asyncio.gather(fetch, observe, return_exceptions=True)

        for task in (fetch, observe):
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]

        inclusion_proof = fetch.result()
        root_event = observe.result()

        state = self._commit(
            state.advance(PipelineStage.INCLUSION_PROOF_FETCHED, inclusion_proof=inclusion_proof)
        )

        if self.config.verify_root_locally and not self._path_matches_root(
            inclusion_proof, root_event
        ):
            raise StageFailure(
                PipelineStage.ROOT_OBSERVED_ON_CHAIN,
                InvalidInclusionProofError(
                    f"Inclusion path does not lead to posted root {root_event.root}"
                ),
            )

        return self._commit(
            state.advance(PipelineStage.ROOT_OBSERVED_ON_CHAIN, root_event=root_event)
        )

    async def _fetch_inclusion_proof(self, attestation: Attestation) -> MerkleInclusionProof:
        with self._stage(PipelineStage.INCLUSION_PROOF_FETCHED):
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type((NotReadyError, SubmissionError)),
                stop=stop_after_attempt(self.config.inclusion_max_attempts),
                wait=wait_exponential(
                    multiplier=1,
                    min=self.config.inclusion_backoff_min,
                    max=self.config.inclusion_backoff_max,
                ),
                before_sleep=_log_retry("inclusion_proof_retry"),
                reraise=True,
            ):
                with attempt:
                    proof = await self.ledger.fetch_inclusion_proof(
                        attestation.attestation_id, attestation.leaf_digest
                    )

            if (
                proof.attestation_id != attestation.attestation_id
                or proof.leaf_digest != attestation.leaf_digest
            ):
                raise InvalidInclusionProofError(
                    f"Inclusion proof for {proof.attestation_id}/{proof.leaf_digest} does not "
                    f"match attestation {attestation.attestation_id}/{attestation.leaf_digest}"
                )
        return proof

    async def _observe_root(self, attestation_id: int) -> RootObservedEvent:
        with self._stage(PipelineStage.ROOT_OBSERVED_ON_CHAIN):
            try:
                async with asyncio.timeout(self.config.root_observed_timeout):
                    return await self.chain.await_attestation_posted(attestation_id)
            except TimeoutError as e:
                raise ChainEventTimeoutError(
                    f"Root for attestation {attestation_id} not posted within "
                    f"{self.config.root_observed_timeout}s"
                ) from e

    @staticmethod
    def _path_matches_root(proof: MerkleInclusionProof, event: RootObservedEvent) -> bool:
        return verify_path(
            bytes.fromhex(event.root[2:]),
            bytes.fromhex(proof.leaf_digest[2:]),
            [bytes.fromhex(node[2:]) for node in proof.path],
            proof.leaf_count,
            proof.leaf_index,
        )

    # =========================================================================
    # Relay
    # =========================================================================

    async def _relay(self, state: PipelineState) -> PipelineState:
        attestation = state.attestation
        assert attestation is not None and state.inclusion_proof is not None
        attestation_id = attestation.attestation_id

        with self._stage(PipelineStage.RELAYED):
            try:
                marked = await self.registry.mark_attempted(attestation_id, state.request_id)
            except asyncio.CancelledError:
                await asyncio.shield(self._abandon_marker(attestation_id, state.request_id))
                raise
            if not marked:
                existing = await self.registry.get(attestation_id)
                raise RelayAlreadyAttemptedError(
                    attestation_id, existing.tx_hash if existing else None
                )

        task = asyncio.create_task(
            self._send_relay(attestation_id, state.inclusion_proof),
            name=f"relay-{attestation_id}",
        )
        self._background.add(task)
        task.add_done_callback(self._relay_done)

        with self._stage(PipelineStage.RELAYED):
            result = await asyncio.shield(task)

        state = self._commit(state.advance(PipelineStage.RELAYED, relay=result))
        return self._commit(state.advance(PipelineStage.CONFIRMED))

    async def _abandon_marker(self, attestation_id: int, request_id: str) -> None:
        """Resolve a marker whose write may have landed after the caller was cancelled."""
        record = await self.registry.get(attestation_id)
        if (
            record is None
            or record.request_id != request_id
            or record.status != RelayStatus.ATTEMPTED
        ):
            return
        await self.registry.record(
            attestation_id, RelayStatus.FAILED, reason="cancelled before send"
        )
        logger.warning("relay_marker_abandoned", attestation_id=attestation_id)

    def _relay_done(self, task: asyncio.Task[RelayResult]) -> None:
        self._background.discard(task)
        # Outcome is already in the registry; mark the exception retrieved
        if not task.cancelled():
            task.exception()

    async def _send_relay(
        self,
        attestation_id: int,
        inclusion_proof: MerkleInclusionProof,
    ) -> RelayResult:
        """Send the verification transaction and record its outcome."""
        submitted: str | None = None

        async def on_submitted(tx_hash: str) -> None:
            nonlocal submitted
            submitted = tx_hash
            await self.registry.record(attestation_id, RelayStatus.SUBMITTED, tx_hash=tx_hash)
            logger.info("relay_submitted", tx_hash=tx_hash)

        try:
            result = await self.chain.relay(attestation_id, inclusion_proof, on_submitted=on_submitted)
        except ContractRevertError as e:
            await self.registry.record(
                attestation_id, RelayStatus.REVERTED, tx_hash=e.tx_hash, reason=e.reason
            )
            logger.warning("relay_reverted", tx_hash=e.tx_hash, reason=e.reason)
            raise
        except ConfirmationTimeoutError as e:
            await self.registry.record(
                attestation_id, RelayStatus.UNCONFIRMED, tx_hash=e.tx_hash, reason=str(e)
            )
            logger.warning("relay_unconfirmed", tx_hash=e.tx_hash)
            raise
        except Exception as e:
            # A sent transaction may still be mined
            status = RelayStatus.UNCONFIRMED if submitted else RelayStatus.FAILED
            await self.registry.record(attestation_id, status, tx_hash=submitted, reason=str(e))
            logger.error("relay_failed", tx_hash=submitted, error=str(e))
            raise

        await self.registry.record(attestation_id, RelayStatus.CONFIRMED, tx_hash=result.tx_hash)
        logger.info(
            "relay_confirmed",
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            verified_event=result.verified_event,
        )
        return result

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def relay_record(self, attestation_id: int) -> RelayRecord | None:
        """Recorded relay outcome for an attestation."""
        return await self.registry.get(attestation_id)

    async def unresolved_relays(self) -> list[RelayRecord]:
        """Relays whose outcome is not known yet."""
        return await self.registry.unresolved()

    async def reconcile(self, attestation_id: int) -> RelayRecord | None:
        """
        Re-check an unresolved relay against the chain.

        Returns:
            Updated record, or None if no relay was recorded
        """
        record = await self.registry.get(attestation_id)
        if record is None or record.status.is_resolved or record.tx_hash is None:
            return record

        status = await self.chain.transaction_status(record.tx_hash)
        if status == TransactionStatus.CONFIRMED:
            record = await self.registry.record(attestation_id, RelayStatus.CONFIRMED)
        elif status == TransactionStatus.REVERTED:
            record = await self.registry.record(
                attestation_id, RelayStatus.REVERTED, reason="reverted on chain"
            )

        logger.info(
            "relay_reconciled",
            attestation_id=attestation_id,
            tx_hash=record.tx_hash,
            chain_status=status.value,
            status=record.status.value,
        )
        return record

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def health_check(self) -> dict[str, dict[str, Any]]:
        """Health of every collaborator, keyed by component."""
        ledger, chain, registry = await asyncio.gather(
            self.ledger.health_check(),
            self.chain.health_check(),
            self.registry.health_check(),
        )
        return {
            "prover": {"status": "healthy", "mode": self.prover.mode.value},
            "ledger": ledger,
            "chain": chain,
            "registry": registry,
            "pipeline": {
                "status": "healthy",
                "inflight": self.inflight,
                "pending_relays": self.pending_relays,
            },
        }

    async def shutdown(self) -> None:
        """Cancel running pipelines and wait, bounded, for sent relays."""
        pipelines = list(self._inflight.values())
        for task in pipelines:
            task.cancel()
        if pipelines:
            await asyncio.gather(*pipelines, return_exceptions=True)

        if self._background:
            _, pending = await asyncio.wait(
                set(self._background), timeout=self.config.shutdown_grace
            )
            if pending:
                logger.warning("relay_tasks_abandoned", count=len(pending))
        logger.info("orchestrator_shutdown")
