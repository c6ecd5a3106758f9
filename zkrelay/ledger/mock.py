"""
Mock Attestation Ledger
=======================

In-memory ledger for development and testing.

Version: 0.1.0
"""

import asyncio
import hashlib
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from eth_utils import keccak

from zkrelay.config.settings import LedgerMode
from zkrelay.errors import NotFoundError, NotReadyError, SubmissionError
from zkrelay.ledger.client import (
    Attestation,
    AttestationClient,
    AttestationStatus,
    LifecycleEvent,
    MerkleInclusionProof,
)
from zkrelay.ledger.merkle import merkle_path, merkle_root
from zkrelay.ledger.subscription import LifecycleSubscription
from zkrelay.logging import get_logger
from zkrelay.zk.models import Proof

logger = get_logger(__name__)

FinalizationListener = Callable[[int, str], None]

DEFAULT_LIFECYCLE = (AttestationStatus.INCLUDED_IN_BLOCK, AttestationStatus.FINALIZED)


@dataclass
class _AttestationEntry:
    attestation: Attestation
    leaves: list[bytes]
    leaf_index: int
    not_ready_remaining: int
    emitted: set[AttestationStatus] = field(default_factory=set)

    @property
    def root(self) -> str:
        return "0x" + merkle_root(self.leaves).hex()


class MockAttestationClient(AttestationClient):
    """
    In-memory mock attestation ledger.

    Every submission gets its own attestation id and a small batch of
    filler leaves so inclusion paths are non-trivial. Lifecycle events are
    emitted per subscription following `lifecycle`, which tests can
    reorder or truncate. Finalization listeners let a MockChainRelay post
    the root on the fake bridge contract.

    Data is stored in memory and lost on restart.
    """

    def __init__(
        self,
        lifecycle: Sequence[AttestationStatus] = DEFAULT_LIFECYCLE,
        event_delay: float = 0.0,
        batch_size: int = 4,
        not_ready_polls: int = 0,
        submit_failures: int = 0,
        failure_reason: str = "proof verification failed",
    ) -> None:
        """
        Initialize mock ledger.

        Args:
            lifecycle: Statuses emitted to each subscription, in order
            event_delay: Seconds to wait before each emitted event
            batch_size: Leaves per attestation batch
            not_ready_polls: NotReadyError responses before a proof is served
            submit_failures: Leading submit calls that raise SubmissionError
            failure_reason: Reason attached to emitted Failed events
        """
        self.lifecycle = tuple(lifecycle)
        self.event_delay = event_delay
        self.batch_size = max(1, batch_size)
        self.not_ready_polls = not_ready_polls
        self.submit_failures = submit_failures
        self.failure_reason = failure_reason

        self._connected = False
        self._next_id = 1
        self._entries: dict[int, _AttestationEntry] = {}
        self._subscriptions: dict[LifecycleSubscription, asyncio.Task[None]] = {}
        self._listeners: list[FinalizationListener] = []

        self.submit_calls = 0
        self.fetch_calls = 0

        logger.debug("mock_ledger_initialized")

    @property
    def mode(self) -> LedgerMode:
        return LedgerMode.MOCK

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True
        logger.info("mock_ledger_connected")

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self._connected = False
        logger.info("mock_ledger_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check mock ledger health."""
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            "attestations": len(self._entries),
            "subscriptions": self.active_subscriptions,
        }

    def add_finalization_listener(self, listener: FinalizationListener) -> None:
        """Register a callback invoked with (attestation_id, root) on finalization."""
        self._listeners.append(listener)

    def _generate_tx_hash(self) -> str:
        return "0x" + hashlib.sha256(uuid.uuid4().bytes).hexdigest()

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, proof: Proof) -> Attestation:
        """Accept a proof record and batch it with filler leaves."""
        self.submit_calls += 1
        if self.submit_failures > 0:
            self.submit_failures -= 1
            raise SubmissionError("mock ledger connection reset")

        attestation_id = self._next_id
        self._next_id += 1

        leaf = keccak(proof.canonical_bytes())
        leaves = [keccak(f"{attestation_id}:{i}".encode()) for i in range(self.batch_size)]
        leaf_index = attestation_id % self.batch_size
        leaves[leaf_index] = leaf

        attestation = Attestation(attestation_id=attestation_id, leaf_digest="0x" + leaf.hex())
        self._entries[attestation_id] = _AttestationEntry(
            attestation=attestation,
            leaves=leaves,
            leaf_index=leaf_index,
            not_ready_remaining=self.not_ready_polls,
        )

        logger.debug(
            "mock_attestation_submitted",
            attestation_id=attestation_id,
            leaf_digest=attestation.leaf_digest,
        )
        return attestation

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def subscribe_lifecycle(self, attestation_id: int) -> LifecycleSubscription:
        """Open a subscription and start emitting the configured lifecycle."""
        subscription = LifecycleSubscription(attestation_id, on_close=self._release)
        self._subscriptions[subscription] = asyncio.create_task(self._emit(subscription))
        return subscription

    def _release(self, subscription: LifecycleSubscription) -> None:
        task = self._subscriptions.pop(subscription, None)
        if task is not None and not task.done():
            task.cancel()

    async def _emit(self, subscription: LifecycleSubscription) -> None:
        entry = self._entries.get(subscription.attestation_id)
        if entry is None:
            subscription.publish(
                LifecycleEvent(
                    attestation_id=subscription.attestation_id,
                    status=AttestationStatus.FAILED,
                    reason="unknown attestation",
                )
            )
            return

        for status in self.lifecycle:
            if self.event_delay:
                await asyncio.sleep(self.event_delay)
            subscription.publish(self._apply(entry, status))

    def _apply(self, entry: _AttestationEntry, status: AttestationStatus) -> LifecycleEvent:
        attestation_id = entry.attestation.attestation_id
        tx_hash = self._generate_tx_hash() if status == AttestationStatus.INCLUDED_IN_BLOCK else None
        block_hash = self._generate_tx_hash() if status == AttestationStatus.FINALIZED else None
        reason = self.failure_reason if status == AttestationStatus.FAILED else None

        entry.attestation = entry.attestation.with_status(
            status, tx_hash=tx_hash, block_hash=block_hash, reason=reason
        )

        if status == AttestationStatus.FINALIZED and status not in entry.emitted:
            root = entry.root
            for listener in self._listeners:
                listener(attestation_id, root)
            logger.debug("mock_attestation_finalized", attestation_id=attestation_id, root=root)
        entry.emitted.add(status)

        return LifecycleEvent(
            attestation_id=attestation_id,
            status=status,
            tx_hash=tx_hash,
            block_hash=block_hash,
            reason=reason,
        )

    # =========================================================================
    # Inclusion proofs
    # =========================================================================

    async def fetch_inclusion_proof(
        self,
        attestation_id: int,
        leaf_digest: str,
    ) -> MerkleInclusionProof:
        """Serve the inclusion path once the attestation is finalized."""
        self.fetch_calls += 1
        entry = self._entries.get(attestation_id)
        if entry is None or entry.attestation.leaf_digest != leaf_digest.lower():
            raise NotFoundError(f"Unknown attestation {attestation_id} / leaf {leaf_digest}")

        if AttestationStatus.FINALIZED not in entry.emitted:
            raise NotReadyError(f"Attestation {attestation_id} is not finalized")
        if entry.not_ready_remaining > 0:
            entry.not_ready_remaining -= 1
            raise NotReadyError(f"Attestation {attestation_id} root not published yet")

        return MerkleInclusionProof(
            attestation_id=attestation_id,
            leaf_digest=entry.attestation.leaf_digest,
            path=tuple("0x" + p.hex() for p in merkle_path(entry.leaves, entry.leaf_index)),
            leaf_count=len(entry.leaves),
            leaf_index=entry.leaf_index,
        )

    # =========================================================================
    # Test Utilities
    # =========================================================================

    def get_attestation(self, attestation_id: int) -> Attestation | None:
        """Current ledger view of an attestation."""
        entry = self._entries.get(attestation_id)
        return entry.attestation if entry else None

    def root_for(self, attestation_id: int) -> str:
        """Merkle root of an attestation's batch."""
        return self._entries[attestation_id].root

    def get_stats(self) -> dict[str, int]:
        """Get storage statistics."""
        return {
            "attestations": len(self._entries),
            "subscriptions": self.active_subscriptions,
            "submit_calls": self.submit_calls,
            "fetch_calls": self.fetch_calls,
        }