"""
Mock Chain Relay
================

In-memory target chain for development and testing.

Version: 0.1.0
"""

import asyncio
import hashlib
import uuid
from collections import Counter
from typing import Any

from zkrelay.chain.client import (
    ChainRelay,
    RelayResult,
    RootObservedEvent,
    SubmittedCallback,
    TransactionStatus,
)
from zkrelay.config.settings import ChainMode
from zkrelay.errors import ConfirmationTimeoutError, ContractRevertError
from zkrelay.ledger.client import MerkleInclusionProof, normalize_hash
from zkrelay.ledger.merkle import verify_path
from zkrelay.logging import get_logger

logger = get_logger(__name__)

MOCK_RELAYER_ADDRESS = "0x" + "00" * 19 + "01"


class MockChainRelay(ChainRelay):
    """
    In-memory mock of the bridge and verifying contracts.

    Roots are posted with `post_attestation`, usually wired as a
    finalization listener of MockAttestationClient. `relay` checks the
    Merkle path against the posted root the way the verifying contract
    does, and marks the sender as verified.

    Data is stored in memory and lost on restart.
    """

    def __init__(
        self,
        post_delay: float = 0.0,
        confirmation_delay: float = 0.0,
        revert_reason: str | None = None,
        confirmation_timeout: bool = False,
        relayer_address: str = MOCK_RELAYER_ADDRESS,
    ) -> None:
        """
        Initialize mock chain.

        Args:
            post_delay: Seconds between a root being posted and becoming visible
            confirmation_delay: Seconds between send and receipt
            revert_reason: Force every relay to revert with this reason
            confirmation_timeout: Force every relay to time out after sending
            relayer_address: Address the fake contract sees as msg.sender
        """
        self.post_delay = post_delay
        self.confirmation_delay = confirmation_delay
        self.revert_reason = revert_reason
        self.confirmation_timeout = confirmation_timeout
        self.relayer_address = relayer_address

        self._connected = False
        self._block_number = 1000
        self._roots: dict[int, RootObservedEvent] = {}
        self._waiters: dict[int, list[asyncio.Future[RootObservedEvent]]] = {}
        self._filters: Counter[int] = Counter()
        self._transactions: dict[str, TransactionStatus] = {}
        self._verified: set[str] = set()
        self._pending_posts: set[asyncio.Task[None]] = set()

        self.relay_calls: list[int] = []

        logger.debug("mock_chain_initialized")

    @property
    def mode(self) -> ChainMode:
        return ChainMode.MOCK

    @property
    def active_filters(self) -> int:
        return sum(self._filters.values())

    async def connect(self) -> None:
        """Simulate connection."""
        self._connected = True
        logger.info("mock_chain_connected")

    async def disconnect(self) -> None:
        """Simulate disconnection."""
        for task in list(self._pending_posts):
            task.cancel()
        self._connected = False
        logger.info("mock_chain_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check mock chain health."""
        return {
            "status": "healthy",
            "mode": self.mode.value,
            "connected": self._connected,
            "block_number": self._block_number,
            "posted_roots": len(self._roots),
            "filters": self.active_filters,
        }

    def _generate_tx_hash(self) -> str:
        return "0x" + hashlib.sha256(uuid.uuid4().bytes).hexdigest()

    # =========================================================================
    # Bridge events
    # =========================================================================

    def post_attestation(self, attestation_id: int, root: str | bytes) -> None:
        """Post a finalized root on the fake bridge contract."""
        if self.post_delay:
            task = asyncio.get_running_loop().create_task(
                self._post_later(attestation_id, root)
            )
            self._pending_posts.add(task)
            task.add_done_callback(self._pending_posts.discard)
            return
        self._post(attestation_id, root)

    async def _post_later(self, attestation_id: int, root: str | bytes) -> None:
        await asyncio.sleep(self.post_delay)
        self._post(attestation_id, root)

    def _post(self, attestation_id: int, root: str | bytes) -> None:
        if attestation_id in self._roots:
            return
        self._block_number += 1
        event = RootObservedEvent(
            attestation_id=attestation_id,
            root=normalize_hash(root),
            block_number=self._block_number,
            tx_hash=self._generate_tx_hash(),
        )
        self._roots[attestation_id] = event
        for waiter in self._waiters.pop(attestation_id, []):
            if not waiter.done():
                waiter.set_result(event)
        logger.debug("mock_root_posted", attestation_id=attestation_id, root=event.root)

    async def await_attestation_posted(self, attestation_id: int) -> RootObservedEvent:
        """Return the posted root, waiting for it if needed."""
        if attestation_id in self._roots:
            return self._roots[attestation_id]

        waiter: asyncio.Future[RootObservedEvent] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(attestation_id, []).append(waiter)
        self._filters[attestation_id] += 1
        try:
            return await waiter
        finally:
            self._filters[attestation_id] -= 1
            if self._filters[attestation_id] <= 0:
                del self._filters[attestation_id]
            waiters = self._waiters.get(attestation_id)
            if waiters and waiter in waiters:
                waiters.remove(waiter)
                if not waiters:
                    del self._waiters[attestation_id]

    # =========================================================================
    # Verification transaction
    # =========================================================================

    async def relay(
        self,
        attestation_id: int,
        inclusion_proof: MerkleInclusionProof,
        on_submitted: SubmittedCallback | None = None,
    ) -> RelayResult:
        """Check the path against the posted root like the verifying contract."""
        self.relay_calls.append(attestation_id)

        posted = self._roots.get(attestation_id)
        if posted is None:
            raise ContractRevertError("attestation root not posted")

        tx_hash = self._generate_tx_hash()
        self._transactions[tx_hash] = TransactionStatus.PENDING
        if on_submitted is not None:
            await on_submitted(tx_hash)

        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)
        if self.confirmation_timeout:
            raise ConfirmationTimeoutError(attestation_id, tx_hash)

        reason = self.revert_reason
        if reason is None and not verify_path(
            bytes.fromhex(posted.root[2:]),
            bytes.fromhex(inclusion_proof.leaf_digest[2:]),
            [bytes.fromhex(node[2:]) for node in inclusion_proof.path],
            inclusion_proof.leaf_count,
            inclusion_proof.leaf_index,
        ):
            reason = "Invalid Merkle proof"

        self._block_number += 1
        if reason is not None:
            self._transactions[tx_hash] = TransactionStatus.REVERTED
            raise ContractRevertError(reason, tx_hash=tx_hash)

        self._transactions[tx_hash] = TransactionStatus.CONFIRMED
        # The verifying contract records msg.sender
        self._verified.add(self.relayer_address.lower())

        logger.debug("mock_relay_confirmed", attestation_id=attestation_id, tx_hash=tx_hash)
        return RelayResult(
            attestation_id=attestation_id,
            tx_hash=tx_hash,
            success=True,
            block_number=self._block_number,
            verified_event=True,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    async def has_verified(self, claimant_address: str) -> bool:
        return claimant_address.lower() in self._verified

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        return self._transactions.get(tx_hash, TransactionStatus.UNKNOWN)

    # =========================================================================
    # Test Utilities
    # =========================================================================

    def set_transaction_status(self, tx_hash: str, status: TransactionStatus) -> None:
        """Override the recorded outcome of a transaction."""
        self._transactions[tx_hash] = status

    def get_root(self, attestation_id: int) -> RootObservedEvent | None:
        return self._roots.get(attestation_id)

    def get_stats(self) -> dict[str, int]:
        """Get storage statistics."""
        return {
            "posted_roots": len(self._roots),
            "filters": self.active_filters,
            "relay_calls": len(self.relay_calls),
            "transactions": len(self._transactions),
            "verified": len(self._verified),
        }
