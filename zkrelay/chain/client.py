"""
Chain Relay Interface
=====================

Abstract base class and models for the target chain.

The target chain hosts two contracts: a bridge that posts finalized
attestation roots, and the verifying contract that checks a Merkle path
against a posted root and records the claimant as verified.

Version: 0.1.0
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from zkrelay.config.settings import ChainMode, ChainSettings
from zkrelay.ledger.client import MerkleInclusionProof
from zkrelay.logging import get_logger

logger = get_logger(__name__)

SubmittedCallback = Callable[[str], Awaitable[None]]


class TransactionStatus(str, Enum):
    """On-chain state of a previously sent transaction."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    UNKNOWN = "unknown"


class RootObservedEvent(BaseModel):
    """The bridge contract posted the root for an attestation."""

    model_config = ConfigDict(frozen=True)

    attestation_id: int
    root: str = Field(..., description="Posted Merkle root, 0x hex")
    block_number: int | None = None
    tx_hash: str | None = None


class RelayResult(BaseModel):
    """Outcome of a mined verification transaction."""

    model_config = ConfigDict(frozen=True)

    attestation_id: int
    tx_hash: str
    success: bool
    revert_reason: str | None = None
    block_number: int | None = None
    verified_event: bool = Field(
        default=False, description="IncomeVerified was emitted by the transaction"
    )


class ChainRelay(ABC):
    """
    Abstract base class for the target-chain relay.

    A single instance is shared by every pipeline. Transaction sending is
    serialized internally so nonces stay consistent.
    """

    @property
    @abstractmethod
    def mode(self) -> ChainMode:
        """Get the chain mode."""
        ...

    @property
    @abstractmethod
    def active_filters(self) -> int:
        """Number of root-posted event filters still registered."""
        ...

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the chain."""
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the chain."""
        ...

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Check chain connectivity."""
        ...

    @abstractmethod
    async def await_attestation_posted(self, attestation_id: int) -> RootObservedEvent:
        """
        Wait until the bridge posts the root for `attestation_id`.

        Returns immediately if the root was already posted. Waits without
        bound; callers cancel it to stop waiting, which removes the filter.
        """
        ...

    @abstractmethod
    async def relay(
        self,
        attestation_id: int,
        inclusion_proof: MerkleInclusionProof,
        on_submitted: SubmittedCallback | None = None,
    ) -> RelayResult:
        """
        Send the verification transaction and wait for its receipt.

        Args:
            attestation_id: Attestation whose root was posted
            inclusion_proof: Merkle path for the claimant's leaf
            on_submitted: Awaited with the tx hash once the transaction is sent

        Returns:
            RelayResult of the successful transaction

        Raises:
            ContractRevertError: Preflight or mined transaction reverted
            ConfirmationTimeoutError: Sent but no receipt in time
            SubmissionError: The transaction could not be sent
        """
        ...

    @abstractmethod
    async def has_verified(self, claimant_address: str) -> bool:
        """Query the verifying contract for a claimant's verified flag."""
        ...

    @abstractmethod
    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        """Look up a previously sent transaction."""
        ...


def create_chain_relay(config: ChainSettings) -> ChainRelay:
    """
    Build the chain relay selected by configuration.

    Args:
        config: Chain settings

    Returns:
        ChainRelay instance (not yet connected)
    """
    if config.mode == ChainMode.MOCK:
        from zkrelay.chain.mock import MockChainRelay

        relay: ChainRelay = MockChainRelay()
    elif config.mode == ChainMode.RPC:
        from zkrelay.chain.web3_relay import Web3ChainRelay

        relay = Web3ChainRelay(
            rpc_url=config.rpc_url,
            private_key=config.private_key.get_secret_value(),
            target_address=config.target_contract_address,
            bridge_address=config.bridge_contract_address,
            chain_id=config.chain_id,
            poll_interval=config.poll_interval_seconds,
            lookback_blocks=config.lookback_blocks,
            confirmation_timeout=config.confirmation_timeout_seconds,
            gas_multiplier=config.gas_multiplier,
        )
    else:
        raise ValueError(f"Unknown chain mode: {config.mode}")

    logger.info("chain_relay_initialized", mode=config.mode.value)
    return relay
