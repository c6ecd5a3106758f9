"""
Web3 Chain Relay
================

Relay backed by an EVM JSON-RPC endpoint.

Watches the bridge contract for AttestationPosted logs and calls
verifyIncomeProof on the verifying contract with a locally signed
transaction.

Version: 0.1.0
"""

import asyncio
from collections import Counter
from typing import Any

from eth_abi import decode as abi_decode
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3Exception,
)

from zkrelay.chain.abi import (
    ATTESTATION_POSTED_SIGNATURE,
    BRIDGE_CONTRACT_ABI,
    INCOME_VERIFIED_SIGNATURE,
    INVALID_PROOF_ERROR_SIGNATURE,
    TARGET_CONTRACT_ABI,
)
from zkrelay.chain.client import (
    ChainRelay,
    RelayResult,
    RootObservedEvent,
    SubmittedCallback,
    TransactionStatus,
)
from zkrelay.config.settings import ChainMode
from zkrelay.errors import ConfirmationTimeoutError, ContractRevertError, SubmissionError
from zkrelay.ledger.client import MerkleInclusionProof
from zkrelay.logging import get_logger


logger = get_logger(__name__)

ATTESTATION_POSTED_TOPIC = Web3.to_hex(Web3.keccak(text=ATTESTATION_POSTED_SIGNATURE))
INCOME_VERIFIED_TOPIC = Web3.to_hex(Web3.keccak(text=INCOME_VERIFIED_SIGNATURE))
INVALID_PROOF_SELECTOR = Web3.to_hex(Web3.keccak(text=INVALID_PROOF_ERROR_SIGNATURE)[:4])


def uint256_topic(value: int) -> str:
    """Encode an indexed uint256 as a log topic."""
    return "0x" + value.to_bytes(32, "big").hex()


def decode_revert_reason(error: ContractLogicError) -> str:
    """
    Extract a readable reason from a contract revert.

    InvalidProofAttestation(string) custom errors are decoded; anything
    else falls back to the node's message.
    """
    data = error.data if isinstance(error.data, str) else None
    if data and data.lower().startswith(INVALID_PROOF_SELECTOR):
        try:
            (reason,) = abi_decode(["string"], bytes.fromhex(data[len(INVALID_PROOF_SELECTOR):]))
            return reason
        except (ValueError, TypeError) as e:
            logger.debug("revert_data_undecodable", data=data, error=str(e))
    return error.message or str(error) or "execution reverted"


class Web3ChainRelay(ChainRelay):
    """
    Chain relay over web3.py's async JSON-RPC client.

    Transactions are signed locally with the relayer key. Gas is estimated
    before taking the send lock, which covers only nonce assignment, signing
    and broadcast. Receipts are awaited outside the lock.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        target_address: str,
        bridge_address: str,
        *,
        chain_id: int | None = None,
        poll_interval: float = 2.0,
        lookback_blocks: int = 5000,
        confirmation_timeout: float = 180.0,
        gas_multiplier: float = 1.2,
    ) -> None:
        self.rpc_url = rpc_url
        self.target_address = Web3.to_checksum_address(target_address)
        self.bridge_address = Web3.to_checksum_address(bridge_address)
        self.chain_id = chain_id
        self.poll_interval = poll_interval
        self.lookback_blocks = lookback_blocks
        self.confirmation_timeout = confirmation_timeout
        self.gas_multiplier = gas_multiplier

        self._account = Account.from_key(private_key)
        self._w3: AsyncWeb3 | None = None
        self._target: Any = None
        self._bridge: Any = None
        self._send_lock = asyncio.Lock()
        self._filters: Counter[int] = Counter()

    @property
    def mode(self) -> ChainMode:
        return ChainMode.RPC

    @property
    def active_filters(self) -> int:
        return sum(self._filters.values())

    @property
    def relayer_address(self) -> str:
        return self._account.address

    async def connect(self) -> None:
        """Open the RPC provider and resolve the chain id."""
        if self._w3 is not None:
            return
        self._w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_url))
        self._target = self._w3.eth.contract(address=self.target_address, abi=TARGET_CONTRACT_ABI)
        self._bridge = self._w3.eth.contract(address=self.bridge_address, abi=BRIDGE_CONTRACT_ABI)
        if self.chain_id is None:
            self.chain_id = await self._w3.eth.chain_id
        logger.info(
            "chain_relay_connected",
            rpc_url=self.rpc_url,
            chain_id=self.chain_id,
            relayer=self.relayer_address,
        )

    async def disconnect(self) -> None:
        """Close the RPC provider session."""
        if self._w3 is not None:
            await self._w3.provider.disconnect()
            self._w3 = None
            self._target = None
            self._bridge = None
        logger.info("chain_relay_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check RPC connectivity."""
        try:
            w3 = self._web3()
            connected = await w3.is_connected()
            block_number = await w3.eth.block_number if connected else None
            return {
                "status": "healthy" if connected else "unhealthy",
                "mode": self.mode.value,
                "chain_id": self.chain_id,
                "block_number": block_number,
                "filters": self.active_filters,
            }
        except Exception as e:
            return {"status": "unhealthy", "mode": self.mode.value, "error": str(e)}

    def _web3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise SubmissionError("Chain relay is not connected")
        return self._w3

    # =========================================================================
    # Bridge events
    # =========================================================================

    async def await_attestation_posted(self, attestation_id: int) -> RootObservedEvent:
        """Poll the bridge contract logs for the attestation's root."""
        w3 = self._web3()
        topics = [ATTESTATION_POSTED_TOPIC, uint256_topic(attestation_id)]
        self._filters[attestation_id] += 1
        try:
            latest = await w3.eth.block_number
            from_block = max(0, latest - self.lookback_blocks)
            while True:
                try:
                    to_block = await w3.eth.block_number
                    if to_block >= from_block:
                        logs = await w3.eth.get_logs(
                            {
                                "address": self.bridge_address,
                                "fromBlock": from_block,
                                "toBlock": to_block,
                                "topics": topics,
                            }
                        )
                        if logs:
                            log = self._bridge.events.AttestationPosted().process_log(logs[0])
                            event = RootObservedEvent(
                                attestation_id=attestation_id,
                                root=Web3.to_hex(log["args"]["root"]),
                                block_number=log["blockNumber"],
                                tx_hash=Web3.to_hex(log["transactionHash"]),
                            )
                            logger.info(
                                "attestation_root_observed",
                                attestation_id=attestation_id,
                                root=event.root,
                                block_number=event.block_number,
                            )
                            return event
                        from_block = to_block + 1
                except (Web3Exception, OSError, ValueError) as e:
                    logger.warning(
                        "bridge_log_poll_failed",
                        attestation_id=attestation_id,
                        error=str(e),
                    )
                await asyncio.sleep(self.poll_interval)
        finally:
            self._filters[attestation_id] -= 1
            if self._filters[attestation_id] <= 0:
                del self._filters[attestation_id]

    # =========================================================================
    # Verification transaction
    # =========================================================================

    async def relay(
        self,
        attestation_id: int,
        inclusion_proof: MerkleInclusionProof,
        on_submitted: SubmittedCallback | None = None,
    ) -> RelayResult:
        """Sign and send verifyIncomeProof, then wait for the receipt."""
        w3 = self._web3()
        call = self._target.functions.verifyIncomeProof(
            attestation_id,
            [bytes.fromhex(node[2:]) for node in inclusion_proof.path],
            inclusion_proof.leaf_count,
            inclusion_proof.leaf_index,
        )

        try:
            gas = await call.estimate_gas({"from": self.relayer_address})
        except ContractLogicError as e:
            reason = decode_revert_reason(e)
            logger.warning("relay_preflight_reverted", attestation_id=attestation_id, reason=reason)
            raise ContractRevertError(reason) from e
        except Exception as e:
            raise SubmissionError(f"Gas estimation failed: {e}") from e

        # Nonce read through broadcast must not interleave between pipelines.
        async with self._send_lock:
            try:
                tx = await call.build_transaction(
                    {
                        "from": self.relayer_address,
                        "chainId": self.chain_id,
                        "nonce": await w3.eth.get_transaction_count(self.relayer_address, "pending"),
                        "gas": int(gas * self.gas_multiplier),
                    }
                )
                signed = self._account.sign_transaction(tx)
                raw_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                raise SubmissionError(f"Failed to send verification transaction: {e}") from e

        tx_hash = Web3.to_hex(raw_hash)
        logger.info("relay_transaction_sent", attestation_id=attestation_id, tx_hash=tx_hash)
        if on_submitted is not None:
            await on_submitted(tx_hash)

        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                raw_hash,
                timeout=self.confirmation_timeout,
                poll_latency=self.poll_interval,
            )
        except TimeExhausted as e:
            raise ConfirmationTimeoutError(attestation_id, tx_hash) from e

        if receipt["status"] == 0:
            reason = await self._replay_reason(tx, receipt["blockNumber"])
            logger.warning(
                "relay_transaction_reverted",
                attestation_id=attestation_id,
                tx_hash=tx_hash,
                reason=reason,
            )
            raise ContractRevertError(reason, tx_hash=tx_hash)

        verified = any(
            log["address"] == self.target_address
            and log["topics"]
            and Web3.to_hex(log["topics"][0]) == INCOME_VERIFIED_TOPIC
            for log in receipt["logs"]
        )
        return RelayResult(
            attestation_id=attestation_id,
            tx_hash=tx_hash,
            success=True,
            block_number=receipt["blockNumber"],
            verified_event=verified,
        )

    async def _replay_reason(self, tx: dict[str, Any], block_number: int) -> str:
        """Re-run a reverted transaction as a call to recover its reason."""
        try:
            await self._web3().eth.call(
                {"from": tx["from"], "to": tx["to"], "data": tx["data"]},
                block_identifier=block_number,
            )
        except ContractLogicError as e:
            return decode_revert_reason(e)
        except (OSError, ValueError) as e:
            logger.debug("revert_replay_failed", error=str(e))
        return "execution reverted"

    # =========================================================================
    # Queries
    # =========================================================================

    async def has_verified(self, claimant_address: str) -> bool:
        """Read hasVerifiedIncome for the claimant."""
        self._web3()
        address = Web3.to_checksum_address(claimant_address)
        try:
            return bool(await self._target.functions.hasVerifiedIncome(address).call())
        except (Web3Exception, OSError) as e:
            raise SubmissionError(f"hasVerifiedIncome query failed: {e}") from e

    async def transaction_status(self, tx_hash: str) -> TransactionStatus:
        """Classify a transaction by its receipt, if any."""
        w3 = self._web3()
        try:
            receipt = await w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            try:
                await w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return TransactionStatus.UNKNOWN
            return TransactionStatus.PENDING
        except (Web3Exception, OSError) as e:
            raise SubmissionError(f"Receipt lookup failed: {e}") from e
        if receipt["status"] == 1:
            return TransactionStatus.CONFIRMED
        return TransactionStatus.REVERTED
