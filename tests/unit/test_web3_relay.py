"""
Unit tests for the web3 chain relay.

No node is contacted; the AsyncWeb3 instance is replaced with mocks.
"""

import asyncio
from collections.abc import Awaitable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode as abi_encode
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from zkrelay.chain import TransactionStatus, create_chain_relay
from zkrelay.chain.abi import BRIDGE_CONTRACT_ABI
from zkrelay.chain.web3_relay import (
    ATTESTATION_POSTED_TOPIC,
    INCOME_VERIFIED_TOPIC,
    INVALID_PROOF_SELECTOR,
    Web3ChainRelay,
    decode_revert_reason,
    uint256_topic,
)
from zkrelay.config.settings import ChainMode, ChainSettings
from zkrelay.errors import ConfirmationTimeoutError, ContractRevertError, SubmissionError
from zkrelay.ledger import MerkleInclusionProof

# Well-known development key (hardhat account #0)
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TARGET = "0x" + "11" * 20
BRIDGE = "0x" + "22" * 20


@pytest.fixture
def relay() -> Web3ChainRelay:
    return Web3ChainRelay(
        "http://localhost:8545",
        DEV_KEY,
        TARGET,
        BRIDGE,
        chain_id=31337,
        poll_interval=0.01,
        lookback_blocks=10,
    )


class TestHelpers:
    """Tests for topic and revert helpers."""

    def test_uint256_topic(self) -> None:
        assert uint256_topic(5) == "0x" + "00" * 31 + "05"
        assert len(uint256_topic(2**255)) == 66

    def test_decode_custom_error(self) -> None:
        data = INVALID_PROOF_SELECTOR + abi_encode(["string"], ["Invalid Merkle proof"]).hex()
        error = ContractLogicError("execution reverted", data=data)

        assert decode_revert_reason(error) == "Invalid Merkle proof"

    def test_decode_falls_back_to_message(self) -> None:
        error = ContractLogicError("execution reverted: Root not posted", data="0x08c379a0")

        assert decode_revert_reason(error) == "execution reverted: Root not posted"


class TestWeb3ChainRelay:
    """Tests for Web3ChainRelay without a node."""

    def test_relayer_address_from_key(self, relay: Web3ChainRelay) -> None:
        assert relay.relayer_address == DEV_ADDRESS
        assert relay.mode == ChainMode.RPC

    @pytest.mark.asyncio
    async def test_calls_require_connection(self, relay: Web3ChainRelay) -> None:
        with pytest.raises(SubmissionError, match="not connected"):
            await relay.await_attestation_posted(1)
        with pytest.raises(SubmissionError, match="not connected"):
            await relay.has_verified(DEV_ADDRESS)

    @pytest.mark.asyncio
    async def test_health_check_when_disconnected(self, relay: Web3ChainRelay) -> None:
        health = await relay.health_check()
        assert health["status"] == "unhealthy"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "receipt_status,expected",
        [(1, TransactionStatus.CONFIRMED), (0, TransactionStatus.REVERTED)],
    )
    async def test_transaction_status_from_receipt(
        self,
        relay: Web3ChainRelay,
        receipt_status: int,
        expected: TransactionStatus,
    ) -> None:
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(return_value={"status": receipt_status})
        relay._w3 = w3

        assert await relay.transaction_status("0xabc") == expected

    @pytest.mark.asyncio
    async def test_transaction_status_pending(self, relay: Web3ChainRelay) -> None:
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("none"))
        w3.eth.get_transaction = AsyncMock(return_value={"hash": "0xabc"})
        relay._w3 = w3

        assert await relay.transaction_status("0xabc") == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_transaction_status_unknown(self, relay: Web3ChainRelay) -> None:
        w3 = MagicMock()
        w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("none"))
        w3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("none"))
        relay._w3 = w3

        assert await relay.transaction_status("0xabc") == TransactionStatus.UNKNOWN


class TestCreateChainRelay:
    """Tests for relay selection."""

    def test_rpc_mode(self) -> None:
        relay = create_chain_relay(
            ChainSettings(
                mode=ChainMode.RPC,
                private_key=DEV_KEY,
                target_contract_address=TARGET,
                bridge_contract_address=BRIDGE,
            )
        )
        assert isinstance(relay, Web3ChainRelay)
        assert relay.target_address.lower() == TARGET


# ============================================================================
# Relay and bridge paths against a mocked node
# ============================================================================

SENT_HASH = b"\x12" * 32
PATH = ("0x" + "01" * 32, "0x" + "02" * 32)


class FakeEth:
    """Async eth namespace; block_number is awaitable like AsyncWeb3's."""

    def __init__(self, head: int = 100) -> None:
        self.head = head
        self.get_logs = AsyncMock(return_value=[])
        self.get_transaction_count = AsyncMock(return_value=3)
        self.send_raw_transaction = AsyncMock(return_value=SENT_HASH)
        self.wait_for_transaction_receipt = AsyncMock(return_value=receipt(status=1))
        self.call = AsyncMock(return_value=b"")

    @property
    def block_number(self) -> Awaitable[int]:
        async def current() -> int:
            return self.head

        return current()


def receipt(status: int, verified: bool = True) -> dict[str, Any]:
    logs = (
        [{"address": TARGET, "topics": [bytes.fromhex(INCOME_VERIFIED_TOPIC[2:])]}]
        if verified
        else []
    )
    return {"status": status, "blockNumber": 7, "logs": logs}


def contract_call() -> MagicMock:
    call = MagicMock()
    call.estimate_gas = AsyncMock(return_value=100_000)
    call.build_transaction = AsyncMock(
        side_effect=lambda params: {
            **params,
            "to": TARGET,
            "data": "0xdeadbeef",
            "value": 0,
            "gasPrice": 10**9,
        }
    )
    return call


def wire(relay: Web3ChainRelay, call: MagicMock | None = None) -> FakeEth:
    eth = FakeEth()
    w3 = MagicMock()
    w3.eth = eth
    relay._w3 = w3
    relay._target = MagicMock()
    relay._target.functions.verifyIncomeProof = MagicMock(return_value=call or contract_call())
    relay._bridge = Web3().eth.contract(address=BRIDGE, abi=BRIDGE_CONTRACT_ABI)
    return eth


def inclusion(attestation_id: int = 1) -> MerkleInclusionProof:
    return MerkleInclusionProof(
        attestation_id=attestation_id,
        leaf_digest="0x" + "ab" * 32,
        path=PATH,
        leaf_count=3,
        leaf_index=2,
    )


def invalid_proof(reason: str) -> ContractLogicError:
    data = INVALID_PROOF_SELECTOR + abi_encode(["string"], [reason]).hex()
    return ContractLogicError("execution reverted", data=data)


def posted_log(attestation_id: int, root: bytes) -> dict[str, Any]:
    return {
        "address": BRIDGE,
        "topics": [
            bytes.fromhex(ATTESTATION_POSTED_TOPIC[2:]),
            attestation_id.to_bytes(32, "big"),
            root,
        ],
        "data": b"",
        "blockNumber": 95,
        "blockHash": b"\x0b" * 32,
        "transactionHash": b"\x0a" * 32,
        "transactionIndex": 0,
        "logIndex": 0,
    }


class TestRelayTransaction:
    """Tests for Web3ChainRelay.relay."""

    @pytest.mark.asyncio
    async def test_confirmed_relay(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)

        result = await relay.relay(1, inclusion())

        assert result.success is True
        assert result.tx_hash == Web3.to_hex(SENT_HASH)
        assert result.block_number == 7
        assert result.verified_event is True
        eth.get_transaction_count.assert_awaited_once_with(DEV_ADDRESS, "pending")
        eth.send_raw_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_path_sent_as_bytes32_in_ledger_order(self, relay: Web3ChainRelay) -> None:
        wire(relay)

        await relay.relay(1, inclusion())

        relay._target.functions.verifyIncomeProof.assert_called_once_with(
            1, [b"\x01" * 32, b"\x02" * 32], 3, 2
        )

    @pytest.mark.asyncio
    async def test_gas_estimate_is_scaled(self, relay: Web3ChainRelay) -> None:
        call = contract_call()
        wire(relay, call)

        await relay.relay(1, inclusion())

        params = call.build_transaction.await_args.args[0]
        assert params["gas"] == 120_000
        assert params["nonce"] == 3
        assert params["chainId"] == 31337

    @pytest.mark.asyncio
    async def test_preflight_revert_is_not_sent(self, relay: Web3ChainRelay) -> None:
        call = contract_call()
        call.estimate_gas = AsyncMock(side_effect=invalid_proof("Root not posted"))
        eth = wire(relay, call)
        on_submitted = AsyncMock()

        with pytest.raises(ContractRevertError) as exc_info:
            await relay.relay(1, inclusion(), on_submitted=on_submitted)

        assert exc_info.value.reason == "Root not posted"
        assert exc_info.value.tx_hash is None
        eth.send_raw_transaction.assert_not_awaited()
        on_submitted.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reverted_receipt_replays_reason(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)
        eth.wait_for_transaction_receipt.return_value = receipt(status=0, verified=False)
        eth.call.side_effect = invalid_proof("Invalid Merkle proof")

        with pytest.raises(ContractRevertError) as exc_info:
            await relay.relay(1, inclusion())

        assert exc_info.value.reason == "Invalid Merkle proof"
        assert exc_info.value.tx_hash == Web3.to_hex(SENT_HASH)
        replayed = eth.call.await_args
        assert replayed.args[0] == {"from": DEV_ADDRESS, "to": TARGET, "data": "0xdeadbeef"}
        assert replayed.kwargs["block_identifier"] == 7

    @pytest.mark.asyncio
    async def test_receipt_timeout_keeps_tx_hash(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)
        eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")

        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            await relay.relay(4, inclusion(4))

        assert exc_info.value.attestation_id == 4
        assert exc_info.value.tx_hash == Web3.to_hex(SENT_HASH)

    @pytest.mark.asyncio
    async def test_on_submitted_runs_before_receipt_wait(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)
        order: list[str] = []

        async def on_submitted(tx_hash: str) -> None:
            order.append(f"submitted:{tx_hash}")

        async def wait_for_receipt(*args: Any, **kwargs: Any) -> dict[str, Any]:
            order.append("receipt")
            return receipt(status=1)

        eth.wait_for_transaction_receipt.side_effect = wait_for_receipt

        await relay.relay(1, inclusion(), on_submitted=on_submitted)

        assert order == [f"submitted:{Web3.to_hex(SENT_HASH)}", "receipt"]

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_submission_error(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)
        eth.send_raw_transaction.side_effect = OSError("connection reset")

        with pytest.raises(SubmissionError, match="connection reset"):
            await relay.relay(1, inclusion())

    @pytest.mark.asyncio
    async def test_slow_estimate_does_not_block_other_sends(
        self, relay: Web3ChainRelay
    ) -> None:
        release = asyncio.Event()
        slow, fast = contract_call(), contract_call()

        async def stuck_estimate(params: dict[str, Any]) -> int:
            await release.wait()
            return 100_000

        slow.estimate_gas = AsyncMock(side_effect=stuck_estimate)
        eth = wire(relay)
        relay._target.functions.verifyIncomeProof = MagicMock(
            side_effect=lambda attestation_id, *args: slow if attestation_id == 1 else fast
        )

        stuck = asyncio.create_task(relay.relay(1, inclusion(1)))
        await asyncio.sleep(0)

        result = await asyncio.wait_for(relay.relay(2, inclusion(2)), timeout=1.0)
        assert result.attestation_id == 2
        assert eth.send_raw_transaction.await_count == 1
        assert not stuck.done()

        release.set()
        await stuck
        assert eth.send_raw_transaction.await_count == 2


class TestAwaitAttestationPosted:
    """Tests for bridge log polling."""

    @pytest.mark.asyncio
    async def test_root_observed(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)
        root = b"\x5a" * 32
        eth.get_logs.side_effect = [[], [posted_log(9, root)]]

        async def advance_head() -> None:
            while eth.get_logs.await_count < 1:
                await asyncio.sleep(0)
            eth.head += 1

        advancing = asyncio.create_task(advance_head())
        event = await asyncio.wait_for(relay.await_attestation_posted(9), timeout=2.0)
        await advancing

        assert event.attestation_id == 9
        assert event.root == Web3.to_hex(root)
        assert event.block_number == 95
        assert event.tx_hash == Web3.to_hex(b"\x0a" * 32)
        first = eth.get_logs.await_args_list[0].args[0]
        assert first["fromBlock"] == 90
        assert first["address"] == BRIDGE
        assert first["topics"] == [ATTESTATION_POSTED_TOPIC, uint256_topic(9)]
        assert relay.active_filters == 0

    @pytest.mark.asyncio
    async def test_poll_errors_are_retried(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)
        eth.get_logs.side_effect = [OSError("rpc down"), [posted_log(9, b"\x5a" * 32)]]

        event = await asyncio.wait_for(relay.await_attestation_posted(9), timeout=2.0)

        assert event.attestation_id == 9
        assert eth.get_logs.await_count == 2
        assert relay.active_filters == 0

    @pytest.mark.asyncio
    async def test_cancel_releases_filter(self, relay: Web3ChainRelay) -> None:
        eth = wire(relay)

        waiting = asyncio.create_task(relay.await_attestation_posted(9))
        while eth.get_logs.await_count < 1:
            await asyncio.sleep(0.01)
        assert relay.active_filters == 1

        waiting.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiting

        assert relay.active_filters == 0
