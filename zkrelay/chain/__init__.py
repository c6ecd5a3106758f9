"""
Target Chain Module
===================

Bridge event watching and verification transactions on the target chain.

Usage:
    from zkrelay.chain import create_chain_relay

    chain = create_chain_relay(settings.chain)
    await chain.connect()
    event = await chain.await_attestation_posted(attestation_id)
    result = await chain.relay(attestation_id, inclusion_proof)

Version: 0.1.0
"""

from zkrelay.chain.client import (
    ChainRelay,
    RelayResult,
    RootObservedEvent,
    TransactionStatus,
    create_chain_relay,
)
from zkrelay.chain.mock import MockChainRelay


__all__ = [
    "ChainRelay",
    "MockChainRelay",
    "create_chain_relay",
    "RelayResult",
    "RootObservedEvent",
    "TransactionStatus",
]
