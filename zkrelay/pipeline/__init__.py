"""
Relay Pipeline Module
=====================

Per-request state machine, orchestrator and relay registry.

Version: 0.1.0
"""

from zkrelay.pipeline.orchestrator import PipelineConfig, PipelineOrchestrator
from zkrelay.pipeline.registry import (
    InMemoryRelayRegistry,
    RedisRelayRegistry,
    RelayRecord,
    RelayRegistry,
    RelayStatus,
    create_redis_client,
    create_relay_registry,
)
from zkrelay.pipeline.state import PipelineFailure, PipelineStage, PipelineState


__all__ = [
    # Orchestrator
    "PipelineOrchestrator",
    "PipelineConfig",
    # State
    "PipelineStage",
    "PipelineState",
    "PipelineFailure",
    # Registry
    "RelayRegistry",
    "InMemoryRelayRegistry",
    "RedisRelayRegistry",
    "RelayRecord",
    "RelayStatus",
    "create_redis_client",
    "create_relay_registry",
]
