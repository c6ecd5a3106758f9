"""
Relay Registry
==============

Durable "relay attempted" markers and reconciliation records.

A marker is written with set-if-absent semantics before the
verification transaction is sent, so an attestation is relayed at most
once even across restarts when the Redis backend is used.

Version: 0.1.0
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from redis.asyncio import Redis

from zkrelay.config.settings import RegistryBackend, Settings
from zkrelay.logging import get_logger

logger = get_logger(__name__)


class RelayStatus(str, Enum):
    """Relay outcome as recorded for reconciliation."""

    ATTEMPTED = "attempted"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    UNCONFIRMED = "unconfirmed"
    FAILED = "failed"

    @property
    def is_resolved(self) -> bool:
        return self in (RelayStatus.CONFIRMED, RelayStatus.REVERTED, RelayStatus.FAILED)


class RelayRecord(BaseModel):
    """Reconciliation record for one attestation."""

    attestation_id: int
    status: RelayStatus = RelayStatus.ATTEMPTED
    request_id: str | None = None
    tx_hash: str | None = None
    reason: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def updated(
        self,
        status: RelayStatus,
        tx_hash: str | None = None,
        reason: str | None = None,
    ) -> "RelayRecord":
        return self.model_copy(
            update={
                "status": status,
                "tx_hash": tx_hash or self.tx_hash,
                "reason": reason,
                "updated_at": datetime.now(UTC),
            }
        )


class RelayRegistry(ABC):
    """Abstract store for relay markers."""

    @abstractmethod
    async def mark_attempted(self, attestation_id: int, request_id: str | None = None) -> bool:
        """
        Atomically create the marker for `attestation_id`.

        Returns:
            True if this call created it, False if it already existed
        """
        ...

    @abstractmethod
    async def record(
        self,
        attestation_id: int,
        status: RelayStatus,
        tx_hash: str | None = None,
        reason: str | None = None,
    ) -> RelayRecord:
        """Update the record's status, keeping any known tx hash."""
        ...

    @abstractmethod
    async def get(self, attestation_id: int) -> RelayRecord | None:
        """Get the record for an attestation."""
        ...

    @abstractmethod
    async def unresolved(self) -> list[RelayRecord]:
        """Records whose outcome is not known yet."""
        ...

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "backend": type(self).__name__}

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryRelayRegistry(RelayRegistry):
    """
    Process-local registry.

    Markers are lost on restart.
    """

    def __init__(self) -> None:
        self._records: dict[int, RelayRecord] = {}
        self._lock = asyncio.Lock()

    async def mark_attempted(self, attestation_id: int, request_id: str | None = None) -> bool:
        async with self._lock:
            if attestation_id in self._records:
                return False
            self._records[attestation_id] = RelayRecord(
                attestation_id=attestation_id, request_id=request_id
            )
            return True

    async def record(
        self,
        attestation_id: int,
        status: RelayStatus,
        tx_hash: str | None = None,
        reason: str | None = None,
    ) -> RelayRecord:
        async with self._lock:
            current = self._records.get(attestation_id) or RelayRecord(
                attestation_id=attestation_id
            )
            updated = current.updated(status, tx_hash=tx_hash, reason=reason)
            self._records[attestation_id] = updated
            return updated

    async def get(self, attestation_id: int) -> RelayRecord | None:
        return self._records.get(attestation_id)

    async def unresolved(self) -> list[RelayRecord]:
        return [r for r in self._records.values() if not r.status.is_resolved]


class RedisRelayRegistry(RelayRegistry):
    """
    Registry stored in Redis as one JSON document per attestation.

    `mark_attempted` uses SET NX, so concurrent relayers sharing the
    same Redis agree on a single winner.
    """

    def __init__(self, client: Redis, key_prefix: str = "zkrelay:relay:") -> None:  # type: ignore[type-arg]
        self._client = client
        self.key_prefix = key_prefix

    def _key(self, attestation_id: int) -> str:
        return f"{self.key_prefix}{attestation_id}"

    async def mark_attempted(self, attestation_id: int, request_id: str | None = None) -> bool:
        record = RelayRecord(attestation_id=attestation_id, request_id=request_id)
        created = await self._client.set(
            self._key(attestation_id),
            record.model_dump_json(),
            nx=True,
        )
        return bool(created)

    async def record(
        self,
        attestation_id: int,
        status: RelayStatus,
        tx_hash: str | None = None,
        reason: str | None = None,
    ) -> RelayRecord:
        current = await self.get(attestation_id) or RelayRecord(attestation_id=attestation_id)
        updated = current.updated(status, tx_hash=tx_hash, reason=reason)
        await self._client.set(self._key(attestation_id), updated.model_dump_json())
        return updated

    async def get(self, attestation_id: int) -> RelayRecord | None:
        raw = await self._client.get(self._key(attestation_id))
        if raw is None:
            return None
        return RelayRecord.model_validate_json(raw)

    async def unresolved(self) -> list[RelayRecord]:
        records: list[RelayRecord] = []
        async for key in self._client.scan_iter(match=f"{self.key_prefix}*"):
            raw = await self._client.get(key)
            if raw is None:
                continue
            record = RelayRecord.model_validate_json(raw)
            if not record.status.is_resolved:
                records.append(record)
        return records

    async def health_check(self) -> dict[str, Any]:
        try:
            pong = await self._client.ping()
            return {"status": "healthy" if pong else "unhealthy", "backend": "redis"}
        except Exception as e:
            logger.error("redis_health_check_failed", error=str(e))
            return {"status": "unhealthy", "backend": "redis", "error": str(e)}

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_client_closed")


def create_redis_client(url: str) -> Redis:  # type: ignore[type-arg]
    """Create an async Redis client for the registry."""
    return aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )


def create_relay_registry(config: Settings) -> RelayRegistry:
    """
    Build the registry selected by configuration.

    Args:
        config: Application settings (registry and redis groups)
    """
    if config.registry.backend == RegistryBackend.MEMORY:
        registry: RelayRegistry = InMemoryRelayRegistry()
    elif config.registry.backend == RegistryBackend.REDIS:
        registry = RedisRelayRegistry(
            create_redis_client(config.redis.url),
            key_prefix=config.registry.key_prefix,
        )
        logger.info("redis_client_created", host=config.redis.host)
    else:
        raise ValueError(f"Unknown registry backend: {config.registry.backend}")

    logger.info("relay_registry_initialized", backend=config.registry.backend.value)
    return registry
