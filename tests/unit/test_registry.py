"""
Unit tests for relay registries.
"""

import asyncio
import fnmatch
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from zkrelay.config.settings import RegistryBackend, RegistrySettings, Settings
from zkrelay.pipeline import (
    InMemoryRelayRegistry,
    RedisRelayRegistry,
    RelayRegistry,
    RelayStatus,
    create_relay_registry,
)


def fake_redis() -> MagicMock:
    """Redis client mock backed by a dict."""
    store: dict[str, str] = {}

    async def set_(key: str, value: str, nx: bool = False) -> bool | None:
        if nx and key in store:
            return None
        store[key] = value
        return True

    async def get(key: str) -> str | None:
        return store.get(key)

    async def scan_iter(match: str = "*") -> AsyncIterator[str]:
        for key in list(store):
            if fnmatch.fnmatch(key, match):
                yield key

    client = MagicMock()
    client.set = AsyncMock(side_effect=set_)
    client.get = AsyncMock(side_effect=get)
    client.scan_iter = scan_iter
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.store = store
    return client


@pytest.fixture(params=["memory", "redis"])
def registry(request: Any) -> RelayRegistry:
    if request.param == "memory":
        return InMemoryRelayRegistry()
    return RedisRelayRegistry(fake_redis(), key_prefix="test:relay:")


class TestRelayRegistry:
    """Behaviour shared by every registry backend."""

    @pytest.mark.asyncio
    async def test_mark_attempted_once(self, registry: RelayRegistry) -> None:
        assert await registry.mark_attempted(1, "req-a") is True
        assert await registry.mark_attempted(1, "req-b") is False

        record = await registry.get(1)
        assert record is not None
        assert record.status == RelayStatus.ATTEMPTED
        assert record.request_id == "req-a"

    @pytest.mark.asyncio
    async def test_record_keeps_tx_hash(self, registry: RelayRegistry) -> None:
        await registry.mark_attempted(1, "req-a")
        await registry.record(1, RelayStatus.SUBMITTED, tx_hash="0xabc")

        record = await registry.record(1, RelayStatus.CONFIRMED)

        assert record.status == RelayStatus.CONFIRMED
        assert record.tx_hash == "0xabc"
        assert record.request_id == "req-a"
        assert await registry.get(1) == record

    @pytest.mark.asyncio
    async def test_unresolved(self, registry: RelayRegistry) -> None:
        for attestation_id in (1, 2, 3):
            await registry.mark_attempted(attestation_id)
        await registry.record(1, RelayStatus.CONFIRMED, tx_hash="0x1")
        await registry.record(2, RelayStatus.UNCONFIRMED, tx_hash="0x2")

        unresolved = sorted(r.attestation_id for r in await registry.unresolved())

        assert unresolved == [2, 3]

    @pytest.mark.asyncio
    async def test_unknown_attestation(self, registry: RelayRegistry) -> None:
        assert await registry.get(99) is None

    @pytest.mark.asyncio
    async def test_health_check(self, registry: RelayRegistry) -> None:
        health = await registry.health_check()
        assert health["status"] == "healthy"


class TestInMemoryRelayRegistry:
    """Tests specific to the in-memory backend."""

    @pytest.mark.asyncio
    async def test_concurrent_markers_have_one_winner(self) -> None:
        registry = InMemoryRelayRegistry()

        results = await asyncio.gather(*(registry.mark_attempted(5) for _ in range(10)))

        assert results.count(True) == 1


class TestRedisRelayRegistry:
    """Tests specific to the Redis backend."""

    @pytest.mark.asyncio
    async def test_marker_uses_set_nx(self) -> None:
        client = fake_redis()
        registry = RedisRelayRegistry(client, key_prefix="test:relay:")

        await registry.mark_attempted(7, "req-a")

        key, _ = client.set.call_args.args
        assert key == "test:relay:7"
        assert client.set.call_args.kwargs == {"nx": True}

    @pytest.mark.asyncio
    async def test_health_check_reports_failure(self) -> None:
        client = fake_redis()
        client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        registry = RedisRelayRegistry(client)

        health = await registry.health_check()

        assert health["status"] == "unhealthy"
        assert "refused" in health["error"]

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        client = fake_redis()
        await RedisRelayRegistry(client).close()
        client.aclose.assert_awaited_once()


class TestCreateRelayRegistry:
    """Tests for backend selection."""

    def test_memory_backend(self) -> None:
        config = Settings(registry=RegistrySettings(backend=RegistryBackend.MEMORY))
        assert isinstance(create_relay_registry(config), InMemoryRelayRegistry)

    def test_redis_backend(self) -> None:
        config = Settings(registry=RegistrySettings(backend=RegistryBackend.REDIS))
        assert isinstance(create_relay_registry(config), RedisRelayRegistry)
