"""
Lifecycle Subscription
======================

Finite, single-consumer stream of lifecycle events for one attestation.

Version: 0.1.0
"""

import asyncio
from collections.abc import Callable
from types import TracebackType

from zkrelay.ledger.client import AttestationStatus, LifecycleEvent
from zkrelay.logging import get_logger


logger = get_logger(__name__)


class LifecycleSubscription:
    """
    Async iterator over lifecycle events with an explicit close path.

    Producers call `publish`; the single consumer iterates. Each status is
    delivered at most once. The stream ends after Failed, or after
    Finalized once IncludedInBlock has also been delivered, and closes
    itself at that point. Closing runs `on_close` exactly once so the
    owning client can drop its listener.

    Usage:
        async with client.subscribe_lifecycle(attestation_id) as events:
            async for event in events:
                ...
    """

    def __init__(
        self,
        attestation_id: int,
        on_close: Callable[["LifecycleSubscription"], None] | None = None,
    ) -> None:
        self.attestation_id = attestation_id
        self._on_close = on_close
        self._queue: asyncio.Queue[LifecycleEvent | None] = asyncio.Queue()
        self._published: set[AttestationStatus] = set()
        self._delivered: set[AttestationStatus] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: LifecycleEvent) -> bool:
        """
        Queue an event for the consumer.

        Returns:
            False if the event was dropped (closed, foreign or duplicate)
        """
        if self._closed or event.attestation_id != self.attestation_id:
            return False
        if event.status in self._published:
            return False
        self._published.add(event.status)
        self._queue.put_nowait(event)
        return True

    def _is_finished(self) -> bool:
        if AttestationStatus.FAILED in self._delivered:
            return True
        return {
            AttestationStatus.INCLUDED_IN_BLOCK,
            AttestationStatus.FINALIZED,
        } <= self._delivered

    def close(self) -> None:
        """Stop the stream and deregister it. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        # Wake a consumer blocked on get()
        self._queue.put_nowait(None)
        if self._on_close is not None:
            self._on_close(self)
        logger.debug("lifecycle_subscription_closed", attestation_id=self.attestation_id)

    def __aiter__(self) -> "LifecycleSubscription":
        return self

    async def __anext__(self) -> LifecycleEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration

        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration

        self._delivered.add(event.status)
        if self._is_finished():
            self.close()
        return event

    async def __aenter__(self) -> "LifecycleSubscription":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
