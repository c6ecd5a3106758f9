"""
Gateway Attestation Client
==========================

HTTP client for an attestation ledger gateway.

The gateway fronts the ledger's session API:

    POST /attestations                         submit a proof record
    GET  /attestations/{id}                    current lifecycle status
    GET  /attestations/{id}/proof?leafDigest=  Merkle inclusion proof

Lifecycle subscriptions are served by polling the status endpoint until
a terminal status is seen.

Version: 0.1.0
"""

import asyncio
from typing import Any

import httpx

from zkrelay.config.settings import LedgerMode
from zkrelay.errors import (
    AttestationRejectedError,
    NotFoundError,
    NotReadyError,
    SubmissionError,
)
from zkrelay.ledger.client import (
    Attestation,
    AttestationClient,
    AttestationStatus,
    LifecycleEvent,
    MerkleInclusionProof,
)
from zkrelay.ledger.subscription import LifecycleSubscription
from zkrelay.logging import get_logger
from zkrelay.zk.models import Proof


logger = get_logger(__name__)

# Client errors worth retrying
RETRYABLE_STATUS = frozenset({408, 429})
NOT_READY_STATUS = frozenset({409, 425})


class GatewayAttestationClient(AttestationClient):
    """
    Attestation ledger client over the gateway REST API.

    One httpx.AsyncClient is shared by every call. Each lifecycle
    subscription owns a polling task that is cancelled when the
    subscription closes.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        poll_interval: float = 2.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize gateway client.

        Args:
            base_url: Gateway root URL
            api_key: Bearer token, empty for none
            poll_interval: Seconds between lifecycle status polls
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._transport = transport

        self._client: httpx.AsyncClient | None = None
        self._subscriptions: dict[LifecycleSubscription, asyncio.Task[None]] = {}

    @property
    def mode(self) -> LedgerMode:
        return LedgerMode.GATEWAY

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self._client is not None:
            return

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )
        logger.info("ledger_gateway_connected", url=self.base_url)

    async def disconnect(self) -> None:
        """Close every subscription and the HTTP session."""
        for subscription in list(self._subscriptions):
            subscription.close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("ledger_gateway_disconnected")

    async def health_check(self) -> dict[str, Any]:
        """Check gateway reachability."""
        try:
            response = await self._http().get("/health")
            healthy = response.status_code < 500
            return {
                "status": "healthy" if healthy else "unhealthy",
                "mode": self.mode.value,
                "url": self.base_url,
                "subscriptions": self.active_subscriptions,
            }
        except (httpx.HTTPError, SubmissionError) as e:
            return {
                "status": "unhealthy",
                "mode": self.mode.value,
                "url": self.base_url,
                "error": str(e),
            }

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise SubmissionError("Ledger gateway session is not connected")
        return self._client

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, proof: Proof) -> Attestation:
        """POST the proof record and return the accepted attestation."""
        try:
            response = await self._http().post("/attestations", json=proof.to_record())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if 400 <= status < 500 and status not in RETRYABLE_STATUS:
                raise AttestationRejectedError(
                    f"Ledger rejected proof record ({status}): {e.response.text}"
                ) from e
            raise SubmissionError(f"Ledger gateway returned {status}") from e
        except httpx.HTTPError as e:
            raise SubmissionError(f"Ledger gateway unreachable: {e}") from e

        body = response.json()
        attestation = Attestation(
            attestation_id=int(body["attestationId"]),
            leaf_digest=body["leafDigest"],
            status=AttestationStatus(body.get("status", AttestationStatus.SUBMITTED.value)),
        )
        logger.info(
            "attestation_submitted",
            attestation_id=attestation.attestation_id,
            leaf_digest=attestation.leaf_digest,
        )
        return attestation

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def subscribe_lifecycle(self, attestation_id: int) -> LifecycleSubscription:
        """Open a subscription backed by a status polling task."""
        subscription = LifecycleSubscription(attestation_id, on_close=self._release)
        self._subscriptions[subscription] = asyncio.create_task(
            self._poll_lifecycle(subscription)
        )
        return subscription

    def _release(self, subscription: LifecycleSubscription) -> None:
        task = self._subscriptions.pop(subscription, None)
        if task is not None and not task.done():
            task.cancel()

    async def _poll_lifecycle(self, subscription: LifecycleSubscription) -> None:
        attestation_id = subscription.attestation_id
        while not subscription.closed:
            try:
                response = await self._http().get(f"/attestations/{attestation_id}")
                if response.status_code == 404:
                    subscription.publish(
                        LifecycleEvent(
                            attestation_id=attestation_id,
                            status=AttestationStatus.FAILED,
                            reason="unknown attestation",
                        )
                    )
                    return
                response.raise_for_status()
            except (httpx.HTTPError, SubmissionError) as e:
                logger.warning(
                    "lifecycle_poll_failed",
                    attestation_id=attestation_id,
                    error=str(e),
                )
                await asyncio.sleep(self.poll_interval)
                continue

            try:
                body = response.json()
                status = AttestationStatus(body["status"])
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(
                    "lifecycle_poll_unreadable",
                    attestation_id=attestation_id,
                    error=f"{type(e).__name__}: {e}",
                    body=response.text[:200],
                )
                await asyncio.sleep(self.poll_interval)
                continue

            if status.rank >= AttestationStatus.INCLUDED_IN_BLOCK.rank and (
                status != AttestationStatus.FAILED
            ):
                subscription.publish(
                    LifecycleEvent(
                        attestation_id=attestation_id,
                        status=AttestationStatus.INCLUDED_IN_BLOCK,
                        tx_hash=body.get("txHash"),
                    )
                )
            if status.is_terminal:
                subscription.publish(
                    LifecycleEvent(
                        attestation_id=attestation_id,
                        status=status,
                        tx_hash=body.get("txHash"),
                        block_hash=body.get("blockHash"),
                        reason=body.get("reason"),
                    )
                )
                return

            await asyncio.sleep(self.poll_interval)

    # =========================================================================
    # Inclusion proofs
    # =========================================================================

    async def fetch_inclusion_proof(
        self,
        attestation_id: int,
        leaf_digest: str,
    ) -> MerkleInclusionProof:
        """GET the inclusion path for a finalized leaf."""
        try:
            response = await self._http().get(
                f"/attestations/{attestation_id}/proof",
                params={"leafDigest": leaf_digest},
            )
        except httpx.HTTPError as e:
            raise SubmissionError(f"Ledger gateway unreachable: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"Unknown attestation {attestation_id} / leaf {leaf_digest}")
        if response.status_code in NOT_READY_STATUS:
            raise NotReadyError(f"Attestation {attestation_id} is not finalized")
        if response.is_error:
            raise SubmissionError(
                f"Ledger gateway returned {response.status_code} for inclusion proof"
            )

        body = response.json()
        return MerkleInclusionProof(
            attestation_id=attestation_id,
            leaf_digest=leaf_digest,
            path=body["proof"],
            leaf_count=int(body["numberOfLeaves"]),
            leaf_index=int(body["leafIndex"]),
        )
