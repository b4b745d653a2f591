"""
Relayer submission with endpoint failover

A relayer submits a transaction bundle on the user's behalf so the fee payer
never matches the key that owns the notes. Endpoints are tried round-robin;
one that fails `failure_threshold` times in a row is marked unhealthy until
it succeeds again or passes a health check.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import httpx

from .errors import AlreadySpent, InvalidProof, RelayerUnavailable, StaleRoot
from .types import TransactionBundle

logger = logging.getLogger(__name__)


@dataclass
class RelayerEndpoint:
    url: str
    healthy: bool = True
    failure_count: int = 0
    success_count: int = 0
    last_health_check: float = 0.0


class RelayerManager:
    """Tracks endpoint health and hands out endpoints in failover order"""

    def __init__(self, urls: Sequence[str], failure_threshold: int = 3):
        if not urls:
            raise ValueError("No relayer endpoints configured")
        self.endpoints = [RelayerEndpoint(url=u.rstrip("/")) for u in urls]
        self.failure_threshold = failure_threshold
        self._next = 0

    def ordered(self) -> list[RelayerEndpoint]:
        """
        Endpoints to try for one submission

        Healthy endpoints first, starting at the round-robin cursor, then
        unhealthy ones by fewest failures.
        """
        count = len(self.endpoints)
        rotated = [self.endpoints[(self._next + i) % count] for i in range(count)]
        self._next = (self._next + 1) % count
        healthy = [e for e in rotated if e.healthy]
        unhealthy = sorted((e for e in rotated if not e.healthy), key=lambda e: e.failure_count)
        if not healthy:
            logger.warning("No healthy relayer endpoints, trying least-failed first")
        return healthy + unhealthy

    def record_success(self, endpoint: RelayerEndpoint) -> None:
        endpoint.success_count += 1
        endpoint.failure_count = max(0, endpoint.failure_count - 1)
        if endpoint.failure_count == 0:
            endpoint.healthy = True

    def record_failure(self, endpoint: RelayerEndpoint, error: str = "") -> None:
        endpoint.failure_count += 1
        if endpoint.failure_count >= self.failure_threshold:
            endpoint.healthy = False
        logger.warning(
            "Relayer %s failed (%d failures): %s", endpoint.url, endpoint.failure_count, error
        )

    async def check_health(self, client: httpx.AsyncClient, timeout: float = 5.0) -> int:
        """
        Probe `GET /health` on every endpoint

        Returns:
            Number of healthy endpoints
        """

        async def probe(endpoint: RelayerEndpoint) -> None:
            try:
                response = await client.get(f"{endpoint.url}/health", timeout=timeout)
                endpoint.healthy = response.is_success
            except httpx.HTTPError as e:
                logger.warning("Relayer %s health check failed: %s", endpoint.url, e)
                endpoint.healthy = False
            endpoint.last_health_check = time.time()

        await asyncio.gather(*(probe(e) for e in self.endpoints))
        healthy = sum(1 for e in self.endpoints if e.healthy)
        logger.info("Relayer health: %d/%d healthy", healthy, len(self.endpoints))
        return healthy


class RelayerClient:
    """
    Submits bundles through a relayer pool

    Example:
        ```python
        relayer = RelayerClient(["https://relay-a.example", "https://relay-b.example"])
        signature = await relayer.relay(bundle)
        ```
    """

    def __init__(
        self,
        urls: Sequence[str],
        timeout: float = 60.0,
        failure_threshold: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.manager = RelayerManager(urls, failure_threshold)
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def relay(self, bundle: TransactionBundle) -> str:
        """
        Submit a bundle, failing over across endpoints

        Args:
            bundle: Proof-carrying transaction

        Returns:
            Transaction signature reported by the relayer

        Raises:
            AlreadySpent: The ledger reported a spent nullifier
            StaleRoot: The ledger no longer accepts the proof's root
            InvalidProof: The relayer rejected the bundle as malformed
            RelayerUnavailable: Every endpoint failed
        """
        body = bundle.to_dict()
        errors = []
        for endpoint in self.manager.ordered():
            url = f"{endpoint.url}/relay/{bundle.statement.value}"
            try:
                response = await self._client.post(url, json=body, timeout=self.timeout)
            except httpx.HTTPError as e:
                self.manager.record_failure(endpoint, str(e))
                errors.append(f"{endpoint.url}: {e}")
                continue

            if response.status_code >= 500:
                self.manager.record_failure(endpoint, f"HTTP {response.status_code}")
                errors.append(f"{endpoint.url}: HTTP {response.status_code}")
                continue

            # 4xx answers describe the bundle, not the endpoint
            self.manager.record_success(endpoint)
            if response.status_code == 409:
                self._raise_conflict(response)
            if response.status_code >= 400:
                raise InvalidProof(
                    f"Relayer rejected bundle ({response.status_code}): {response.text[:200]}"
                )
            signature = response.json()["signature"]
            logger.info("Relayed %s via %s: %s", bundle.statement.value, endpoint.url, signature)
            return signature

        raise RelayerUnavailable("All relayer endpoints failed: " + "; ".join(errors))

    @staticmethod
    def _raise_conflict(response: httpx.Response) -> None:
        data = response.json()
        error = data.get("error")
        message = data.get("message", error or "conflict")
        if error == "already_spent":
            nullifier = data.get("nullifier")
            raise AlreadySpent(message, nullifier=int(nullifier) if nullifier else None)
        if error == "stale_root":
            raise StaleRoot(message)
        raise InvalidProof(f"Relayer conflict: {message}")

    async def check_health(self) -> int:
        return await self.manager.check_health(self._client)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
