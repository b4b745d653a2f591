"""
Proof backends

The orchestrator treats proving as an opaque, awaitable call:

    generate_proof(statement, witness) -> ProofResult(proof, public_inputs)

`HttpProofBackend` talks to a prover service. `LocalProofBackend` is a
development stand-in that checks the witness relations and emits a digest
bound to the statement and public inputs. It is NOT zero-knowledge and must
never be used against a real verifier.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import httpx

from .errors import InvalidProof, ProofBackendUnavailable, ProofTimeout
from .statements import StatementId, Witness
from .utils import field_to_bytes

logger = logging.getLogger(__name__)

LOCAL_PROOF_DOMAIN = b"shieldpool/local-proof/v1"


@dataclass(frozen=True)
class ProofResult:
    proof: bytes
    public_inputs: list[int]


class ProofBackend(Protocol):
    async def generate_proof(self, statement: StatementId, witness: Witness) -> ProofResult: ...


def _local_digest(statement: StatementId, public_inputs: Sequence[int]) -> bytes:
    message = LOCAL_PROOF_DOMAIN + statement.value.encode()
    for value in public_inputs:
        message += field_to_bytes(value)
    return hashlib.sha3_256(message).digest()


class LocalProofBackend:
    """
    In-process development prover

    Example:
        ```python
        backend = LocalProofBackend()
        result = await backend.generate_proof(StatementId.DEPOSIT, witness)
        assert backend.verify(StatementId.DEPOSIT, result.proof, result.public_inputs)
        ```
    """

    def __init__(self, delay: float = 0.0):
        """
        Args:
            delay: Artificial proving latency in seconds
        """
        self.delay = delay
        self.calls = 0

    async def generate_proof(self, statement: StatementId, witness: Witness) -> ProofResult:
        if witness.statement is not statement:
            raise ValueError(
                f"Witness is for {witness.statement.value}, not {statement.value}"
            )
        self.calls += 1
        witness.check()
        if self.delay:
            await asyncio.sleep(self.delay)
        public_inputs = witness.public_inputs()
        return ProofResult(
            proof=_local_digest(statement, public_inputs),
            public_inputs=public_inputs,
        )

    def verify(self, statement: StatementId, proof: bytes, public_inputs: Sequence[int]) -> bool:
        try:
            return proof == _local_digest(statement, public_inputs)
        except ValueError:
            return False


class HttpProofBackend:
    """Prover service client (`POST /prove/{statement}`)"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the prover client

        Args:
            base_url: Prover service URL
            timeout: Per-request timeout in seconds
            client: Optional preconfigured httpx client (owned by the caller)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def generate_proof(self, statement: StatementId, witness: Witness) -> ProofResult:
        """
        Request a proof

        Args:
            statement: Statement to prove
            witness: Checked witness

        Returns:
            ProofResult

        Raises:
            ProofTimeout: If the service does not answer within `timeout`
            ProofBackendUnavailable: On connection errors or 5xx answers
            InvalidProof: If the service returns public inputs that differ
                from the witness
        """
        url = f"{self.base_url}/prove/{statement.value}"
        try:
            response = await self._client.post(
                url,
                json={"statement": statement.value, "signals": witness.signals()},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProofTimeout(f"Proof request timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise ProofBackendUnavailable(f"Proof backend unreachable: {e}") from e

        if response.status_code >= 500:
            raise ProofBackendUnavailable(
                f"Proof backend error {response.status_code}: {response.text[:200]}"
            )
        if response.status_code >= 400:
            raise InvalidProof(
                f"Proof backend rejected the witness ({response.status_code}): "
                f"{response.text[:200]}"
            )

        body = response.json()
        public_inputs = [int(v) for v in body["publicInputs"]]
        if public_inputs != witness.public_inputs():
            raise InvalidProof("Proof backend returned mismatched public inputs")
        logger.debug("Received %s proof from %s", statement.value, self.base_url)
        return ProofResult(proof=bytes.fromhex(body["proof"]), public_inputs=public_inputs)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
