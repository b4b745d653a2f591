"""Error taxonomy for shieldpool"""

from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Error codes shared by client-side checks and ledger rejections"""

    INVALID_AMOUNT = "invalid_amount"
    INVALID_WITNESS = "invalid_witness"
    INVALID_ADDRESS = "invalid_address"
    TREE_FULL = "tree_full"
    ALREADY_SPENT = "already_spent"
    STALE_ROOT = "stale_root"
    INVALID_PROOF = "invalid_proof"
    PROOF_BACKEND_UNAVAILABLE = "proof_backend_unavailable"
    PROOF_TIMEOUT = "proof_timeout"
    RELAYER_UNAVAILABLE = "relayer_unavailable"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CONGESTION = "congestion"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    INTERNAL = "internal"


class ShieldPoolError(Exception):
    """Base class for all shieldpool errors"""

    code = ErrorCode.INTERNAL
    recoverable = False

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class InvalidAmount(ShieldPoolError, ValueError):
    """Amount is zero, negative, not an integer, or not below the field modulus"""

    code = ErrorCode.INVALID_AMOUNT


class InvalidWitness(ShieldPoolError, ValueError):
    """A witness violates its statement's relations (caught before proving)"""

    code = ErrorCode.INVALID_WITNESS


class InvalidAddress(ShieldPoolError, ValueError):
    """Malformed shielded or transparent address"""

    code = ErrorCode.INVALID_ADDRESS


class TreeFull(ShieldPoolError):
    """The commitment tree has no free leaves left. Fatal for the epoch."""

    code = ErrorCode.TREE_FULL


class AlreadySpent(ShieldPoolError):
    """A nullifier is already present in the registry"""

    code = ErrorCode.ALREADY_SPENT
    recoverable = True

    def __init__(self, message: str, nullifier: Optional[int] = None):
        super().__init__(message)
        self.nullifier = nullifier


class StaleRoot(ShieldPoolError):
    """The Merkle root a proof was built against is no longer accepted"""

    code = ErrorCode.STALE_ROOT
    recoverable = True


class InvalidProof(ShieldPoolError):
    """The verifier rejected the proof or its public inputs"""

    code = ErrorCode.INVALID_PROOF


class ProofBackendUnavailable(ShieldPoolError):
    """The proof backend could not be reached or failed to answer"""

    code = ErrorCode.PROOF_BACKEND_UNAVAILABLE
    recoverable = True


class ProofTimeout(ShieldPoolError):
    """The proof backend did not answer in time"""

    code = ErrorCode.PROOF_TIMEOUT
    recoverable = True


class RelayerUnavailable(ShieldPoolError):
    """Every configured relayer endpoint failed"""

    code = ErrorCode.RELAYER_UNAVAILABLE
    recoverable = True


class InsufficientFunds(ShieldPoolError):
    """Unspent notes of the requested asset do not cover the amount"""

    code = ErrorCode.INSUFFICIENT_FUNDS


class CongestionError(ShieldPoolError):
    """Stale-root retries were exhausted"""

    code = ErrorCode.CONGESTION
    recoverable = True


class ConfirmationTimeout(ShieldPoolError):
    """A submitted transaction was not confirmed within the deadline"""

    code = ErrorCode.CONFIRMATION_TIMEOUT
    recoverable = True

    def __init__(self, message: str, signature: Optional[str] = None):
        super().__init__(message)
        self.signature = signature
