"""Type definitions for shieldpool"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .assets import AssetId
from .encryption import EncryptedNotePayload
from .note import Note
from .statements import StatementId


class TransactionStatus(Enum):
    """Transaction status"""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class TransactionBundle:
    """
    Everything the ledger needs for one proof-carrying transaction

    `public_amount` and `receiver` are the transparent side of a deposit or
    withdraw; transfers and consolidations carry neither.
    """

    statement: StatementId
    nullifiers: list[int]
    new_commitments: list[int]
    proof: bytes
    public_inputs: list[int]
    asset: AssetId
    encrypted_notes: list[Optional[EncryptedNotePayload]] = field(default_factory=list)
    public_amount: int = 0
    receiver: Optional[str] = None

    def validate(self) -> None:
        """Validate bundle shape before submission"""
        if self.public_amount < 0:
            raise ValueError("Public amount must not be negative")
        if self.encrypted_notes and len(self.encrypted_notes) != len(self.new_commitments):
            raise ValueError("One encrypted note slot per new commitment")
        if self.statement is StatementId.WITHDRAW and self.receiver is None:
            raise ValueError("Withdraw requires a receiver")

    def to_dict(self) -> dict[str, Any]:
        """JSON body for relayers"""
        return {
            "statement": self.statement.value,
            "nullifiers": [str(n) for n in self.nullifiers],
            "newCommitments": [str(c) for c in self.new_commitments],
            "proof": self.proof.hex(),
            "publicInputs": [str(v) for v in self.public_inputs],
            "asset": str(self.asset),
            "encryptedNotes": [
                p.to_memo() if p is not None else None for p in self.encrypted_notes
            ],
            "publicAmount": self.public_amount,
            "receiver": self.receiver,
        }


@dataclass
class LedgerReceipt:
    """Outcome of a submitted transaction"""

    signature: str
    status: TransactionStatus
    leaf_indices: list[int] = field(default_factory=list)
    root: Optional[int] = None
    error: Optional[str] = None


@dataclass
class EncryptedNoteRecord:
    """An encrypted payload as published next to its commitment"""

    sequence: int
    commitment: int
    leaf_index: int
    payload: EncryptedNotePayload


@dataclass
class PrivateTransaction:
    """Private transaction result"""

    signature: str
    status: TransactionStatus
    statement: StatementId
    nullifiers: list[int] = field(default_factory=list)
    commitments: list[int] = field(default_factory=list)
    proof: Optional[bytes] = None
    new_notes: list[Note] = field(default_factory=list)
    attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary. Note plaintext is never included."""
        return {
            "signature": self.signature,
            "status": self.status.value,
            "statement": self.statement.value,
            "nullifiers": [hex(n) for n in self.nullifiers],
            "commitments": [hex(c) for c in self.commitments],
            "proof": self.proof.hex() if self.proof else None,
            "attempts": self.attempts,
        }
