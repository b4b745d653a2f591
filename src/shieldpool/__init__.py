"""
shieldpool - Shielded pool cryptographic core for Solana

Notes, commitments and nullifiers over Poseidon, an append-only commitment
tree, proof statement contracts, encrypted note discovery and the client
that drives deposits, private transfers, consolidations and withdrawals.
"""

__version__ = "0.1.0"

from .assets import AssetId, AssetKind, AssetRegistry, asset_to_field
from .client import PrivacyClient
from .config import Settings, configure_logging, get_settings
from .encryption import EncryptedNotePayload, NotePayload, decrypt_with, encrypt_for
from .errors import (
    AlreadySpent,
    ConfirmationTimeout,
    CongestionError,
    ErrorCode,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    InvalidProof,
    InvalidWitness,
    ProofBackendUnavailable,
    ProofTimeout,
    RelayerUnavailable,
    ShieldPoolError,
    StaleRoot,
    TreeFull,
)
from .keys import ShieldedKeys, ViewingKeys, derive_keys, keys_from_keypair
from .ledger import InMemoryLedger, Ledger
from .merkle import CommitmentTree, MerkleProof, verify_inclusion
from .note import Note, create_note, create_note_from_secrets
from .nullifiers import InMemoryNullifierRegistry, NullifierRegistry
from .poseidon import FIELD_MODULUS, poseidon_hash
from .prover import HttpProofBackend, LocalProofBackend, ProofBackend, ProofResult
from .scanner import NoteScanner
from .statements import StatementId
from .store import NoteStore
from .types import PrivateTransaction, TransactionBundle, TransactionStatus

__all__ = [
    # Main client
    "PrivacyClient",
    "NoteScanner",
    "NoteStore",
    # Keys and notes
    "ShieldedKeys",
    "ViewingKeys",
    "derive_keys",
    "keys_from_keypair",
    "Note",
    "create_note",
    "create_note_from_secrets",
    "AssetId",
    "AssetKind",
    "AssetRegistry",
    "asset_to_field",
    # Tree and nullifiers
    "CommitmentTree",
    "MerkleProof",
    "verify_inclusion",
    "NullifierRegistry",
    "InMemoryNullifierRegistry",
    # Statements and proving
    "StatementId",
    "ProofBackend",
    "ProofResult",
    "LocalProofBackend",
    "HttpProofBackend",
    # Encryption
    "NotePayload",
    "EncryptedNotePayload",
    "encrypt_for",
    "decrypt_with",
    # Ledger
    "Ledger",
    "InMemoryLedger",
    "TransactionBundle",
    "PrivateTransaction",
    "TransactionStatus",
    # Configuration
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "ErrorCode",
    "ShieldPoolError",
    "InvalidAmount",
    "InvalidWitness",
    "InvalidAddress",
    "TreeFull",
    "AlreadySpent",
    "StaleRoot",
    "InvalidProof",
    "ProofBackendUnavailable",
    "ProofTimeout",
    "RelayerUnavailable",
    "InsufficientFunds",
    "CongestionError",
    "ConfirmationTimeout",
    # Utilities
    "FIELD_MODULUS",
    "poseidon_hash",
    # Module info
    "__version__",
]
