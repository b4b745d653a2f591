"""
Ledger interface

The ledger owns the canonical commitment tree and nullifier set. A
submission is applied atomically: every nullifier is inserted and every
commitment appended, or nothing changes.

`InMemoryLedger` implements the same contract in process; the Solana
adapter lives in `solana_client`.
"""

import asyncio
import logging
import os
from collections import defaultdict
from typing import Optional, Protocol

import base58

from .assets import AssetId
from .errors import InvalidProof, StaleRoot, TreeFull
from .merkle import MAX_ROOT_HISTORY, TREE_HEIGHT, CommitmentTree
from .nullifiers import InMemoryNullifierRegistry
from .prover import LocalProofBackend
from .statements import StatementId, parse_public_inputs
from .types import EncryptedNoteRecord, LedgerReceipt, TransactionBundle, TransactionStatus
from .utils import pubkey_to_field

logger = logging.getLogger(__name__)


class Ledger(Protocol):
    async def get_merkle_root(self) -> int: ...

    async def get_commitments(self, start: int = 0) -> list[int]: ...

    async def is_nullifier_spent(self, nullifier: int) -> bool: ...

    async def submit(self, bundle: TransactionBundle) -> str: ...

    async def get_receipt(self, signature: str) -> Optional[LedgerReceipt]: ...

    async def get_encrypted_notes(self, since: int = 0) -> list[EncryptedNoteRecord]: ...


class InMemoryLedger:
    """
    Process-local ledger

    Example:
        ```python
        ledger = InMemoryLedger(tree_height=8)
        signature = await ledger.submit(bundle)
        receipt = await ledger.get_receipt(signature)
        ```
    """

    def __init__(
        self,
        verifier: Optional[LocalProofBackend] = None,
        tree_height: int = TREE_HEIGHT,
        root_history_size: int = MAX_ROOT_HISTORY,
        confirm_after_polls: int = 0,
    ):
        """
        Args:
            verifier: Proof verifier (defaults to the local development backend)
            tree_height: Commitment tree height
            root_history_size: Number of recent roots accepted in proofs
            confirm_after_polls: Receipt polls that report PENDING before a
                transaction shows as confirmed
        """
        self.verifier = verifier or LocalProofBackend()
        self.tree = CommitmentTree(tree_height, root_history_size)
        self.nullifiers = InMemoryNullifierRegistry()
        self.confirm_after_polls = confirm_after_polls
        self.pool_balances: dict[AssetId, int] = defaultdict(int)
        self.transparent_balances: dict[tuple[str, AssetId], int] = defaultdict(int)
        self._receipts: dict[str, LedgerReceipt] = {}
        self._polls: dict[str, int] = defaultdict(int)
        self._notes: list[EncryptedNoteRecord] = []
        self._lock = asyncio.Lock()

    async def get_merkle_root(self) -> int:
        return self.tree.root

    async def get_commitments(self, start: int = 0) -> list[int]:
        return self.tree.leaves()[start:]

    async def is_nullifier_spent(self, nullifier: int) -> bool:
        return self.nullifiers.contains(nullifier)

    async def get_encrypted_notes(self, since: int = 0) -> list[EncryptedNoteRecord]:
        return self._notes[since:]

    async def get_receipt(self, signature: str) -> Optional[LedgerReceipt]:
        receipt = self._receipts.get(signature)
        if receipt is None:
            return None
        self._polls[signature] += 1
        if self._polls[signature] <= self.confirm_after_polls:
            return LedgerReceipt(signature=signature, status=TransactionStatus.PENDING)
        return receipt

    async def submit(self, bundle: TransactionBundle) -> str:
        """
        Verify and apply a bundle

        Returns:
            Transaction signature

        Raises:
            InvalidProof: Proof or public inputs rejected
            StaleRoot: Proof built against a root outside the history
            AlreadySpent: A nullifier was already inserted
            TreeFull: Not enough free leaves for the new commitments
        """
        try:
            bundle.validate()
            signals = parse_public_inputs(bundle.statement, bundle.public_inputs)
        except ValueError as e:
            raise InvalidProof(f"Malformed bundle: {e}") from e

        if (
            list(signals.nullifiers) != list(bundle.nullifiers)
            or list(signals.commitments) != list(bundle.new_commitments)
        ):
            raise InvalidProof("Bundle does not match its public inputs")

        async with self._lock:
            if signals.merkle_root is not None and not self.tree.is_known_root(
                signals.merkle_root
            ):
                raise StaleRoot(f"Unknown Merkle root {signals.merkle_root:#x}")
            if not self.verifier.verify(bundle.statement, bundle.proof, bundle.public_inputs):
                raise InvalidProof("Proof verification failed")

            self._check_transparent_side(bundle, signals.receiver, signals.amount)

            if self.tree.size + len(bundle.new_commitments) > self.tree.capacity:
                raise TreeFull(f"Merkle tree is full ({self.tree.capacity} leaves)")

            self.nullifiers.insert_many(bundle.nullifiers)

            leaf_indices = []
            for position, commitment in enumerate(bundle.new_commitments):
                leaf_index, _ = self.tree.append(commitment)
                leaf_indices.append(leaf_index)
                payload = (
                    bundle.encrypted_notes[position] if bundle.encrypted_notes else None
                )
                if payload is not None:
                    self._notes.append(
                        EncryptedNoteRecord(
                            sequence=len(self._notes),
                            commitment=commitment,
                            leaf_index=leaf_index,
                            payload=payload,
                        )
                    )

            if bundle.statement is StatementId.DEPOSIT:
                self.pool_balances[bundle.asset] += bundle.public_amount
            elif bundle.statement is StatementId.WITHDRAW:
                self.pool_balances[bundle.asset] -= bundle.public_amount
                self.transparent_balances[(bundle.receiver, bundle.asset)] += bundle.public_amount

            signature = base58.b58encode(os.urandom(64)).decode()
            self._receipts[signature] = LedgerReceipt(
                signature=signature,
                status=TransactionStatus.CONFIRMED,
                leaf_indices=leaf_indices,
                root=self.tree.root,
            )

        logger.info(
            "Applied %s: %d nullifiers, %d commitments",
            bundle.statement.value,
            len(bundle.nullifiers),
            len(bundle.new_commitments),
        )
        return signature

    def _check_transparent_side(
        self,
        bundle: TransactionBundle,
        receiver: Optional[int],
        amount: Optional[int],
    ) -> None:
        if bundle.statement is StatementId.DEPOSIT:
            if bundle.public_amount <= 0:
                raise InvalidProof("Deposit must carry a positive amount")
        elif bundle.statement is StatementId.WITHDRAW:
            if amount != bundle.public_amount:
                raise InvalidProof("Withdraw amount does not match public inputs")
            if receiver != pubkey_to_field(bundle.receiver):
                raise InvalidProof("Withdraw receiver does not match public inputs")
            # Withdraw public inputs carry no tokenId, so `bundle.asset` is taken
            # on trust. Only the per-asset pool balance bounds it here; binding
            # it needs a per-asset verifying key or tokenId as a public input.
            if self.pool_balances[bundle.asset] < bundle.public_amount:
                raise InvalidProof("Pool balance too low for withdrawal")
        elif bundle.public_amount:
            raise InvalidProof(f"{bundle.statement.value} has no transparent amount")

    @property
    def nullifier_count(self) -> int:
        return len(self.nullifiers)

    @property
    def commitment_count(self) -> int:
        return self.tree.size
