"""
Main Privacy Client for shieldpool

Drives every shielded operation through the same steps:

    select inputs -> build outputs -> Merkle proofs -> witness
        -> proof -> package -> submit -> confirm -> update local state

Everything before the proof request is local and cheap to repeat, so a
rejected submission (stale root, timeout) is answered by rebuilding from the
freshly synced tree, never by resending the old proof.
"""

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .assets import AssetId, AssetRegistry
from .config import Settings, get_settings
from .encryption import NotePayload, encrypt_for
from .errors import (
    AlreadySpent,
    ConfirmationTimeout,
    CongestionError,
    InvalidAddress,
    InvalidProof,
    ProofBackendUnavailable,
    ProofTimeout,
    StaleRoot,
)
from .keys import ShieldedKeys, decode_shielded_address
from .ledger import Ledger
from .merkle import CommitmentTree
from .note import Note, create_note_from_secrets, validate_amount
from .prover import LocalProofBackend, ProofBackend, ProofResult
from .scanner import NoteScanner
from .selection import partition_for_consolidation, select_notes
from .statements import (
    StatementId,
    Witness,
    build_consolidate_witness,
    build_deposit_witness,
    build_transfer_witness,
    build_withdraw_witness,
)
from .store import NoteStore, StoredNote
from .types import LedgerReceipt, PrivateTransaction, TransactionBundle, TransactionStatus
from .utils import field_to_hex, pubkey_to_field, validate_solana_address

logger = logging.getLogger(__name__)

Token = Union[str, Pubkey, AssetId]


@dataclass(frozen=True)
class _Output:
    note: Note
    # None for notes this wallet keeps
    recipient_pubkey: Optional[bytes] = None

    @property
    def owned(self) -> bool:
        return self.recipient_pubkey is None


class PrivacyClient:
    """
    Shielded wallet client

    Example:
        ```python
        keys = derive_keys(seed)
        client = PrivacyClient(ledger, keys)

        await client.deposit(100, "SOL")
        await client.transfer(recipient_address, 60, "SOL")
        await client.withdraw("<solana address>", 40, "SOL")
        ```
    """

    def __init__(
        self,
        ledger: Ledger,
        keys: ShieldedKeys,
        prover: Optional[ProofBackend] = None,
        store: Optional[NoteStore] = None,
        registry: Optional[AssetRegistry] = None,
        settings: Optional[Settings] = None,
        on_confirm: Optional[Callable[[PrivateTransaction], None]] = None,
    ):
        """
        Initialize the client

        Args:
            ledger: Ledger adapter (in-memory or Solana)
            keys: Wallet key hierarchy
            prover: Proof backend (defaults to the local development prover)
            store: Note store (a fresh one is created if omitted)
            registry: Assets accepted from the discovery channel
            settings: Tunables (defaults to `get_settings()`)
            on_confirm: Called with every confirmed transaction
        """
        self.settings = settings or get_settings()
        self.ledger = ledger
        self.keys = keys
        self.prover = prover or LocalProofBackend()
        self.store = store if store is not None else NoteStore()
        self.registry = registry or AssetRegistry.with_common_tokens()
        self.on_confirm = on_confirm
        self.tree = CommitmentTree(
            self.settings.tree_height, self.settings.root_history_size
        )
        self._tree_lock = asyncio.Lock()
        self._note_locks: dict[int, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls,
        keys: ShieldedKeys,
        payer: Optional[Keypair] = None,
        settings: Optional[Settings] = None,
    ) -> "PrivacyClient":
        """
        Build a client wired to Solana, the configured prover and relayers

        Args:
            keys: Wallet key hierarchy
            payer: solders Keypair paying for deposits and direct submissions
            settings: Tunables (defaults to `get_settings()`)
        """
        from .prover import HttpProofBackend
        from .relayer import RelayerClient
        from .solana_client import SolanaClient, SolanaLedger

        settings = settings or get_settings()
        relayer = None
        if settings.relayer_urls:
            relayer = RelayerClient(
                settings.relayer_urls,
                timeout=settings.relay_timeout_seconds,
                failure_threshold=settings.relayer_failure_threshold,
            )
        ledger = SolanaLedger(
            SolanaClient(settings.rpc_url, settings.program_id),
            payer=payer,
            relayer=relayer,
        )
        prover = None
        if settings.prover_url:
            prover = HttpProofBackend(
                settings.prover_url, timeout=settings.proof_timeout_seconds
            )
        return cls(ledger, keys, prover=prover, settings=settings)

    # =========================================================================
    # Public operations
    # =========================================================================

    async def deposit(self, amount: int, token: Token = "SOL") -> PrivateTransaction:
        """
        Shield transparent funds into a new note

        Args:
            amount: Amount in base units
            token: "SOL", a mint address or an AssetId

        Returns:
            Confirmed transaction, with the new note in `new_notes`
        """
        validate_amount(amount)
        asset = AssetId.from_token(token)
        note = await asyncio.to_thread(create_note_from_secrets, amount, asset)
        witness = await asyncio.to_thread(build_deposit_witness, note)
        result = await self._prove(witness)

        bundle = TransactionBundle(
            statement=StatementId.DEPOSIT,
            nullifiers=[],
            new_commitments=[note.commitment],
            proof=result.proof,
            public_inputs=result.public_inputs,
            asset=asset,
            encrypted_notes=[None],
            public_amount=amount,
        )
        signature = await self.ledger.submit(bundle)
        outputs = [_Output(note)]
        try:
            receipt = await self._await_confirmation(signature)
        except ConfirmationTimeout:
            receipt = await self._recover_timeout(signature, [], outputs)
            if receipt is None:
                raise
        tx = await self._finalize(bundle, [], outputs, receipt)
        logger.info("Deposited %d %s", amount, asset)
        return tx

    async def transfer(
        self,
        recipient: str,
        amount: int,
        token: Token = "SOL",
    ) -> PrivateTransaction:
        """
        Send shielded funds to another shielded address

        Args:
            recipient: Recipient shielded address ("shpool1...")
            amount: Amount in base units
            token: Asset to send

        Returns:
            Confirmed transaction

        Raises:
            InvalidAmount: If amount is not positive
            InvalidAddress: If the recipient address is malformed
            InsufficientFunds: If unspent notes do not cover the amount
        """
        validate_amount(amount)
        recipient_pubkey = decode_shielded_address(recipient)
        asset = AssetId.from_token(token)

        stored = await self._single_input(asset, amount)
        recipient_note = create_note_from_secrets(amount, asset)
        if stored.note.amount == amount:
            # exact amount: one-input consolidate, no zero-value change note
            return await self._execute(
                StatementId.CONSOLIDATE,
                [stored],
                [_Output(recipient_note, recipient_pubkey)],
                asset,
            )
        change = create_note_from_secrets(stored.note.amount - amount, asset)
        return await self._execute(
            StatementId.TRANSFER,
            [stored],
            [_Output(recipient_note, recipient_pubkey), _Output(change)],
            asset,
        )

    async def withdraw(
        self,
        destination: str,
        amount: int,
        token: Token = "SOL",
    ) -> PrivateTransaction:
        """
        Release shielded funds to a transparent address

        Args:
            destination: Solana address receiving the funds
            amount: Amount in base units
            token: Asset to withdraw

        Returns:
            Confirmed withdraw transaction

        Raises:
            InvalidAmount: If amount is not positive
            InvalidAddress: If the destination is not a Solana address
            InsufficientFunds: If unspent notes do not cover the amount
        """
        validate_amount(amount)
        if not validate_solana_address(destination):
            raise InvalidAddress("Invalid destination address")
        asset = AssetId.from_token(token)

        stored = await self._single_input(asset, amount)
        if stored.note.amount > amount:
            exact = create_note_from_secrets(amount, asset)
            change = create_note_from_secrets(stored.note.amount - amount, asset)
            await self._execute(
                StatementId.TRANSFER,
                [stored],
                [_Output(exact), _Output(change)],
                asset,
            )
            stored = self.store.get(exact.nullifier)

        return await self._execute(
            StatementId.WITHDRAW,
            [stored],
            [],
            asset,
            receiver=destination,
            public_amount=amount,
        )

    async def consolidate(self, token: Token = "SOL") -> PrivateTransaction:
        """
        Merge every unspent note of an asset into one

        Returns:
            The last consolidate transaction

        Raises:
            ValueError: If fewer than two notes are unspent
        """
        asset = AssetId.from_token(token)
        notes = self.store.unspent(asset)
        if len(notes) < 2:
            raise ValueError("Need at least two unspent notes to consolidate")
        tx = None
        while len(notes) > 1:
            notes, tx = await self._consolidate_round(notes, asset)
        return tx

    async def sync_tree(self) -> int:
        """
        Bring the local tree up to the ledger

        Returns:
            Local root after syncing
        """
        async with self._tree_lock:
            for _ in range(2):
                commitments = await self.ledger.get_commitments(self.tree.size)
                if commitments:
                    await asyncio.to_thread(self.tree.extend, commitments)
                root = await self.ledger.get_merkle_root()
                if root == self.tree.root:
                    return root
            logger.warning(
                "Local root %s differs from ledger root %s after sync",
                field_to_hex(self.tree.root)[:18],
                field_to_hex(root)[:18],
            )
            return self.tree.root

    def balance(self, token: Token = "SOL") -> int:
        return self.store.balance(AssetId.from_token(token))

    def create_scanner(self, interval: Optional[float] = None) -> NoteScanner:
        """Scanner that feeds notes sent to this wallet into its store"""
        return NoteScanner(
            self.ledger,
            self.keys,
            self.store,
            registry=self.registry,
            interval=interval or self.settings.scan_interval_seconds,
        )

    async def is_nullifier_spent(self, nullifier: int) -> bool:
        return await self.ledger.is_nullifier_spent(nullifier)

    async def close(self) -> None:
        """Close backend connections"""
        for resource in (self.prover, self.ledger):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _single_input(self, asset: AssetId, amount: int) -> StoredNote:
        """Select notes covering `amount` and fold them into one"""
        selected = select_notes(self.store.unspent(asset), amount)
        while len(selected) > 1:
            logger.info("Folding %d notes before spending", len(selected))
            selected, _ = await self._consolidate_round(selected, asset)
        return selected[0]

    async def _consolidate_round(
        self,
        notes: Sequence[StoredNote],
        asset: AssetId,
    ) -> tuple[list[StoredNote], Optional[PrivateTransaction]]:
        merged = []
        tx = None
        for batch in partition_for_consolidation(
            notes, self.settings.consolidate_max_inputs
        ):
            if len(batch) == 1:
                merged.append(batch[0])
                continue
            output = create_note_from_secrets(sum(s.note.amount for s in batch), asset)
            tx = await self._execute(
                StatementId.CONSOLIDATE, batch, [_Output(output)], asset
            )
            merged.append(self.store.get(output.nullifier))
        return merged, tx

    async def _execute(
        self,
        statement: StatementId,
        inputs: Sequence[StoredNote],
        outputs: Sequence[_Output],
        asset: AssetId,
        receiver: Optional[str] = None,
        public_amount: int = 0,
    ) -> PrivateTransaction:
        """
        Spend `inputs` into `outputs`, rebuilding on stale roots

        Raises:
            AlreadySpent: An input was spent elsewhere
            CongestionError: Stale-root retries exhausted
            ConfirmationTimeout: The transaction never confirmed and could
                not be superseded
        """
        async with AsyncExitStack() as stack:
            for nullifier in sorted(s.nullifier for s in inputs):
                lock = self._note_locks.setdefault(nullifier, asyncio.Lock())
                await stack.enter_async_context(lock)

            for stored in inputs:
                if await self.ledger.is_nullifier_spent(stored.nullifier):
                    self.store.mark_spent(stored.nullifier)
                    self._note_locks.pop(stored.nullifier, None)
                    raise AlreadySpent(
                        f"Note {stored.nullifier:#x} is already spent",
                        nullifier=stored.nullifier,
                    )

            retries = self.settings.max_stale_root_retries
            stale = 0
            superseded = 0
            while True:
                await self.sync_tree()
                witness = await self._build_witness(statement, inputs, outputs, receiver)
                result = await self._prove(witness)
                bundle = await asyncio.to_thread(
                    self._package, statement, inputs, outputs, result, asset, receiver, public_amount
                )
                try:
                    signature = await self.ledger.submit(bundle)
                except StaleRoot:
                    stale += 1
                    if stale > retries:
                        raise CongestionError(
                            f"Merkle root went stale {stale} times, giving up"
                        )
                    logger.warning(
                        "Stale root on %s, rebuilding (%d/%d)", statement.value, stale, retries
                    )
                    continue

                try:
                    receipt = await self._await_confirmation(signature)
                except ConfirmationTimeout:
                    receipt = await self._recover_timeout(signature, inputs, outputs)
                    if receipt is None:
                        superseded += 1
                        if superseded > retries:
                            raise
                        logger.warning("Superseding unconfirmed %s", signature)
                        continue
                return await self._finalize(
                    bundle, inputs, outputs, receipt, attempts=stale + superseded + 1
                )

    async def _build_witness(
        self,
        statement: StatementId,
        inputs: Sequence[StoredNote],
        outputs: Sequence[_Output],
        receiver: Optional[str],
    ) -> Witness:
        async with self._tree_lock:
            return await asyncio.to_thread(
                self._witness_for, statement, inputs, outputs, receiver
            )

    def _witness_for(
        self,
        statement: StatementId,
        inputs: Sequence[StoredNote],
        outputs: Sequence[_Output],
        receiver: Optional[str],
    ) -> Witness:
        proofs = [self.tree.prove_inclusion(self._leaf_index(s)) for s in inputs]
        if statement is StatementId.TRANSFER:
            return build_transfer_witness(
                inputs[0].note, proofs[0], outputs[0].note, outputs[1].note
            )
        if statement is StatementId.WITHDRAW:
            return build_withdraw_witness(
                inputs[0].note, proofs[0], pubkey_to_field(receiver)
            )
        if statement is StatementId.CONSOLIDATE:
            return build_consolidate_witness(
                [s.note for s in inputs],
                proofs,
                outputs[0].note,
                max_inputs=self.settings.consolidate_max_inputs,
            )
        raise ValueError(f"{statement.value} does not spend notes")

    def _leaf_index(self, stored: StoredNote) -> int:
        if stored.leaf_index is not None:
            return stored.leaf_index
        leaf_index = self.tree.index_of(stored.note.commitment)
        if leaf_index is None:
            raise ValueError("Note commitment is not in the synced tree")
        self.store.set_leaf_index(stored.nullifier, leaf_index)
        return leaf_index

    async def _prove(self, witness: Witness) -> ProofResult:
        """Request a proof, retrying unavailable or slow backends with backoff"""
        attempts = self.settings.proof_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(
                    self.prover.generate_proof(witness.statement, witness),
                    timeout=self.settings.proof_timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = ProofTimeout(
                    f"Proof not ready after {self.settings.proof_timeout_seconds}s"
                )
            except (ProofBackendUnavailable, ProofTimeout) as e:
                error = e
            if attempt == attempts:
                raise error
            delay = self.settings.proof_backoff_seconds * 2 ** (attempt - 1)
            logger.warning(
                "Proof attempt %d/%d failed (%s), retrying in %.1fs",
                attempt,
                attempts,
                error,
                delay,
            )
            await asyncio.sleep(delay)
        raise AssertionError

    def _package(
        self,
        statement: StatementId,
        inputs: Sequence[StoredNote],
        outputs: Sequence[_Output],
        result: ProofResult,
        asset: AssetId,
        receiver: Optional[str],
        public_amount: int,
    ) -> TransactionBundle:
        encrypted = [
            None
            if output.owned
            else encrypt_for(output.recipient_pubkey, NotePayload.from_note(output.note))
            for output in outputs
        ]
        return TransactionBundle(
            statement=statement,
            nullifiers=[s.nullifier for s in inputs],
            new_commitments=[o.note.commitment for o in outputs],
            proof=result.proof,
            public_inputs=result.public_inputs,
            asset=asset,
            encrypted_notes=encrypted,
            public_amount=public_amount,
            receiver=receiver,
        )

    async def _await_confirmation(self, signature: str) -> LedgerReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.confirm_timeout_seconds
        while True:
            receipt = await self.ledger.get_receipt(signature)
            if receipt is not None:
                if receipt.status is TransactionStatus.CONFIRMED:
                    return receipt
                if receipt.status is TransactionStatus.FAILED:
                    raise InvalidProof(f"Transaction {signature} failed: {receipt.error}")
            if loop.time() >= deadline:
                raise ConfirmationTimeout(
                    f"Transaction {signature} not confirmed in "
                    f"{self.settings.confirm_timeout_seconds}s",
                    signature=signature,
                )
            await asyncio.sleep(self.settings.confirm_poll_interval_seconds)

    async def _recover_timeout(
        self,
        signature: str,
        inputs: Sequence[StoredNote],
        outputs: Sequence[_Output],
    ) -> Optional[LedgerReceipt]:
        """
        Decide what an unconfirmed submission turned into

        Returns:
            A receipt if the transaction landed after all, None if it can be
            superseded

        Raises:
            AlreadySpent: An input was consumed by some other transaction
        """
        receipt = await self.ledger.get_receipt(signature)
        if receipt is not None and receipt.status is TransactionStatus.CONFIRMED:
            return receipt

        await self.sync_tree()
        leaf_indices = [self.tree.index_of(o.note.commitment) for o in outputs]
        if all(index is not None for index in leaf_indices) and (
            outputs or await self._all_spent(inputs)
        ):
            return LedgerReceipt(
                signature=signature,
                status=TransactionStatus.CONFIRMED,
                leaf_indices=leaf_indices,
                root=self.tree.root,
            )
        for stored in inputs:
            if await self.ledger.is_nullifier_spent(stored.nullifier):
                raise AlreadySpent(
                    f"Note {stored.nullifier:#x} was spent by another transaction",
                    nullifier=stored.nullifier,
                )
        return None

    async def _all_spent(self, inputs: Sequence[StoredNote]) -> bool:
        for stored in inputs:
            if not await self.ledger.is_nullifier_spent(stored.nullifier):
                return False
        return True

    async def _finalize(
        self,
        bundle: TransactionBundle,
        inputs: Sequence[StoredNote],
        outputs: Sequence[_Output],
        receipt: LedgerReceipt,
        attempts: int = 1,
    ) -> PrivateTransaction:
        await self.sync_tree()
        leaf_indices = list(receipt.leaf_indices)
        if len(leaf_indices) != len(outputs):
            leaf_indices = [self.tree.index_of(o.note.commitment) for o in outputs]

        for stored in inputs:
            self.store.mark_spent(stored.nullifier)
            # waiters already holding a reference re-check the ledger
            self._note_locks.pop(stored.nullifier, None)
        self.store.add_notes(
            (output.note, leaf_index)
            for output, leaf_index in zip(outputs, leaf_indices)
            if output.owned
        )

        tx = PrivateTransaction(
            signature=receipt.signature,
            status=TransactionStatus.CONFIRMED,
            statement=bundle.statement,
            nullifiers=list(bundle.nullifiers),
            commitments=list(bundle.new_commitments),
            proof=bundle.proof,
            new_notes=[o.note for o in outputs if o.owned],
            attempts=attempts,
        )
        logger.info(
            "Confirmed %s %s (%d in, %d out)",
            bundle.statement.value,
            receipt.signature,
            len(inputs),
            len(outputs),
        )
        if self.on_confirm is not None:
            self.on_confirm(tx)
        return tx
