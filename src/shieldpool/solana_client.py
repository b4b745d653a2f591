"""
Solana blockchain interaction for shieldpool

This module provides the Solana side of the ledger interface:
- PDA derivation and instruction encoding for the pool program
- Transaction building, signing and status polling
- `SolanaLedger`, the `Ledger` implementation backed by RPC

The pool program reports appended leaves in its logs:

    Program log: shieldpool:commitment:<leaf_index>:<64 hex chars>
    Program log: shieldpool:note:<leaf_index>:<hex encrypted payload>

and stores its current root in the pool account.
"""

import hashlib
import logging
import re
import struct
from typing import Optional, Sequence, Tuple

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus
from spl.token.constants import TOKEN_PROGRAM_ID

from .encryption import EncryptedNotePayload
from .errors import AlreadySpent, InvalidProof, StaleRoot, TreeFull
from .relayer import RelayerClient
from .statements import StatementId, parse_public_inputs
from .token_utils import get_associated_token_address, get_or_create_ata
from .types import EncryptedNoteRecord, LedgerReceipt, TransactionBundle, TransactionStatus
from .utils import field_to_bytes

logger = logging.getLogger(__name__)

# Program ID - replace with actual deployed program ID
DEFAULT_PROGRAM_ID = "Shie1dPoo1111111111111111111111111111111111"

# Seeds for PDAs
POOL_SEED = b"shield_pool"
VAULT_SEED = b"vault"
NULLIFIER_SEED = b"nullifier"

COMMITMENT_LOG = re.compile(r"shieldpool:commitment:(\d+):([0-9a-f]{64})")
NOTE_LOG = re.compile(r"shieldpool:note:(\d+):([0-9a-f]+)")

# Program error names as they appear in failed simulation logs
PROGRAM_ERRORS = {
    "NullifierAlreadyUsed": AlreadySpent,
    "UnknownRoot": StaleRoot,
    "InvalidProof": InvalidProof,
    "TreeFull": TreeFull,
}


def find_pool_pda(program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Derive the pool PDA address"""
    return Pubkey.find_program_address([POOL_SEED], program_id)


def find_vault_pda(program_id: Pubkey, pool: Pubkey) -> Tuple[Pubkey, int]:
    """Derive the vault PDA address"""
    return Pubkey.find_program_address([VAULT_SEED, bytes(pool)], program_id)


def find_nullifier_pda(
    program_id: Pubkey, pool: Pubkey, nullifier: int
) -> Tuple[Pubkey, int]:
    """Derive the nullifier marker PDA address"""
    return Pubkey.find_program_address(
        [NULLIFIER_SEED, bytes(pool), field_to_bytes(nullifier)], program_id
    )


def instruction_discriminator(name: str) -> bytes:
    """First 8 bytes of sha256("global:<name>")"""
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def parse_pool_logs(
    logs: Sequence[str],
) -> tuple[list[tuple[int, int]], list[tuple[int, bytes]]]:
    """
    Extract appended leaves and encrypted notes from program logs

    Returns:
        ([(leaf_index, commitment)], [(leaf_index, payload_bytes)])
    """
    commitments = []
    notes = []
    for line in logs:
        match = COMMITMENT_LOG.search(line)
        if match:
            commitments.append((int(match.group(1)), int(match.group(2), 16)))
            continue
        match = NOTE_LOG.search(line)
        if match:
            notes.append((int(match.group(1)), bytes.fromhex(match.group(2))))
    return commitments, notes


def _proof_data(proof: bytes) -> bytes:
    # Proof is variable length, preceded by 4-byte length
    return struct.pack("<I", len(proof)) + proof


def _notes_data(notes: Sequence[Optional[EncryptedNotePayload]]) -> bytes:
    data = bytes([len(notes)])
    for note in notes:
        raw = note.to_bytes() if note is not None else b""
        data += struct.pack("<I", len(raw)) + raw
    return data


class InstructionBuilder:
    """Builds shielded pool instructions"""

    INITIALIZE_DISC = instruction_discriminator("initialize")
    DEPOSIT_SOL_DISC = instruction_discriminator("deposit_sol")
    DEPOSIT_DISC = instruction_discriminator("deposit")
    TRANSFER_DISC = instruction_discriminator("transfer")
    CONSOLIDATE_DISC = instruction_discriminator("consolidate")
    WITHDRAW_SOL_DISC = instruction_discriminator("withdraw_sol")
    WITHDRAW_DISC = instruction_discriminator("withdraw")

    def __init__(self, program_id: Pubkey):
        """Initialize instruction builder.

        Args:
            program_id: The pool program public key
        """
        self.program_id = program_id
        self.pool, _ = find_pool_pda(program_id)
        self.vault, _ = find_vault_pda(program_id, self.pool)

    def _nullifier_accounts(self, nullifiers: Sequence[int]) -> list[AccountMeta]:
        return [
            AccountMeta(
                find_nullifier_pda(self.program_id, self.pool, n)[0],
                is_signer=False,
                is_writable=True,
            )
            for n in nullifiers
        ]

    def initialize(self, authority: Pubkey, tree_height: int) -> Instruction:
        """Build initialize instruction"""
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            AccountMeta(authority, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = self.INITIALIZE_DISC + bytes([tree_height])
        return Instruction(self.program_id, data, accounts)

    def deposit_sol(
        self,
        depositor: Pubkey,
        commitment: int,
        amount: int,
        proof: bytes,
    ) -> Instruction:
        """Build deposit SOL instruction"""
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            AccountMeta(self.vault, is_signer=False, is_writable=True),
            AccountMeta(depositor, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        # discriminator + commitment (32 bytes) + amount (u64) + proof
        data = (
            self.DEPOSIT_SOL_DISC
            + field_to_bytes(commitment)
            + struct.pack("<Q", amount)
            + _proof_data(proof)
        )
        return Instruction(self.program_id, data, accounts)

    def deposit_spl(
        self,
        depositor: Pubkey,
        depositor_token_account: Pubkey,
        vault_token_account: Pubkey,
        commitment: int,
        amount: int,
        proof: bytes,
    ) -> Instruction:
        """Build deposit SPL token instruction"""
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            AccountMeta(self.vault, is_signer=False, is_writable=False),
            AccountMeta(vault_token_account, is_signer=False, is_writable=True),
            AccountMeta(depositor_token_account, is_signer=False, is_writable=True),
            AccountMeta(depositor, is_signer=True, is_writable=True),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = (
            self.DEPOSIT_DISC
            + field_to_bytes(commitment)
            + struct.pack("<Q", amount)
            + _proof_data(proof)
        )
        return Instruction(self.program_id, data, accounts)

    def transfer(
        self,
        relayer: Pubkey,
        root: int,
        nullifier: int,
        out_commitments: Sequence[int],
        proof: bytes,
        encrypted_notes: Sequence[Optional[EncryptedNotePayload]] = (),
    ) -> Instruction:
        """Build private transfer instruction (one input, two outputs)"""
        if len(out_commitments) != 2:
            raise ValueError("Transfer creates exactly two commitments")
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            *self._nullifier_accounts([nullifier]),
            AccountMeta(relayer, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = (
            self.TRANSFER_DISC
            + field_to_bytes(root)
            + field_to_bytes(nullifier)
            + b"".join(field_to_bytes(c) for c in out_commitments)
            + _proof_data(proof)
            + _notes_data(encrypted_notes)
        )
        return Instruction(self.program_id, data, accounts)

    def consolidate(
        self,
        relayer: Pubkey,
        root: int,
        nullifiers: Sequence[int],
        out_commitment: int,
        proof: bytes,
        encrypted_notes: Sequence[Optional[EncryptedNotePayload]] = (),
    ) -> Instruction:
        """Build consolidate instruction (K inputs, one output)"""
        if not 1 <= len(nullifiers) <= 255:
            raise ValueError("Consolidate takes between 1 and 255 nullifiers")
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            *self._nullifier_accounts(nullifiers),
            AccountMeta(relayer, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = (
            self.CONSOLIDATE_DISC
            + field_to_bytes(root)
            + bytes([len(nullifiers)])
            + b"".join(field_to_bytes(n) for n in nullifiers)
            + field_to_bytes(out_commitment)
            + _proof_data(proof)
            + _notes_data(encrypted_notes)
        )
        return Instruction(self.program_id, data, accounts)

    def withdraw_sol(
        self,
        relayer: Pubkey,
        recipient: Pubkey,
        root: int,
        nullifier: int,
        amount: int,
        proof: bytes,
    ) -> Instruction:
        """Build withdraw SOL instruction"""
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            *self._nullifier_accounts([nullifier]),
            AccountMeta(self.vault, is_signer=False, is_writable=True),
            AccountMeta(recipient, is_signer=False, is_writable=True),
            AccountMeta(relayer, is_signer=True, is_writable=True),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = (
            self.WITHDRAW_SOL_DISC
            + field_to_bytes(root)
            + field_to_bytes(nullifier)
            + struct.pack("<Q", amount)
            + _proof_data(proof)
        )
        return Instruction(self.program_id, data, accounts)

    def withdraw_spl(
        self,
        relayer: Pubkey,
        recipient_token_account: Pubkey,
        vault_token_account: Pubkey,
        root: int,
        nullifier: int,
        amount: int,
        proof: bytes,
    ) -> Instruction:
        """Build withdraw SPL token instruction"""
        accounts = [
            AccountMeta(self.pool, is_signer=False, is_writable=True),
            *self._nullifier_accounts([nullifier]),
            AccountMeta(self.vault, is_signer=False, is_writable=False),
            AccountMeta(vault_token_account, is_signer=False, is_writable=True),
            AccountMeta(recipient_token_account, is_signer=False, is_writable=True),
            AccountMeta(relayer, is_signer=True, is_writable=True),
            AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        ]
        data = (
            self.WITHDRAW_DISC
            + field_to_bytes(root)
            + field_to_bytes(nullifier)
            + struct.pack("<Q", amount)
            + _proof_data(proof)
        )
        return Instruction(self.program_id, data, accounts)


class SolanaClient:
    """
    Low-level Solana client for the pool program

    Handles direct blockchain interaction including:
    - Submitting transactions
    - Reading pool and nullifier accounts
    - Reading program logs and signature statuses
    """

    def __init__(
        self,
        rpc_url: str = "https://api.devnet.solana.com",
        program_id: Optional[str] = None,
    ):
        """
        Initialize Solana client

        Args:
            rpc_url: Solana RPC endpoint
            program_id: Pool program ID
        """
        self.rpc_url = rpc_url
        self.client = AsyncClient(rpc_url)
        self.program_id = Pubkey.from_string(program_id or DEFAULT_PROGRAM_ID)
        self.instruction_builder = InstructionBuilder(self.program_id)
        self.pool_pda, _ = find_pool_pda(self.program_id)
        self.vault_pda, _ = find_vault_pda(self.program_id, self.pool_pda)

    async def get_recent_blockhash(self) -> Hash:
        """Get recent blockhash for transaction"""
        response = await self.client.get_latest_blockhash(commitment=Confirmed)
        return response.value.blockhash

    async def send_transaction(self, instruction: Instruction, payer: Keypair) -> str:
        """Send a single instruction as a transaction"""
        blockhash = await self.get_recent_blockhash()

        message = Message.new_with_blockhash([instruction], payer.pubkey(), blockhash)
        tx = Transaction.new_unsigned(message)
        tx.sign([payer], blockhash)

        response = await self.client.send_transaction(tx)
        return str(response.value)

    async def get_pool_state(self) -> Optional[dict]:
        """
        Get pool state from the chain

        Layout after the 8-byte account discriminator:
        authority (32) | merkle_root (32) | next_index (u64) | nullifier_count (u64)

        Returns:
            Pool state dict if the account exists, None otherwise
        """
        response = await self.client.get_account_info(self.pool_pda, commitment=Confirmed)
        if response.value is None:
            return None

        data = bytes(response.value.data)
        if len(data) < 8 + 32 + 32 + 8 + 8:
            return None
        data = data[8:]
        next_index, nullifier_count = struct.unpack("<QQ", data[64:80])
        return {
            "authority": Pubkey.from_bytes(data[0:32]),
            "merkle_root": int.from_bytes(data[32:64], "big"),
            "next_index": next_index,
            "nullifier_count": nullifier_count,
        }

    async def get_merkle_root(self) -> int:
        """
        Get current Merkle root from on-chain state

        Raises:
            ValueError: If the pool is not initialized
        """
        state = await self.get_pool_state()
        if state is None:
            raise ValueError(f"Pool {self.pool_pda} is not initialized")
        return state["merkle_root"]

    async def is_nullifier_spent(self, nullifier: int) -> bool:
        """
        Check if nullifier has been spent

        Returns:
            True if spent (marker PDA exists)
        """
        nullifier_pda, _ = find_nullifier_pda(self.program_id, self.pool_pda, nullifier)
        response = await self.client.get_account_info(nullifier_pda, commitment=Confirmed)
        return response.value is not None

    async def get_signatures(
        self,
        until: Optional[Signature] = None,
        page_size: int = 1000,
    ) -> list:
        """Successful pool transactions newer than `until`, newest first"""
        signatures = []
        before = None
        while True:
            response = await self.client.get_signatures_for_address(
                self.pool_pda,
                before=before,
                until=until,
                limit=page_size,
                commitment=Confirmed,
            )
            page = response.value
            signatures.extend(s for s in page if s.err is None)
            if len(page) < page_size:
                return signatures
            before = page[-1].signature

    async def get_transaction_logs(self, signature: Signature) -> list[str]:
        response = await self.client.get_transaction(
            signature,
            commitment=Confirmed,
            max_supported_transaction_version=0,
        )
        if response.value is None or response.value.transaction.meta is None:
            return []
        return list(response.value.transaction.meta.log_messages or [])

    async def get_status(self, signature: str) -> Optional[TransactionStatus]:
        """Map an RPC signature status to TransactionStatus (None if unknown)"""
        response = await self.client.get_signature_statuses(
            [Signature.from_string(signature)]
        )
        status = response.value[0]
        if status is None:
            return None
        if status.err is not None:
            return TransactionStatus.FAILED
        if status.confirmation_status in (
            TransactionConfirmationStatus.Confirmed,
            TransactionConfirmationStatus.Finalized,
        ):
            return TransactionStatus.CONFIRMED
        return TransactionStatus.PENDING

    async def initialize_pool(self, authority: Keypair, tree_height: int = 20) -> str:
        """
        Initialize the shielded pool

        Args:
            authority: Pool authority keypair
            tree_height: Commitment tree height

        Returns:
            Transaction signature
        """
        instruction = self.instruction_builder.initialize(authority.pubkey(), tree_height)
        return await self.send_transaction(instruction, authority)

    async def close(self) -> None:
        """Close RPC connection"""
        await self.client.close()


def _program_error(error: RPCException) -> Exception:
    message = str(error)
    for name, error_type in PROGRAM_ERRORS.items():
        if name in message:
            return error_type(f"Program rejected transaction: {name}")
    return InvalidProof(f"Transaction rejected: {message[:200]}")


class SolanaLedger:
    """
    Ledger backed by the on-chain pool program

    Deposits are signed by `payer` (they move the payer's funds). Spends go
    through `relayer` when one is configured so the fee payer is unrelated
    to the note owner, and are signed by `payer` otherwise.
    """

    def __init__(
        self,
        client: SolanaClient,
        payer: Optional[Keypair] = None,
        relayer: Optional[RelayerClient] = None,
    ):
        self.client = client
        self.payer = payer
        self.relayer = relayer
        self._commitments: dict[int, int] = {}
        self._notes: list[EncryptedNoteRecord] = []
        self._last_signature: Optional[Signature] = None

    async def _refresh(self) -> None:
        signatures = await self.client.get_signatures(until=self._last_signature)
        for status in reversed(signatures):
            logs = await self.client.get_transaction_logs(status.signature)
            commitments, notes = parse_pool_logs(logs)
            self._commitments.update(commitments)
            for leaf_index, raw in sorted(notes):
                try:
                    payload = EncryptedNotePayload.from_bytes(raw)
                except ValueError:
                    logger.debug("Ignoring malformed note log at leaf %d", leaf_index)
                    continue
                self._notes.append(
                    EncryptedNoteRecord(
                        sequence=len(self._notes),
                        commitment=self._commitments.get(leaf_index, 0),
                        leaf_index=leaf_index,
                        payload=payload,
                    )
                )
        if signatures:
            self._last_signature = signatures[0].signature

    async def get_merkle_root(self) -> int:
        return await self.client.get_merkle_root()

    async def get_commitments(self, start: int = 0) -> list[int]:
        await self._refresh()
        commitments = []
        index = start
        while index in self._commitments:
            commitments.append(self._commitments[index])
            index += 1
        return commitments

    async def is_nullifier_spent(self, nullifier: int) -> bool:
        return await self.client.is_nullifier_spent(nullifier)

    async def get_encrypted_notes(self, since: int = 0) -> list[EncryptedNoteRecord]:
        await self._refresh()
        return self._notes[since:]

    async def get_receipt(self, signature: str) -> Optional[LedgerReceipt]:
        status = await self.client.get_status(signature)
        if status is None:
            return None
        if status is not TransactionStatus.CONFIRMED:
            return LedgerReceipt(signature=signature, status=status)
        logs = await self.client.get_transaction_logs(Signature.from_string(signature))
        commitments, _ = parse_pool_logs(logs)
        return LedgerReceipt(
            signature=signature,
            status=status,
            leaf_indices=[leaf_index for leaf_index, _ in commitments],
        )

    async def submit(self, bundle: TransactionBundle) -> str:
        """
        Submit a bundle directly or through the relayer

        Raises:
            AlreadySpent, StaleRoot, InvalidProof, TreeFull: Program rejections
            RelayerUnavailable: Every relayer endpoint failed
        """
        bundle.validate()
        if self.relayer is not None and bundle.statement is not StatementId.DEPOSIT:
            return await self.relayer.relay(bundle)
        if self.payer is None:
            raise ValueError("A payer keypair is required for direct submission")

        instruction = await self.build_instruction(bundle, self.payer)
        try:
            signature = await self.client.send_transaction(instruction, self.payer)
        except RPCException as e:
            raise _program_error(e) from e
        logger.info("Submitted %s: %s", bundle.statement.value, signature)
        return signature

    async def build_instruction(self, bundle: TransactionBundle, signer: Keypair) -> Instruction:
        """Encode a bundle as a pool instruction signed by `signer`"""
        builder = self.client.instruction_builder
        signals = parse_public_inputs(bundle.statement, bundle.public_inputs)
        spl_mint = None if bundle.asset.is_native else Pubkey.from_string(bundle.asset.mint)

        if bundle.statement is StatementId.DEPOSIT:
            commitment = bundle.new_commitments[0]
            if spl_mint is None:
                return builder.deposit_sol(
                    signer.pubkey(), commitment, bundle.public_amount, bundle.proof
                )
            user_ata = await get_or_create_ata(
                self.client.client, signer.pubkey(), spl_mint, signer
            )
            vault_ata = await get_or_create_ata(
                self.client.client, self.client.vault_pda, spl_mint, signer
            )
            return builder.deposit_spl(
                signer.pubkey(), user_ata, vault_ata, commitment, bundle.public_amount, bundle.proof
            )

        if bundle.statement is StatementId.TRANSFER:
            return builder.transfer(
                signer.pubkey(),
                signals.merkle_root,
                bundle.nullifiers[0],
                bundle.new_commitments,
                bundle.proof,
                bundle.encrypted_notes,
            )

        if bundle.statement is StatementId.CONSOLIDATE:
            return builder.consolidate(
                signer.pubkey(),
                signals.merkle_root,
                bundle.nullifiers,
                bundle.new_commitments[0],
                bundle.proof,
                bundle.encrypted_notes,
            )

        recipient = Pubkey.from_string(bundle.receiver)
        if spl_mint is None:
            return builder.withdraw_sol(
                signer.pubkey(),
                recipient,
                signals.merkle_root,
                bundle.nullifiers[0],
                bundle.public_amount,
                bundle.proof,
            )
        vault_ata = get_associated_token_address(self.client.vault_pda, spl_mint)
        recipient_ata = await get_or_create_ata(self.client.client, recipient, spl_mint, signer)
        return builder.withdraw_spl(
            signer.pubkey(),
            recipient_ata,
            vault_ata,
            signals.merkle_root,
            bundle.nullifiers[0],
            bundle.public_amount,
            bundle.proof,
        )

    async def close(self) -> None:
        await self.client.close()
        if self.relayer is not None:
            await self.relayer.close()
