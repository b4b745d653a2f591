"""Test the Solana adapter's encodings"""

import hashlib
import struct

import pytest
from solana.rpc.core import RPCException
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from shieldpool.assets import AssetId
from shieldpool.errors import AlreadySpent, InvalidProof, StaleRoot, TreeFull
from shieldpool.solana_client import (
    DEFAULT_PROGRAM_ID,
    InstructionBuilder,
    SolanaClient,
    SolanaLedger,
    _program_error,
    find_nullifier_pda,
    find_pool_pda,
    find_vault_pda,
    instruction_discriminator,
    parse_pool_logs,
)
from shieldpool.statements import StatementId
from shieldpool.types import TransactionBundle
from shieldpool.utils import field_to_bytes

PROGRAM_ID = Pubkey.from_string(DEFAULT_PROGRAM_ID)


@pytest.fixture
def builder():
    return InstructionBuilder(PROGRAM_ID)


class TestAddresses:
    def test_default_program_id(self):
        assert len(bytes(PROGRAM_ID)) == 32

    def test_pdas_are_deterministic(self):
        pool, _ = find_pool_pda(PROGRAM_ID)
        assert find_pool_pda(PROGRAM_ID)[0] == pool
        assert find_vault_pda(PROGRAM_ID, pool)[0] != pool

    def test_nullifier_pdas_differ(self):
        pool, _ = find_pool_pda(PROGRAM_ID)
        assert find_nullifier_pda(PROGRAM_ID, pool, 1)[0] != find_nullifier_pda(PROGRAM_ID, pool, 2)[0]

    def test_discriminator(self):
        """Anchor-style sha256("global:<name>")[:8]"""
        assert instruction_discriminator("transfer") == hashlib.sha256(b"global:transfer").digest()[:8]
        assert len(InstructionBuilder.CONSOLIDATE_DISC) == 8


class TestInstructionBuilder:
    """Test instruction data layouts"""

    def test_deposit_sol(self, builder):
        depositor = Keypair().pubkey()
        ix = builder.deposit_sol(depositor, 42, 1_000, b"\xaa\xbb")
        data = bytes(ix.data)
        assert data[:8] == InstructionBuilder.DEPOSIT_SOL_DISC
        assert data[8:40] == field_to_bytes(42)
        assert struct.unpack("<Q", data[40:48])[0] == 1_000
        assert struct.unpack("<I", data[48:52])[0] == 2
        assert data[52:] == b"\xaa\xbb"
        assert ix.program_id == PROGRAM_ID

    def test_transfer(self, builder):
        """Transfer: root | nullifier | two commitments | proof | notes"""
        relayer = Keypair().pubkey()
        ix = builder.transfer(relayer, 1, 2, [3, 4], b"\x01")
        data = bytes(ix.data)
        assert data[:8] == InstructionBuilder.TRANSFER_DISC
        assert data[8:40] == field_to_bytes(1)
        assert data[40:72] == field_to_bytes(2)
        assert data[72:104] == field_to_bytes(3)
        assert data[104:136] == field_to_bytes(4)
        assert data[136:141] == struct.pack("<I", 1) + b"\x01"
        assert data[141:] == b"\x00"
        pool, _ = find_pool_pda(PROGRAM_ID)
        assert ix.accounts[1].pubkey == find_nullifier_pda(PROGRAM_ID, pool, 2)[0]

    def test_transfer_needs_two_outputs(self, builder):
        with pytest.raises(ValueError):
            builder.transfer(Keypair().pubkey(), 1, 2, [3], b"")

    def test_consolidate(self, builder):
        """One nullifier account per input"""
        ix = builder.consolidate(Keypair().pubkey(), 1, [5, 6, 7], 9, b"", [None])
        data = bytes(ix.data)
        assert data[40] == 3
        assert data[41:137] == b"".join(field_to_bytes(n) for n in (5, 6, 7))
        assert data[137:169] == field_to_bytes(9)
        assert data[-5:] == b"\x01" + struct.pack("<I", 0)
        assert len(ix.accounts) == 1 + 3 + 2

    def test_consolidate_bounds(self, builder):
        with pytest.raises(ValueError):
            builder.consolidate(Keypair().pubkey(), 1, [], 9, b"")

    def test_withdraw_sol(self, builder):
        recipient = Keypair().pubkey()
        ix = builder.withdraw_sol(Keypair().pubkey(), recipient, 1, 2, 60, b"")
        data = bytes(ix.data)
        assert struct.unpack("<Q", data[72:80])[0] == 60
        assert any(meta.pubkey == recipient for meta in ix.accounts)


class TestPoolLogs:
    def test_parse(self):
        commitment = 0x1234
        logs = [
            "Program log: Instruction: Transfer",
            f"Program log: shieldpool:commitment:7:{commitment:064x}",
            "Program log: shieldpool:note:7:aabb",
            "Program log: shieldpool:commitment:8:" + "0" * 64,
        ]
        commitments, notes = parse_pool_logs(logs)
        assert commitments == [(7, commitment), (8, 0)]
        assert notes == [(7, b"\xaa\xbb")]

    def test_ignores_noise(self):
        assert parse_pool_logs(["shieldpool:commitment:x:zz"]) == ([], [])


class TestSolanaLedger:
    def test_program_errors(self):
        """Program error names map to the shared error taxonomy"""
        assert isinstance(_program_error(RPCException("custom: NullifierAlreadyUsed")), AlreadySpent)
        assert isinstance(_program_error(RPCException("UnknownRoot")), StaleRoot)
        assert isinstance(_program_error(RPCException("TreeFull")), TreeFull)
        assert isinstance(_program_error(RPCException("something else")), InvalidProof)

    @pytest.mark.asyncio
    async def test_spends_go_through_relayer(self):
        """Non-deposit bundles are relayed when a relayer is configured"""

        class FakeRelayer:
            def __init__(self):
                self.bundles = []

            async def relay(self, bundle):
                self.bundles.append(bundle)
                return "relayed"

        relayer = FakeRelayer()
        ledger = SolanaLedger(SolanaClient("http://localhost:8899"), relayer=relayer)
        bundle = TransactionBundle(
            statement=StatementId.TRANSFER,
            nullifiers=[2],
            new_commitments=[3, 4],
            proof=b"\x01",
            public_inputs=[1, 2, 3, 4],
            asset=AssetId.native(),
        )
        assert await ledger.submit(bundle) == "relayed"
        assert relayer.bundles == [bundle]

    @pytest.mark.asyncio
    async def test_direct_submit_needs_payer(self):
        ledger = SolanaLedger(SolanaClient("http://localhost:8899"))
        bundle = TransactionBundle(
            statement=StatementId.DEPOSIT,
            nullifiers=[],
            new_commitments=[3],
            proof=b"",
            public_inputs=[3],
            asset=AssetId.native(),
            public_amount=5,
        )
        with pytest.raises(ValueError, match="payer"):
            await ledger.submit(bundle)

    @pytest.mark.asyncio
    async def test_build_withdraw_instruction(self):
        """Withdraw bundles encode root and nullifier from the public inputs"""
        ledger = SolanaLedger(SolanaClient("http://localhost:8899"))
        receiver = Keypair().pubkey()
        bundle = TransactionBundle(
            statement=StatementId.WITHDRAW,
            nullifiers=[3],
            new_commitments=[],
            proof=b"",
            public_inputs=[1, 2, 3, 60],
            asset=AssetId.native(),
            public_amount=60,
            receiver=str(receiver),
        )
        ix = await ledger.build_instruction(bundle, Keypair())
        data = bytes(ix.data)
        assert data[:8] == InstructionBuilder.WITHDRAW_SOL_DISC
        assert data[8:40] == field_to_bytes(1)
        assert data[40:72] == field_to_bytes(3)


class TestTokenAccounts:
    def test_associated_token_address(self):
        """ATA derivation matches the SPL library"""
        from spl.token.instructions import get_associated_token_address as spl_ata

        from shieldpool.assets import COMMON_TOKENS
        from shieldpool.token_utils import get_associated_token_address

        owner = Keypair().pubkey()
        mint = Pubkey.from_string(COMMON_TOKENS["USDC"])
        assert get_associated_token_address(owner, mint) == spl_ata(owner, mint)
