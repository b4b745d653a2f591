"""Shared fixtures for shieldpool tests"""

import pytest
from solders.keypair import Keypair

from shieldpool.assets import COMMON_TOKENS, AssetId
from shieldpool.client import PrivacyClient
from shieldpool.config import Settings
from shieldpool.keys import derive_keys
from shieldpool.ledger import InMemoryLedger
from shieldpool.note import create_note_from_secrets
from shieldpool.prover import LocalProofBackend
from shieldpool.statements import StatementId, build_deposit_witness
from shieldpool.types import TransactionBundle

# Small trees keep Poseidon hashing cheap in tests
TEST_TREE_HEIGHT = 8


@pytest.fixture
def settings():
    return Settings(
        tree_height=TEST_TREE_HEIGHT,
        root_history_size=8,
        consolidate_max_inputs=4,
        max_stale_root_retries=2,
        proof_timeout_seconds=5.0,
        proof_max_attempts=3,
        proof_backoff_seconds=0.0,
        confirm_poll_interval_seconds=0.01,
        confirm_timeout_seconds=0.5,
        scan_interval_seconds=0.01,
    )


@pytest.fixture
def alice_keys():
    return derive_keys(bytes(range(32)))


@pytest.fixture
def bob_keys():
    return derive_keys(bytes([7] * 32))


@pytest.fixture
def usdc():
    return AssetId.spl(COMMON_TOKENS["USDC"])


@pytest.fixture
def receiver():
    """A transparent Solana address"""
    return str(Keypair().pubkey())


@pytest.fixture
def ledger(settings):
    return InMemoryLedger(
        tree_height=settings.tree_height,
        root_history_size=settings.root_history_size,
    )


@pytest.fixture
def alice(ledger, alice_keys, settings):
    return PrivacyClient(ledger, alice_keys, settings=settings)


@pytest.fixture
def bob(ledger, bob_keys, settings):
    return PrivacyClient(ledger, bob_keys, settings=settings)


@pytest.fixture
def deposit_bundle():
    """Factory for a proven deposit bundle of a fresh note"""

    async def make(amount=1, asset=None):
        asset = asset or AssetId.native()
        note = create_note_from_secrets(amount, asset)
        witness = build_deposit_witness(note)
        result = await LocalProofBackend().generate_proof(StatementId.DEPOSIT, witness)
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
        return note, bundle

    return make
