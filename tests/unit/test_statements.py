"""Test proof statement witnesses"""

import pytest

from shieldpool.assets import COMMON_TOKENS, AssetId, asset_to_field
from shieldpool.encryption import NotePayload
from shieldpool.errors import InvalidWitness
from shieldpool.merkle import CommitmentTree
from shieldpool.note import create_note, create_note_from_secrets
from shieldpool.statements import (
    StatementId,
    build_consolidate_witness,
    build_deposit_witness,
    build_transfer_witness,
    build_withdraw_witness,
    parse_public_inputs,
)
from shieldpool.utils import bytes_to_field


def tree_with(*notes, height=6):
    tree = CommitmentTree(height=height)
    tree.extend(n.commitment for n in notes)
    return tree


class TestDeposit:
    def test_public_inputs(self):
        """Deposit exposes only the commitment"""
        note = create_note_from_secrets(100, "SOL")
        witness = build_deposit_witness(note)
        assert witness.public_inputs() == [note.commitment]
        assert witness.statement is StatementId.DEPOSIT
        assert witness.signals()["amount"] == "100"


class TestTransfer:
    """Test the transfer statement"""

    def test_valid_transfer(self):
        """Conserving transfer builds with the documented input order"""
        note = create_note_from_secrets(100, "SOL")
        tree = tree_with(note)
        out1 = create_note_from_secrets(60, "SOL")
        out2 = create_note_from_secrets(40, "SOL")

        witness = build_transfer_witness(note, tree.prove_inclusion(0), out1, out2)
        assert witness.public_inputs() == [
            tree.root,
            note.nullifier,
            out1.commitment,
            out2.commitment,
        ]

    def test_signal_names(self):
        """Signals use the circuit's names"""
        note = create_note_from_secrets(100, "SOL")
        tree = tree_with(note)
        witness = build_transfer_witness(
            note,
            tree.prove_inclusion(0),
            create_note_from_secrets(60, "SOL"),
            create_note_from_secrets(40, "SOL"),
        )
        signals = witness.signals()
        for name in (
            "inSecret",
            "inAmount",
            "tokenId",
            "blinding",
            "rho",
            "merklePath",
            "merkleIndices",
            "outSecret1",
            "outAmount1",
            "outBlinding1",
            "outSecret2",
            "outAmount2",
            "outBlinding2",
            "merkleRoot",
            "nullifier",
            "outCommitment1",
            "outCommitment2",
        ):
            assert name in signals
        assert len(signals["merklePath"]) == tree.height

    def test_conservation_violation(self):
        """Outputs that do not sum to the input are rejected before proving"""
        note = create_note_from_secrets(100, "SOL")
        tree = tree_with(note)
        with pytest.raises(InvalidWitness, match="Amount mismatch"):
            build_transfer_witness(
                note,
                tree.prove_inclusion(0),
                create_note_from_secrets(60, "SOL"),
                create_note_from_secrets(41, "SOL"),
            )

    def test_token_mismatch(self):
        """Outputs must share the input tokenId"""
        note = create_note_from_secrets(100, "SOL")
        tree = tree_with(note)
        with pytest.raises(InvalidWitness, match="tokenId"):
            build_transfer_witness(
                note,
                tree.prove_inclusion(0),
                create_note_from_secrets(60, COMMON_TOKENS["USDC"]),
                create_note_from_secrets(40, "SOL"),
            )

    def test_merkle_proof_for_other_leaf(self):
        """The Merkle proof must open the input's own commitment"""
        note = create_note_from_secrets(100, "SOL")
        other = create_note_from_secrets(5, "SOL")
        tree = tree_with(other, note)
        with pytest.raises(InvalidWitness, match="not in the tree"):
            build_transfer_witness(
                note,
                tree.prove_inclusion(0),
                create_note_from_secrets(60, "SOL"),
                create_note_from_secrets(40, "SOL"),
            )

    def test_reused_randomness(self):
        """Outputs cannot reuse blinding"""
        note = create_note_from_secrets(100, "SOL")
        tree = tree_with(note)
        out1 = create_note_from_secrets(60, "SOL")
        out2 = create_note(out1.secret, 40, "SOL", out1.blinding, out1.rho + 1)
        with pytest.raises(InvalidWitness, match="Blinding"):
            build_transfer_witness(note, tree.prove_inclusion(0), out1, out2)


class TestWithdraw:
    def test_public_inputs(self):
        """Withdraw exposes root, receiver, nullifier and amount"""
        note = create_note_from_secrets(60, "SOL")
        tree = tree_with(note)
        witness = build_withdraw_witness(note, tree.prove_inclusion(0), receiver=1234)
        assert witness.public_inputs() == [tree.root, 1234, note.nullifier, 60]
        assert witness.signals()["receiverAddress"] == "1234"

    def test_stale_proof_still_self_consistent(self):
        """A proof against an older root is a valid witness for that root"""
        note = create_note_from_secrets(60, "SOL")
        tree = tree_with(note)
        proof = tree.prove_inclusion(0)
        tree.append(create_note_from_secrets(1, "SOL").commitment)
        witness = build_withdraw_witness(note, proof, receiver=1)
        assert witness.merkle_root == proof.root != tree.root


class TestConsolidate:
    """Test the consolidate statement"""

    def test_sum_preserved(self):
        """K inputs consolidate into one note of the sum"""
        notes = [create_note_from_secrets(a, "SOL") for a in (10, 20, 30)]
        tree = tree_with(*notes)
        out = create_note_from_secrets(60, "SOL")
        witness = build_consolidate_witness(
            notes, [tree.prove_inclusion(i) for i in range(3)], out
        )
        assert witness.public_inputs() == [
            tree.root,
            *(n.nullifier for n in notes),
            out.commitment,
        ]
        assert len(witness.signals()["nullifiers"]) == 3

    def test_single_input_is_legal(self):
        """K = 1 re-randomizes one note"""
        note = create_note_from_secrets(10, "SOL")
        tree = tree_with(note)
        out = create_note_from_secrets(10, "SOL")
        witness = build_consolidate_witness([note], [tree.prove_inclusion(0)], out)
        assert len(witness.public_inputs()) == 3

    def test_sum_mismatch(self):
        notes = [create_note_from_secrets(a, "SOL") for a in (10, 20)]
        tree = tree_with(*notes)
        with pytest.raises(InvalidWitness, match="Amount mismatch"):
            build_consolidate_witness(
                notes,
                [tree.prove_inclusion(i) for i in range(2)],
                create_note_from_secrets(31, "SOL"),
            )

    def test_too_many_inputs(self):
        notes = [create_note_from_secrets(1, "SOL") for _ in range(3)]
        tree = tree_with(*notes)
        with pytest.raises(InvalidWitness, match="1-2"):
            build_consolidate_witness(
                notes,
                [tree.prove_inclusion(i) for i in range(3)],
                create_note_from_secrets(3, "SOL"),
                max_inputs=2,
            )

    def test_proofs_must_share_root(self):
        """All inputs must prove against one root"""
        a = create_note_from_secrets(1, "SOL")
        b = create_note_from_secrets(2, "SOL")
        tree = tree_with(a)
        proof_a = tree.prove_inclusion(0)
        tree.append(b.commitment)
        proof_b = tree.prove_inclusion(1)
        with pytest.raises(InvalidWitness, match="different root"):
            build_consolidate_witness([a, b], [proof_a, proof_b], create_note_from_secrets(3, "SOL"))

    def test_duplicate_inputs(self):
        note = create_note_from_secrets(5, "SOL")
        tree = tree_with(note)
        proof = tree.prove_inclusion(0)
        with pytest.raises(InvalidWitness, match="distinct"):
            build_consolidate_witness([note, note], [proof, proof], create_note_from_secrets(10, "SOL"))

    def test_mixed_tokens(self):
        a = create_note_from_secrets(1, "SOL")
        b = create_note_from_secrets(2, COMMON_TOKENS["USDC"])
        tree = tree_with(a, b)
        with pytest.raises(InvalidWitness, match="same tokenId"):
            build_consolidate_witness(
                [a, b],
                [tree.prove_inclusion(0), tree.prove_inclusion(1)],
                create_note_from_secrets(3, "SOL"),
            )


class TestParsePublicInputs:
    def test_withdraw(self):
        signals = parse_public_inputs(StatementId.WITHDRAW, [1, 2, 3, 4])
        assert signals.merkle_root == 1
        assert signals.receiver == 2
        assert signals.nullifiers == (3,)
        assert signals.amount == 4
        assert signals.commitments == ()

    def test_consolidate(self):
        signals = parse_public_inputs(StatementId.CONSOLIDATE, [1, 2, 3, 4])
        assert signals.nullifiers == (2, 3)
        assert signals.commitments == (4,)

    def test_transfer_and_deposit(self):
        assert parse_public_inputs(StatementId.TRANSFER, [1, 2, 3, 4]).commitments == (3, 4)
        deposit = parse_public_inputs(StatementId.DEPOSIT, [9])
        assert deposit.merkle_root is None
        assert deposit.commitments == (9,)

    def test_wrong_length(self):
        with pytest.raises(ValueError):
            parse_public_inputs(StatementId.TRANSFER, [1, 2, 3])
        with pytest.raises(ValueError):
            parse_public_inputs(StatementId.CONSOLIDATE, [1, 2])


class TestCanonicalTokenId:
    """Every call site derives tokenId the same way"""

    def test_all_call_sites_agree(self):
        asset = AssetId.spl(COMMON_TOKENS["USDC"])
        note = create_note_from_secrets(7, asset)
        tree = tree_with(note)
        canonical = asset_to_field(asset)

        assert note.token_id == canonical
        wire = NotePayload.from_note(note).to_bytes()
        assert bytes_to_field(wire[32:64]) == canonical
        deposit = build_deposit_witness(note)
        assert deposit.signals()["tokenId"] == str(canonical)
        withdraw = build_withdraw_witness(note, tree.prove_inclusion(0), receiver=1)
        assert withdraw.signals()["tokenId"] == str(canonical)
