"""
Proof statement contracts

Each statement fixes the private and public signals a witness builder hands
to the proof backend and the order of the public input vector the verifier
checks. The circuits themselves are compiled elsewhere; these classes
re-evaluate every relation in Python so that a witness which cannot prove is
rejected before the (slow) backend is called.

| Statement   | Public inputs                                      |
|-------------|----------------------------------------------------|
| deposit     | commitment                                         |
| withdraw    | merkleRoot, receiverAddress, nullifier, amount     |
| transfer    | merkleRoot, nullifier, outCommitment1, outCommitment2 |
| consolidate | merkleRoot, nullifier_1..K, outCommitment          |
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Optional, Sequence, Union

from .errors import InvalidWitness
from .merkle import MerkleProof, verify_inclusion
from .note import Note, compute_commitment, compute_nullifier
from .poseidon import FIELD_MODULUS

# Transfer and withdraw spend one note; larger input sets are folded with
# consolidate first.
CONSOLIDATE_MAX_INPUTS = 8


class StatementId(str, Enum):
    """Statement families understood by the proof backend"""

    DEPOSIT = "deposit"
    TRANSFER = "transfer"
    WITHDRAW = "withdraw"
    CONSOLIDATE = "consolidate"


@dataclass(frozen=True)
class PublicSignals:
    """Verifier-side view of a public input vector"""

    statement: StatementId
    merkle_root: Optional[int]
    nullifiers: tuple[int, ...]
    commitments: tuple[int, ...]
    receiver: Optional[int] = None
    amount: Optional[int] = None


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise InvalidWitness(message)


def _check_relation_note(note: Note, label: str) -> None:
    _require(
        compute_commitment(note.secret, note.amount, note.token_id, note.blinding)
        == note.commitment,
        f"{label}: commitment does not match note contents",
    )
    _require(
        compute_nullifier(note.secret, note.rho) == note.nullifier,
        f"{label}: nullifier does not match (secret, rho)",
    )


def _check_membership(note: Note, proof: MerkleProof, root: int, label: str) -> None:
    _require(proof.root == root, f"{label}: Merkle proof is for a different root")
    _require(
        verify_inclusion(note.commitment, proof, root),
        f"{label}: commitment is not in the tree under merkleRoot",
    )


def _check_fresh(notes: Sequence[Note]) -> None:
    _require(
        len({n.blinding for n in notes}) == len(notes),
        "Blinding reused across notes",
    )
    _require(len({n.rho for n in notes}) == len(notes), "rho reused across notes")


def _path(proof: MerkleProof) -> list[str]:
    return [str(s) for s in proof.siblings]


def _bits(proof: MerkleProof) -> list[str]:
    return [str(b) for b in proof.path_bits]


@dataclass(frozen=True)
class DepositWitness:
    note: Note

    statement: ClassVar[StatementId] = StatementId.DEPOSIT

    def check(self) -> None:
        _check_relation_note(self.note, "deposit")

    def public_inputs(self) -> list[int]:
        return [self.note.commitment]

    def signals(self) -> dict[str, Any]:
        return {
            "secret": str(self.note.secret),
            "amount": str(self.note.amount),
            "tokenId": str(self.note.token_id),
            "blinding": str(self.note.blinding),
            "commitment": str(self.note.commitment),
        }


@dataclass(frozen=True)
class WithdrawWitness:
    note: Note
    merkle_proof: MerkleProof
    receiver: int

    statement: ClassVar[StatementId] = StatementId.WITHDRAW

    @property
    def merkle_root(self) -> int:
        return self.merkle_proof.root

    def check(self) -> None:
        _check_relation_note(self.note, "withdraw")
        _check_membership(self.note, self.merkle_proof, self.merkle_root, "withdraw")
        _require(0 <= self.receiver < FIELD_MODULUS, "receiverAddress out of field")

    def public_inputs(self) -> list[int]:
        return [self.merkle_root, self.receiver, self.note.nullifier, self.note.amount]

    def signals(self) -> dict[str, Any]:
        return {
            "secret": str(self.note.secret),
            "amount": str(self.note.amount),
            "tokenId": str(self.note.token_id),
            "blinding": str(self.note.blinding),
            "rho": str(self.note.rho),
            "merklePath": _path(self.merkle_proof),
            "merkleIndices": _bits(self.merkle_proof),
            "merkleRoot": str(self.merkle_root),
            "receiverAddress": str(self.receiver),
            "nullifier": str(self.note.nullifier),
        }


@dataclass(frozen=True)
class TransferWitness:
    input_note: Note
    merkle_proof: MerkleProof
    output_notes: tuple[Note, Note]

    statement: ClassVar[StatementId] = StatementId.TRANSFER

    @property
    def merkle_root(self) -> int:
        return self.merkle_proof.root

    def check(self) -> None:
        _require(len(self.output_notes) == 2, "transfer has exactly two outputs")
        out1, out2 = self.output_notes
        _check_relation_note(self.input_note, "transfer input")
        _check_relation_note(out1, "transfer output 1")
        _check_relation_note(out2, "transfer output 2")
        _require(
            out1.token_id == self.input_note.token_id
            and out2.token_id == self.input_note.token_id,
            "Outputs must share the input's tokenId",
        )
        _require(
            self.input_note.amount == out1.amount + out2.amount,
            f"Amount mismatch: input is {self.input_note.amount}, "
            f"outputs sum to {out1.amount + out2.amount}",
        )
        _check_fresh([self.input_note, out1, out2])
        _check_membership(
            self.input_note, self.merkle_proof, self.merkle_root, "transfer"
        )

    def public_inputs(self) -> list[int]:
        out1, out2 = self.output_notes
        return [
            self.merkle_root,
            self.input_note.nullifier,
            out1.commitment,
            out2.commitment,
        ]

    def signals(self) -> dict[str, Any]:
        note = self.input_note
        out1, out2 = self.output_notes
        return {
            "inSecret": str(note.secret),
            "inAmount": str(note.amount),
            "tokenId": str(note.token_id),
            "blinding": str(note.blinding),
            "rho": str(note.rho),
            "merklePath": _path(self.merkle_proof),
            "merkleIndices": _bits(self.merkle_proof),
            "outSecret1": str(out1.secret),
            "outAmount1": str(out1.amount),
            "outBlinding1": str(out1.blinding),
            "outSecret2": str(out2.secret),
            "outAmount2": str(out2.amount),
            "outBlinding2": str(out2.blinding),
            "merkleRoot": str(self.merkle_root),
            "nullifier": str(note.nullifier),
            "outCommitment1": str(out1.commitment),
            "outCommitment2": str(out2.commitment),
        }


@dataclass(frozen=True)
class ConsolidateWitness:
    input_notes: tuple[Note, ...]
    merkle_proofs: tuple[MerkleProof, ...]
    output_note: Note
    max_inputs: int = CONSOLIDATE_MAX_INPUTS

    statement: ClassVar[StatementId] = StatementId.CONSOLIDATE

    @property
    def merkle_root(self) -> int:
        return self.merkle_proofs[0].root

    def check(self) -> None:
        count = len(self.input_notes)
        _require(
            1 <= count <= self.max_inputs,
            f"Consolidate supports 1-{self.max_inputs} input notes, got {count}",
        )
        _require(
            len(self.merkle_proofs) == count,
            f"Mismatch: {count} notes but {len(self.merkle_proofs)} merkle proofs",
        )
        token_id = self.output_note.token_id
        for i, note in enumerate(self.input_notes):
            _check_relation_note(note, f"consolidate input {i}")
            _require(
                note.token_id == token_id,
                "All input notes and the output must have the same tokenId",
            )
        _check_relation_note(self.output_note, "consolidate output")

        total = sum(n.amount for n in self.input_notes)
        _require(
            total == self.output_note.amount,
            f"Amount mismatch: inputs sum to {total}, output is {self.output_note.amount}",
        )
        _require(
            len({n.nullifier for n in self.input_notes}) == count,
            "Input notes must be distinct",
        )
        _check_fresh([*self.input_notes, self.output_note])

        root = self.merkle_root
        for i, (note, proof) in enumerate(zip(self.input_notes, self.merkle_proofs)):
            _check_membership(note, proof, root, f"consolidate input {i}")

    def public_inputs(self) -> list[int]:
        return [
            self.merkle_root,
            *(n.nullifier for n in self.input_notes),
            self.output_note.commitment,
        ]

    def signals(self) -> dict[str, Any]:
        out = self.output_note
        return {
            "inSecrets": [str(n.secret) for n in self.input_notes],
            "inAmounts": [str(n.amount) for n in self.input_notes],
            "tokenId": str(out.token_id),
            "blindings": [str(n.blinding) for n in self.input_notes],
            "rhos": [str(n.rho) for n in self.input_notes],
            "merklePaths": [_path(p) for p in self.merkle_proofs],
            "merkleIndices": [_bits(p) for p in self.merkle_proofs],
            "outSecret": str(out.secret),
            "outAmount": str(out.amount),
            "outBlinding": str(out.blinding),
            "merkleRoot": str(self.merkle_root),
            "nullifiers": [str(n.nullifier) for n in self.input_notes],
            "outCommitment": str(out.commitment),
        }


Witness = Union[DepositWitness, WithdrawWitness, TransferWitness, ConsolidateWitness]


def build_deposit_witness(note: Note) -> DepositWitness:
    witness = DepositWitness(note=note)
    witness.check()
    return witness


def build_withdraw_witness(
    note: Note,
    merkle_proof: MerkleProof,
    receiver: int,
) -> WithdrawWitness:
    witness = WithdrawWitness(note=note, merkle_proof=merkle_proof, receiver=receiver)
    witness.check()
    return witness


def build_transfer_witness(
    input_note: Note,
    merkle_proof: MerkleProof,
    output_note_1: Note,
    output_note_2: Note,
) -> TransferWitness:
    """
    Build and check a transfer witness

    Args:
        input_note: Note being spent
        merkle_proof: Inclusion proof of the input note
        output_note_1: Recipient note
        output_note_2: Change note

    Returns:
        TransferWitness

    Raises:
        InvalidWitness: On broken conservation, tokenId mismatch, reused
            randomness or a Merkle proof that does not verify
    """
    witness = TransferWitness(
        input_note=input_note,
        merkle_proof=merkle_proof,
        output_notes=(output_note_1, output_note_2),
    )
    witness.check()
    return witness


def build_consolidate_witness(
    input_notes: Sequence[Note],
    merkle_proofs: Sequence[MerkleProof],
    output_note: Note,
    max_inputs: int = CONSOLIDATE_MAX_INPUTS,
) -> ConsolidateWitness:
    """
    Build and check a consolidate witness (K inputs into one output)

    Raises:
        InvalidWitness: See `ConsolidateWitness.check`
    """
    witness = ConsolidateWitness(
        input_notes=tuple(input_notes),
        merkle_proofs=tuple(merkle_proofs),
        output_note=output_note,
        max_inputs=max_inputs,
    )
    witness.check()
    return witness


def parse_public_inputs(
    statement: StatementId,
    public_inputs: Sequence[int],
) -> PublicSignals:
    """
    Split a public input vector into its named signals

    Raises:
        ValueError: If the vector has the wrong length for the statement
    """
    values = [int(v) for v in public_inputs]
    if statement is StatementId.DEPOSIT:
        if len(values) != 1:
            raise ValueError("deposit expects 1 public input")
        return PublicSignals(statement, None, (), (values[0],))
    if statement is StatementId.WITHDRAW:
        if len(values) != 4:
            raise ValueError("withdraw expects 4 public inputs")
        root, receiver, nullifier, amount = values
        return PublicSignals(
            statement, root, (nullifier,), (), receiver=receiver, amount=amount
        )
    if statement is StatementId.TRANSFER:
        if len(values) != 4:
            raise ValueError("transfer expects 4 public inputs")
        root, nullifier, out1, out2 = values
        return PublicSignals(statement, root, (nullifier,), (out1, out2))
    if statement is StatementId.CONSOLIDATE:
        if len(values) < 3:
            raise ValueError("consolidate expects at least 3 public inputs")
        return PublicSignals(
            statement, values[0], tuple(values[1:-1]), (values[-1],)
        )
    raise ValueError(f"Unknown statement: {statement!r}")
