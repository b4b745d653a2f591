"""Input note selection"""

from typing import Sequence

from .errors import InsufficientFunds
from .store import StoredNote


def select_notes(candidates: Sequence[StoredNote], amount: int) -> list[StoredNote]:
    """
    Greedy largest-first selection

    Args:
        candidates: Unspent notes of a single asset
        amount: Amount to cover

    Returns:
        The smallest prefix of the notes sorted by amount (descending) whose
        sum covers `amount`

    Raises:
        InsufficientFunds: If all candidates together do not cover it
    """
    ordered = sorted(candidates, key=lambda s: (-s.note.amount, s.nullifier))
    selected = []
    total = 0
    for stored in ordered:
        if total >= amount:
            break
        selected.append(stored)
        total += stored.note.amount
    if total < amount:
        raise InsufficientFunds(
            f"Insufficient shielded balance: have {total}, need {amount}"
        )
    return selected


def partition_for_consolidation(
    notes: Sequence[StoredNote],
    max_inputs: int,
) -> list[list[StoredNote]]:
    """Split notes into consolidate batches of at most `max_inputs`"""
    if max_inputs < 2:
        raise ValueError("Consolidation needs at least 2 inputs per batch")
    return [list(notes[i:i + max_inputs]) for i in range(0, len(notes), max_inputs)]
