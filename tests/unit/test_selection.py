"""Test note selection"""

import pytest

from shieldpool.errors import InsufficientFunds
from shieldpool.note import create_note_from_secrets
from shieldpool.selection import partition_for_consolidation, select_notes
from shieldpool.store import StoredNote


def stored(*amounts):
    return [StoredNote(create_note_from_secrets(a, "SOL"), leaf_index=i) for i, a in enumerate(amounts)]


class TestSelectNotes:
    def test_largest_first(self):
        """Selection takes the largest notes until the amount is covered"""
        notes = stored(5, 50, 20, 30)
        selected = select_notes(notes, 60)
        assert [s.note.amount for s in selected] == [50, 20]

    def test_single_note_suffices(self):
        notes = stored(5, 50, 20)
        assert [s.note.amount for s in select_notes(notes, 50)] == [50]

    def test_all_notes(self):
        notes = stored(1, 2, 3)
        assert len(select_notes(notes, 6)) == 3

    def test_insufficient(self):
        """Not enough in total raises InsufficientFunds"""
        with pytest.raises(InsufficientFunds, match="Insufficient shielded balance"):
            select_notes(stored(1, 2), 4)
        with pytest.raises(InsufficientFunds):
            select_notes([], 1)

    def test_deterministic_ties(self):
        """Equal amounts are ordered by nullifier"""
        notes = stored(10, 10, 10)
        first = select_notes(notes, 10)
        assert first == select_notes(list(reversed(notes)), 10)
        assert first[0].nullifier == min(s.nullifier for s in notes)


class TestPartition:
    def test_batches(self):
        notes = stored(1, 2, 3, 4, 5)
        batches = partition_for_consolidation(notes, 2)
        assert [len(b) for b in batches] == [2, 2, 1]
        assert [s for b in batches for s in b] == notes

    def test_minimum_batch(self):
        with pytest.raises(ValueError):
            partition_for_consolidation(stored(1, 2), 1)
