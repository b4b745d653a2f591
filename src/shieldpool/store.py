"""
Wallet note store

Single-writer store of the notes one wallet owns, keyed by nullifier.
Discovery scans and retried operations can observe the same note more than
once, so inserting a known nullifier is a no-op rather than an error.
"""

import base64
import json
import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .assets import AssetId
from .note import Note

logger = logging.getLogger(__name__)

STORE_EXPORT_INFO = b"shieldpool/store/v1"


@dataclass
class StoredNote:
    """A note plus its position in the tree and spend state"""

    note: Note
    leaf_index: Optional[int] = None
    spent: bool = False

    @property
    def nullifier(self) -> int:
        return self.note.nullifier

    def to_dict(self) -> dict:
        return {
            "note": self.note.to_dict(),
            "leafIndex": self.leaf_index,
            "spent": self.spent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StoredNote":
        return cls(
            note=Note.from_dict(data["note"]),
            leaf_index=data.get("leafIndex"),
            spent=bool(data.get("spent", False)),
        )


def _fernet_for(view_key: bytes) -> Fernet:
    key = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=STORE_EXPORT_INFO,
    ).derive(view_key)
    return Fernet(base64.urlsafe_b64encode(key))


class NoteStore:
    """
    Owned note store for one wallet

    All mutation goes through `add_note`, `add_notes` and `mark_spent`,
    serialized by an internal lock.
    """

    def __init__(self) -> None:
        self._notes: dict[int, StoredNote] = {}
        self._lock = threading.RLock()

    def add_note(self, note: Note, leaf_index: Optional[int] = None) -> bool:
        """
        Insert a note unless its nullifier is already known

        Args:
            note: Owned note
            leaf_index: Tree position, if known

        Returns:
            True if the note was new
        """
        with self._lock:
            existing = self._notes.get(note.nullifier)
            if existing is not None:
                if existing.leaf_index is None and leaf_index is not None:
                    existing.leaf_index = leaf_index
                return False
            self._notes[note.nullifier] = StoredNote(note=note, leaf_index=leaf_index)
            return True

    def add_notes(self, notes: Iterable[tuple[Note, Optional[int]]]) -> int:
        """
        Insert a batch atomically

        Returns:
            Number of notes that were new
        """
        batch = list(notes)
        with self._lock:
            return sum(1 for note, leaf_index in batch if self.add_note(note, leaf_index))

    def mark_spent(self, nullifier: int) -> None:
        """
        Raises:
            KeyError: If no note with this nullifier is stored
        """
        with self._lock:
            self._notes[nullifier].spent = True

    def set_leaf_index(self, nullifier: int, leaf_index: int) -> None:
        with self._lock:
            self._notes[nullifier].leaf_index = leaf_index

    def get(self, nullifier: int) -> Optional[StoredNote]:
        with self._lock:
            return self._notes.get(nullifier)

    def unspent(self, asset: Optional[AssetId] = None) -> list[StoredNote]:
        """Unspent notes, optionally of one asset"""
        with self._lock:
            return [
                stored
                for stored in self._notes.values()
                if not stored.spent and (asset is None or stored.note.asset == asset)
            ]

    def balance(self, asset: AssetId) -> int:
        return sum(stored.note.amount for stored in self.unspent(asset))

    def __len__(self) -> int:
        with self._lock:
            return len(self._notes)

    def __contains__(self, nullifier: int) -> bool:
        with self._lock:
            return nullifier in self._notes

    def export_encrypted(self, view_key: bytes) -> bytes:
        """Serialize every note into a Fernet token keyed from the view key"""
        with self._lock:
            data = [stored.to_dict() for stored in self._notes.values()]
        return _fernet_for(view_key).encrypt(json.dumps(data).encode())

    def import_encrypted(self, token: bytes, view_key: bytes) -> int:
        """
        Merge an exported store

        Raises:
            ValueError: If the token was not produced with this view key
        """
        try:
            raw = _fernet_for(view_key).decrypt(token)
        except InvalidToken as e:
            raise ValueError("Store export does not match this view key") from e
        records = [StoredNote.from_dict(item) for item in json.loads(raw)]
        with self._lock:
            added = 0
            for record in records:
                if record.nullifier in self._notes:
                    if record.spent:
                        self._notes[record.nullifier].spent = True
                    continue
                self._notes[record.nullifier] = record
                added += 1
        logger.info("Imported %d notes", added)
        return added
