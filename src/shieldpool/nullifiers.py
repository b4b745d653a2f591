"""
Nullifier registry contract

The registry itself lives on the ledger. The core relies on exactly-once
insertion: a nullifier that is already present is rejected with
`AlreadySpent`, and that rejection is what prevents double spends.
"""

import threading
from typing import Iterable, Protocol

from .errors import AlreadySpent


class NullifierRegistry(Protocol):
    """Exactly-once nullifier set"""

    def contains(self, nullifier: int) -> bool: ...

    def insert(self, nullifier: int) -> None: ...


class InMemoryNullifierRegistry:
    """Lock-protected nullifier set"""

    def __init__(self) -> None:
        self._spent: set[int] = set()
        self._lock = threading.Lock()

    def contains(self, nullifier: int) -> bool:
        with self._lock:
            return nullifier in self._spent

    def insert(self, nullifier: int) -> None:
        self.insert_many([nullifier])

    def insert_many(self, nullifiers: Iterable[int]) -> None:
        """
        Insert all nullifiers or none

        Raises:
            AlreadySpent: If any is already present or the batch repeats one
        """
        batch = list(nullifiers)
        with self._lock:
            seen: set[int] = set()
            for nullifier in batch:
                if nullifier in self._spent or nullifier in seen:
                    raise AlreadySpent(
                        f"Nullifier {nullifier:#x} has already been used",
                        nullifier=nullifier,
                    )
                seen.add(nullifier)
            self._spent.update(batch)

    def __len__(self) -> int:
        with self._lock:
            return len(self._spent)

    def __contains__(self, nullifier: int) -> bool:
        return self.contains(nullifier)
