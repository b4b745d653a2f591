"""
Append-only commitment tree

Fixed-height Merkle accumulator over note commitments. Empty leaves are 0 and
empty subtrees hash to precomputed zero hashes, so only filled nodes are
stored. Every node is `poseidon_hash([left, right])`, the same function that
produces the leaves.
"""

from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Optional

from .errors import TreeFull
from .poseidon import FIELD_MODULUS, poseidon_hash

TREE_HEIGHT = 20
MAX_ROOT_HISTORY = 32
ZERO_LEAF = 0


@lru_cache(maxsize=None)
def zero_hashes(height: int) -> tuple[int, ...]:
    """zero[0] = empty leaf, zero[i] = H(zero[i-1], zero[i-1])"""
    zeros = [ZERO_LEAF]
    for _ in range(height):
        zeros.append(poseidon_hash([zeros[-1], zeros[-1]]))
    return tuple(zeros)


def hash_pair(left: int, right: int) -> int:
    return poseidon_hash([left, right])


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof: siblings and path bits from leaf level up"""

    leaf_index: int
    siblings: tuple[int, ...]
    path_bits: tuple[int, ...]
    root: int

    @property
    def height(self) -> int:
        return len(self.siblings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "leafIndex": self.leaf_index,
            "siblings": [str(s) for s in self.siblings],
            "pathBits": list(self.path_bits),
            "root": str(self.root),
        }


def compute_root(leaf: int, siblings: Iterable[int], path_bits: Iterable[int]) -> int:
    """Replay the hash chain from a leaf to the root"""
    node = leaf
    for sibling, bit in zip(siblings, path_bits):
        node = hash_pair(sibling, node) if bit else hash_pair(node, sibling)
    return node


def verify_inclusion(leaf: int, proof: MerkleProof, root: int) -> bool:
    """
    Check that `leaf` sits at `proof.leaf_index` under `root`

    Pure function: no tree state is consulted.

    Args:
        leaf: Commitment
        proof: Inclusion proof
        root: Root to check against (current or historical)

    Returns:
        True if the replayed hash chain equals `root`
    """
    if len(proof.siblings) != len(proof.path_bits):
        return False
    if any(bit not in (0, 1) for bit in proof.path_bits):
        return False
    # path bits are the binary expansion of the leaf index
    if sum(bit << level for level, bit in enumerate(proof.path_bits)) != proof.leaf_index:
        return False
    try:
        return compute_root(leaf, proof.siblings, proof.path_bits) == root
    except ValueError:
        return False


class CommitmentTree:
    """
    Incremental Merkle tree with root history

    Example:
        ```python
        tree = CommitmentTree(height=20)
        index, root = tree.append(note.commitment)
        proof = tree.prove_inclusion(index)
        assert verify_inclusion(note.commitment, proof, root)
        ```
    """

    def __init__(
        self,
        height: int = TREE_HEIGHT,
        root_history_size: int = MAX_ROOT_HISTORY,
    ):
        """
        Initialize an empty tree

        Args:
            height: Number of levels above the leaves (capacity 2**height)
            root_history_size: How many recent roots stay acceptable
        """
        if height <= 0:
            raise ValueError("Tree height must be positive")
        if root_history_size <= 0:
            raise ValueError("Root history size must be positive")
        self.height = height
        self.capacity = 1 << height
        self._zeros = zero_hashes(height)
        self._levels: list[dict[int, int]] = [{} for _ in range(height + 1)]
        self._index_by_leaf: dict[int, int] = {}
        self._size = 0
        self._roots: deque[int] = deque(maxlen=root_history_size)
        self._roots.append(self.root)

    def _node(self, level: int, index: int) -> int:
        return self._levels[level].get(index, self._zeros[level])

    @property
    def size(self) -> int:
        return self._size

    @property
    def root(self) -> int:
        return self._node(self.height, 0)

    @property
    def root_history(self) -> tuple[int, ...]:
        """Accepted roots, oldest first"""
        return tuple(self._roots)

    def is_known_root(self, root: int) -> bool:
        return root in self._roots

    def append(self, commitment: int) -> tuple[int, int]:
        """
        Append a commitment as the next leaf

        Args:
            commitment: Field element

        Returns:
            (leaf_index, new_root)

        Raises:
            TreeFull: If all 2**height leaves are used
        """
        if not isinstance(commitment, int) or not 0 <= commitment < FIELD_MODULUS:
            raise ValueError("Commitment is not a canonical field element")
        if self._size >= self.capacity:
            raise TreeFull(f"Merkle tree is full ({self.capacity} leaves)")

        leaf_index = self._size
        index = leaf_index
        node = commitment
        self._levels[0][index] = node
        for level in range(self.height):
            if index % 2 == 0:
                node = hash_pair(node, self._node(level, index + 1))
            else:
                node = hash_pair(self._node(level, index - 1), node)
            index //= 2
            self._levels[level + 1][index] = node

        self._index_by_leaf.setdefault(commitment, leaf_index)
        self._size += 1
        self._roots.append(node)
        return leaf_index, node

    def extend(self, commitments: Iterable[int]) -> int:
        """Append several commitments, returning the new root"""
        root = self.root
        for commitment in commitments:
            _, root = self.append(commitment)
        return root

    def leaf(self, leaf_index: int) -> int:
        if not 0 <= leaf_index < self._size:
            raise IndexError(f"Leaf {leaf_index} not inserted yet")
        return self._levels[0][leaf_index]

    def leaves(self) -> list[int]:
        return [self._levels[0][i] for i in range(self._size)]

    def index_of(self, commitment: int) -> Optional[int]:
        return self._index_by_leaf.get(commitment)

    def prove_inclusion(
        self,
        leaf_index: int,
        tree_size: Optional[int] = None,
    ) -> MerkleProof:
        """
        Build an inclusion proof

        Args:
            leaf_index: Index of the leaf to prove
            tree_size: Prove against the root the tree had when it held this
                many leaves (defaults to the current size)

        Returns:
            MerkleProof whose `root` is the root at that size
        """
        if tree_size is not None and tree_size != self._size:
            if not 0 < tree_size <= self._size:
                raise ValueError(f"Tree never had {tree_size} leaves")
            snapshot = CommitmentTree(self.height, root_history_size=1)
            snapshot.extend(self._levels[0][i] for i in range(tree_size))
            return snapshot.prove_inclusion(leaf_index)

        if not 0 <= leaf_index < self._size:
            raise IndexError(f"Leaf {leaf_index} not inserted yet")

        siblings = []
        path_bits = []
        index = leaf_index
        for level in range(self.height):
            siblings.append(self._node(level, index ^ 1))
            path_bits.append(index % 2)
            index //= 2

        return MerkleProof(
            leaf_index=leaf_index,
            siblings=tuple(siblings),
            path_bits=tuple(path_bits),
            root=self.root,
        )
