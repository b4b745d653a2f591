"""Test the commitment tree"""

import pytest

from shieldpool.errors import TreeFull
from shieldpool.merkle import (
    CommitmentTree,
    MerkleProof,
    compute_root,
    hash_pair,
    verify_inclusion,
    zero_hashes,
)
from shieldpool.note import create_note_from_secrets


def commitments(count):
    return [create_note_from_secrets(i + 1, "SOL").commitment for i in range(count)]


class TestCommitmentTree:
    """Test append and proofs"""

    def test_empty_root(self):
        """An empty tree's root is the top zero hash"""
        tree = CommitmentTree(height=4)
        assert tree.root == zero_hashes(4)[4]
        assert tree.size == 0
        assert tree.root_history == (tree.root,)

    def test_zero_hashes(self):
        """zero[i] = H(zero[i-1], zero[i-1])"""
        zeros = zero_hashes(3)
        assert zeros[0] == 0
        for level in range(1, 4):
            assert zeros[level] == hash_pair(zeros[level - 1], zeros[level - 1])

    def test_append_returns_index_and_root(self):
        """append reports the leaf index and the new root"""
        tree = CommitmentTree(height=4)
        leaves = commitments(3)
        for expected_index, leaf in enumerate(leaves):
            index, root = tree.append(leaf)
            assert index == expected_index
            assert root == tree.root
        assert tree.size == 3
        assert tree.leaves() == leaves

    def test_two_leaf_root(self):
        """Root of two leaves in a height-1 tree is H(a, b)"""
        tree = CommitmentTree(height=1)
        a, b = commitments(2)
        tree.append(a)
        tree.append(b)
        assert tree.root == hash_pair(a, b)

    def test_proof_verifies_after_append(self):
        """Every leaf proves against the current root"""
        tree = CommitmentTree(height=5)
        leaves = commitments(7)
        tree.extend(leaves)
        for index, leaf in enumerate(leaves):
            proof = tree.prove_inclusion(index)
            assert proof.root == tree.root
            assert proof.height == 5
            assert verify_inclusion(leaf, proof, tree.root)

    def test_old_proof_stays_valid_for_old_root(self):
        """A proof against root R still verifies against R, not against newer roots"""
        tree = CommitmentTree(height=4)
        leaf = commitments(1)[0]
        _, old_root = tree.append(leaf)
        proof = tree.prove_inclusion(0)

        tree.extend(commitments(3))
        assert verify_inclusion(leaf, proof, old_root)
        assert not verify_inclusion(leaf, proof, tree.root)
        assert verify_inclusion(leaf, tree.prove_inclusion(0), tree.root)

    def test_historical_proof(self):
        """prove_inclusion(tree_size=n) proves against the root at size n"""
        tree = CommitmentTree(height=4)
        leaves = commitments(5)
        roots = []
        for leaf in leaves:
            roots.append(tree.append(leaf)[1])
        proof = tree.prove_inclusion(1, tree_size=3)
        assert proof.root == roots[2]
        assert verify_inclusion(leaves[1], proof, roots[2])
        with pytest.raises(ValueError):
            tree.prove_inclusion(0, tree_size=9)

    def test_tree_full(self):
        """Appending beyond 2**height raises TreeFull"""
        tree = CommitmentTree(height=2)
        tree.extend(commitments(4))
        with pytest.raises(TreeFull):
            tree.append(commitments(1)[0])
        assert tree.size == 4

    def test_root_history_bounded(self):
        """Only the most recent roots stay known"""
        tree = CommitmentTree(height=4, root_history_size=3)
        first_root = tree.root
        tree.extend(commitments(4))
        assert len(tree.root_history) == 3
        assert not tree.is_known_root(first_root)
        assert tree.is_known_root(tree.root)

    def test_index_of(self):
        tree = CommitmentTree(height=3)
        leaves = commitments(3)
        tree.extend(leaves)
        assert tree.index_of(leaves[2]) == 2
        assert tree.index_of(12345) is None

    def test_invalid_leaf(self):
        """Leaves must be field elements"""
        tree = CommitmentTree(height=3)
        with pytest.raises(ValueError):
            tree.append(-1)

    def test_missing_leaf(self):
        tree = CommitmentTree(height=3)
        with pytest.raises(IndexError):
            tree.prove_inclusion(0)
        with pytest.raises(IndexError):
            tree.leaf(0)


class TestVerifyInclusion:
    """Test verify_inclusion is strict"""

    @pytest.fixture
    def setup(self):
        tree = CommitmentTree(height=4)
        leaves = commitments(5)
        tree.extend(leaves)
        return tree, leaves

    def test_wrong_leaf(self, setup):
        tree, leaves = setup
        proof = tree.prove_inclusion(2)
        assert not verify_inclusion(leaves[3], proof, tree.root)

    def test_tampered_sibling(self, setup):
        tree, leaves = setup
        proof = tree.prove_inclusion(2)
        siblings = list(proof.siblings)
        siblings[1] = (siblings[1] + 1) % 2**200
        bad = MerkleProof(proof.leaf_index, tuple(siblings), proof.path_bits, proof.root)
        assert not verify_inclusion(leaves[2], bad, tree.root)

    def test_bits_must_match_index(self, setup):
        """Path bits that disagree with leaf_index are rejected"""
        tree, leaves = setup
        proof = tree.prove_inclusion(2)
        bad = MerkleProof(3, proof.siblings, proof.path_bits, proof.root)
        assert not verify_inclusion(leaves[2], bad, tree.root)

    def test_length_mismatch(self, setup):
        tree, leaves = setup
        proof = tree.prove_inclusion(2)
        bad = MerkleProof(2, proof.siblings[:-1], proof.path_bits, proof.root)
        assert not verify_inclusion(leaves[2], bad, tree.root)

    def test_compute_root(self, setup):
        tree, leaves = setup
        proof = tree.prove_inclusion(4)
        assert compute_root(leaves[4], proof.siblings, proof.path_bits) == tree.root
