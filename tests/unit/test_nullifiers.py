"""Test the nullifier registry"""

import pytest

from shieldpool.errors import AlreadySpent
from shieldpool.nullifiers import InMemoryNullifierRegistry


class TestNullifierRegistry:
    """Test exactly-once insertion"""

    def test_insert_and_contains(self):
        registry = InMemoryNullifierRegistry()
        assert not registry.contains(5)
        registry.insert(5)
        assert registry.contains(5)
        assert 5 in registry
        assert len(registry) == 1

    def test_double_insert(self):
        """Second insert of the same nullifier is rejected"""
        registry = InMemoryNullifierRegistry()
        registry.insert(5)
        with pytest.raises(AlreadySpent) as exc:
            registry.insert(5)
        assert exc.value.nullifier == 5
        assert exc.value.recoverable
        assert len(registry) == 1

    def test_insert_many_is_atomic(self):
        """A batch with one spent nullifier inserts nothing"""
        registry = InMemoryNullifierRegistry()
        registry.insert(2)
        with pytest.raises(AlreadySpent):
            registry.insert_many([1, 2, 3])
        assert not registry.contains(1)
        assert not registry.contains(3)

    def test_duplicate_within_batch(self):
        """A batch that repeats a nullifier is rejected"""
        registry = InMemoryNullifierRegistry()
        with pytest.raises(AlreadySpent):
            registry.insert_many([7, 7])
        assert len(registry) == 0
