"""Test the Poseidon field hash"""

import pytest

from shieldpool.poseidon import (
    FIELD_MODULUS,
    FULL_ROUNDS,
    MAX_INPUTS,
    PARTIAL_ROUNDS,
    _parameters,
    permute,
    poseidon_hash,
)


class TestPoseidonHash:
    """Test poseidon_hash"""

    def test_deterministic(self):
        """Same inputs hash to the same element"""
        assert poseidon_hash([1, 2]) == poseidon_hash([1, 2])

    def test_output_in_field(self):
        """Output is a canonical field element"""
        for inputs in ([0], [1, 2], [FIELD_MODULUS - 1] * 4):
            value = poseidon_hash(inputs)
            assert 0 <= value < FIELD_MODULUS

    def test_order_matters(self):
        """Swapping inputs changes the hash"""
        assert poseidon_hash([1, 2]) != poseidon_hash([2, 1])

    def test_arity_separates(self):
        """A trailing zero changes the hash"""
        assert poseidon_hash([5]) != poseidon_hash([5, 0])

    def test_all_supported_widths(self):
        """Every input count from 1 to MAX_INPUTS hashes"""
        outputs = {poseidon_hash(list(range(1, n + 1))) for n in range(1, MAX_INPUTS + 1)}
        assert len(outputs) == MAX_INPUTS

    def test_rejects_bad_arity(self):
        """Zero inputs or too many inputs are rejected"""
        with pytest.raises(ValueError):
            poseidon_hash([])
        with pytest.raises(ValueError):
            poseidon_hash([1] * (MAX_INPUTS + 1))

    def test_rejects_out_of_field(self):
        """Values at or above the modulus and negatives are rejected"""
        with pytest.raises(ValueError, match="canonical"):
            poseidon_hash([FIELD_MODULUS])
        with pytest.raises(ValueError, match="canonical"):
            poseidon_hash([-1])

    def test_rejects_non_int(self):
        """bool and str are not field elements"""
        with pytest.raises(ValueError):
            poseidon_hash([True])
        with pytest.raises(ValueError):
            poseidon_hash(["1"])

    def test_permute_width(self):
        """permute only accepts widths 2..9"""
        assert len(permute([0, 1, 2])) == 3
        with pytest.raises(ValueError):
            permute([1])


class TestCircomlibVectors:
    """Known answers of circomlib / the Poseidon reference implementation"""

    def test_hash_two(self):
        assert poseidon_hash([1, 2]) == (
            7853200120776062878684798364095072458815029376092732009249414926327459813530
        )

    def test_permutation_width_3(self):
        assert permute([0, 1, 2]) == [
            0x115CC0F5E7D690413DF64C6B9662E9CF2A3617F2743245519E19607A4417189A,
            0x0FCA49B798923AB0239DE1C9E7A4A9A2210312B6A2F616D18B5A87F9B628AE29,
            0x0E7AE82E40091E63CBD4F16A6D16310B3729D4B6E138FCF54110E2867045A30C,
        ]

    def test_permutation_width_5(self):
        """Width 5 is the commitment arity"""
        assert permute([0, 1, 2, 3, 4]) == [
            0x299C867DB6C1FDD79DCEFA40E4510B9837E60EBB1CE0663DBAA525DF65250465,
            0x1148AAEF609AA338B27DAFD89BB98862D8BB2B429ACEAC47D86206154FFE053D,
            0x24FEBB87FED7462E23F6665FF9A0111F4044C38EE1672C1AC6B0637D34F24907,
            0x0EB08F6D809668A981C186BEAF6110060707059576406B248E5D9CF6E78B3D3E,
            0x07748BC6877C9B82C8B98666EE9D0626EC7F5BE4205F79EE8528EF1C4A376FC7,
        ]
        assert poseidon_hash([1, 2, 3, 4]) == (
            0x299C867DB6C1FDD79DCEFA40E4510B9837E60EBB1CE0663DBAA525DF65250465
        )

    def test_parameters_width_3(self):
        """First round constant and MDS entry match circomlib's tables"""
        _, constants, mds = _parameters(3)
        assert len(constants) == (FULL_ROUNDS + PARTIAL_ROUNDS[1]) * 3
        assert constants[0] == (
            0x0EE9A592BA9A9518D05986D656F40C2114C4993C11BB29938D21D47304CD8E6E
        )
        assert mds[0][0] == (
            0x109B7F411BA0E4C9B2B70CAF5C36A7B194BE7C11AD24378BFEDB68592BA8118B
        )
