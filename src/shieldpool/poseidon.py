"""
Poseidon hash over the BN254 scalar field

Commitments, nullifiers, asset ids and every node of the commitment tree are
hashed with this one function so that values computed here match the values
the circuits recompute in-field.

Instance: circomlib Poseidon. x^5 S-box, 8 full rounds, partial rounds per
state width as in circomlib, state initialised to [0, *inputs], output is
state[0]. Round constants and the Cauchy MDS matrix are drawn from the Grain
LFSR of the Poseidon reference parameter generator
(generate_parameters_grain.sage with field=1, sbox=0, n=254), which is where
circomlib and light-poseidon take their parameters from.
"""

from functools import lru_cache
from typing import Iterable, Iterator, Sequence

# BN254 scalar field modulus
FIELD_MODULUS = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_BITS = FIELD_MODULUS.bit_length()

ALPHA = 5
FULL_ROUNDS = 8
# Partial rounds for state widths 2..9
PARTIAL_ROUNDS = (56, 57, 56, 60, 60, 63, 64, 63)
MAX_INPUTS = len(PARTIAL_ROUNDS)

# Grain parameter encoding: prime field, x^alpha S-box
GRAIN_FIELD = 1
GRAIN_SBOX = 0
GRAIN_WARMUP = 160


def _grain(width: int, partial_rounds: int) -> Iterator[int]:
    """Self-shrinking Grain LFSR bit stream seeded with the instance parameters"""
    register: list[int] = []
    for value, size in (
        (GRAIN_FIELD, 2),
        (GRAIN_SBOX, 4),
        (FIELD_BITS, 12),
        (width, 12),
        (FULL_ROUNDS, 10),
        (partial_rounds, 10),
    ):
        register.extend(int(bit) for bit in format(value, f"0{size}b"))
    register.extend([1] * 30)

    def step() -> int:
        bit = (
            register[62] ^ register[51] ^ register[38]
            ^ register[23] ^ register[13] ^ register[0]
        )
        register.pop(0)
        register.append(bit)
        return bit

    for _ in range(GRAIN_WARMUP):
        step()
    while True:
        if step():
            yield step()
        else:
            step()


def _take(bits: Iterator[int], count: int) -> int:
    value = 0
    for _ in range(count):
        value = (value << 1) | next(bits)
    return value


def _round_constants(bits: Iterator[int], count: int) -> tuple[int, ...]:
    constants = []
    while len(constants) < count:
        value = _take(bits, FIELD_BITS)
        if value < FIELD_MODULUS:
            constants.append(value)
    return tuple(constants)


def _mds(bits: Iterator[int], width: int) -> tuple[tuple[int, ...], ...]:
    p = FIELD_MODULUS
    while True:
        values = [_take(bits, FIELD_BITS) % p for _ in range(2 * width)]
        if len(set(values)) != len(values):
            continue
        xs, ys = values[:width], values[width:]
        if any((x + y) % p == 0 for x in xs for y in ys):
            continue
        return tuple(
            tuple(pow(x + y, p - 2, p) for y in ys)
            for x in xs
        )


@lru_cache(maxsize=None)
def _parameters(width: int) -> tuple[int, tuple[int, ...], tuple[tuple[int, ...], ...]]:
    partial_rounds = PARTIAL_ROUNDS[width - 2]
    bits = _grain(width, partial_rounds)
    constants = _round_constants(bits, (FULL_ROUNDS + partial_rounds) * width)
    return partial_rounds, constants, _mds(bits, width)


def permute(state: Sequence[int]) -> list[int]:
    """
    Apply the Poseidon permutation to a state of width 2..9

    Args:
        state: Field elements

    Returns:
        Permuted state
    """
    width = len(state)
    if not 2 <= width <= MAX_INPUTS + 1:
        raise ValueError(f"Unsupported Poseidon state width: {width}")

    partial_rounds, constants, mds = _parameters(width)
    half = FULL_ROUNDS // 2
    p = FIELD_MODULUS
    current = list(state)

    for rnd in range(FULL_ROUNDS + partial_rounds):
        offset = rnd * width
        current = [(x + constants[offset + i]) % p for i, x in enumerate(current)]
        if rnd < half or rnd >= half + partial_rounds:
            current = [pow(x, ALPHA, p) for x in current]
        else:
            current[0] = pow(current[0], ALPHA, p)
        current = [sum(m * x for m, x in zip(row, current)) % p for row in mds]

    return current


def poseidon_hash(inputs: Iterable[int]) -> int:
    """
    Hash 1 to 8 field elements into one field element

    Args:
        inputs: Integers in [0, FIELD_MODULUS)

    Returns:
        Field element

    Raises:
        ValueError: If an input is not a canonical field element
    """
    values = list(inputs)
    if not 1 <= len(values) <= MAX_INPUTS:
        raise ValueError(
            f"Poseidon takes 1 to {MAX_INPUTS} inputs, got {len(values)}"
        )
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Poseidon input must be an int, got {type(value)}")
        if not 0 <= value < FIELD_MODULUS:
            raise ValueError("Poseidon input is not a canonical field element")

    return permute([0, *values])[0]
