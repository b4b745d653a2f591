"""Utility functions"""

import secrets
from typing import Union

from solders.pubkey import Pubkey

from .poseidon import FIELD_MODULUS


def random_field_element() -> int:
    """Uniformly random non-zero field element"""
    return secrets.randbelow(FIELD_MODULUS - 1) + 1


def field_to_bytes(value: int) -> bytes:
    """Field element as 32 big-endian bytes"""
    if not 0 <= value < FIELD_MODULUS:
        raise ValueError("Value is not a canonical field element")
    return value.to_bytes(32, "big")


def bytes_to_field(data: bytes) -> int:
    """
    Parse 32 big-endian bytes as a canonical field element

    Args:
        data: 32 bytes

    Returns:
        Field element

    Raises:
        ValueError: On wrong length or a value >= modulus
    """
    if len(data) != 32:
        raise ValueError(f"Expected 32 bytes, got {len(data)}")
    value = int.from_bytes(data, "big")
    if value >= FIELD_MODULUS:
        raise ValueError("Non-canonical field element")
    return value


def field_to_hex(value: int) -> str:
    """Field element as 0x-prefixed 64-char hex"""
    return "0x" + field_to_bytes(value).hex()


def validate_solana_address(address: str) -> bool:
    """
    Validate Solana address

    Args:
        address: Base58-encoded Solana address

    Returns:
        True if valid
    """
    import base58

    try:
        decoded = base58.b58decode(address)
    except ValueError:
        return False
    return len(decoded) == 32


def pubkey_to_field(pubkey: Union[str, Pubkey]) -> int:
    """
    Map a transparent Solana address to the field (receiver signal of Withdraw)

    Args:
        pubkey: Pubkey or base58 string

    Returns:
        Big-endian integer of the 32 key bytes reduced mod the field modulus
    """
    if isinstance(pubkey, str):
        pubkey = Pubkey.from_string(pubkey)
    return int.from_bytes(bytes(pubkey), "big") % FIELD_MODULUS
