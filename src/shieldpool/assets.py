"""
Asset identity for multi-asset shielded pools

An asset is resolved once, when a note is created, into a closed
`AssetId` variant and carried with the note from then on. `asset_to_field`
is the single mapping from an asset to the field element the circuits see
as `tokenId`; note commitments, the encrypted note wire format and every
witness go through it.
"""

from dataclasses import dataclass
from enum import IntEnum
from functools import lru_cache
from typing import Iterable, Optional, Union

from solders.pubkey import Pubkey

from .poseidon import poseidon_hash

# tokenId of the native asset
NATIVE_TOKEN_ID = 1


class AssetKind(IntEnum):
    """Asset variant. The value is the asset-type tag on the wire."""

    NATIVE = 0
    SPL = 1


@dataclass(frozen=True)
class AssetId:
    """Immutable asset identity"""

    kind: AssetKind
    mint: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is AssetKind.NATIVE:
            if self.mint is not None:
                raise ValueError("Native asset has no mint")
        elif self.kind is AssetKind.SPL:
            if self.mint is None:
                raise ValueError("SPL asset requires a mint address")
            # raises on malformed addresses
            Pubkey.from_string(self.mint)
        else:
            raise ValueError(f"Unknown asset kind: {self.kind!r}")

    @classmethod
    def native(cls) -> "AssetId":
        return cls(AssetKind.NATIVE)

    @classmethod
    def spl(cls, mint: Union[str, Pubkey]) -> "AssetId":
        return cls(AssetKind.SPL, str(mint))

    @classmethod
    def from_token(cls, token: Union[str, Pubkey, "AssetId"]) -> "AssetId":
        """
        Resolve a user-facing token identifier.

        Args:
            token: "SOL" (any case), a mint address, or an AssetId

        Returns:
            AssetId
        """
        if isinstance(token, AssetId):
            return token
        if isinstance(token, Pubkey):
            return cls.spl(token)
        if isinstance(token, str):
            if token.upper() == "SOL":
                return cls.native()
            return cls.spl(token)
        raise ValueError(f"Invalid token type: {type(token)}")

    @property
    def tag(self) -> int:
        return int(self.kind)

    @property
    def is_native(self) -> bool:
        return self.kind is AssetKind.NATIVE

    def to_field(self) -> int:
        return asset_to_field(self)

    def __str__(self) -> str:
        return "SOL" if self.is_native else str(self.mint)


@lru_cache(maxsize=1024)
def asset_to_field(asset: AssetId) -> int:
    """
    Canonical tokenId of an asset.

    Native SOL maps to the constant 1. An SPL mint maps to
    H(high 128 bits, low 128 bits) of its 32 address bytes.

    Args:
        asset: The asset

    Returns:
        Field element used as tokenId
    """
    if asset.kind is AssetKind.NATIVE:
        return NATIVE_TOKEN_ID
    raw = bytes(Pubkey.from_string(asset.mint))
    return poseidon_hash(
        [int.from_bytes(raw[:16], "big"), int.from_bytes(raw[16:], "big")]
    )


# Common token mint addresses for convenience
COMMON_TOKENS = {
    "USDC": "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
    "USDT": "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB",
    "SOL": "SOL",  # Native SOL
}


def get_token_mint(token_symbol: str) -> str:
    """
    Get the mint address for a common token symbol.

    Args:
        token_symbol: Token symbol (e.g., "USDC", "USDT", "SOL")

    Returns:
        Token mint address or "SOL" for native SOL

    Raises:
        ValueError: If token symbol is not recognized
    """
    symbol = token_symbol.upper()
    if symbol in COMMON_TOKENS:
        return COMMON_TOKENS[symbol]
    raise ValueError(
        f"Unknown token symbol: {token_symbol}. "
        f"Provide the full mint address or use one of: {list(COMMON_TOKENS.keys())}"
    )


class AssetRegistry:
    """
    Known assets, indexed by tokenId.

    A decrypted note carries only its tokenId and asset tag; the registry
    turns that back into an AssetId. Payloads whose tokenId is unknown or
    disagrees with the tag are not accepted as notes.
    """

    def __init__(self, assets: Optional[Iterable[AssetId]] = None):
        self._by_token_id: dict[int, AssetId] = {}
        self.register(AssetId.native())
        for asset in assets or ():
            self.register(asset)

    @classmethod
    def with_common_tokens(cls) -> "AssetRegistry":
        return cls(AssetId.from_token(mint) for mint in COMMON_TOKENS.values())

    def register(self, asset: AssetId) -> int:
        token_id = asset_to_field(asset)
        self._by_token_id[token_id] = asset
        return token_id

    def resolve(self, token_id: int, tag: Optional[int] = None) -> Optional[AssetId]:
        """
        Look up an asset by tokenId.

        Args:
            token_id: Field element from a note
            tag: Optional wire asset-type tag that must agree with the asset

        Returns:
            The asset, or None if unknown or the tag disagrees
        """
        asset = self._by_token_id.get(token_id)
        if asset is None:
            return None
        if tag is not None and asset.tag != tag:
            return None
        return asset

    def __contains__(self, asset: AssetId) -> bool:
        return asset_to_field(asset) in self._by_token_id

    def __len__(self) -> int:
        return len(self._by_token_id)
