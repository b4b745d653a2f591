"""
Notes, commitments and nullifiers

    commitment = H(secret, amount, tokenId, blinding)
    nullifier  = H(secret, rho)

The two preimages are disjoint, so a published nullifier cannot be linked to
the commitment it spends without knowing `secret`.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from .assets import AssetId, asset_to_field
from .errors import InvalidAmount
from .poseidon import FIELD_MODULUS, poseidon_hash
from .utils import random_field_element


def validate_amount(amount: Any) -> int:
    """
    Check that an amount can be committed to

    Raises:
        InvalidAmount: If amount is not an int with 0 < amount < FIELD_MODULUS
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"Amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount("Amount must be positive")
    if amount >= FIELD_MODULUS:
        raise InvalidAmount("Amount must be below the field modulus")
    return amount


def _check_field(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if not 0 <= value < FIELD_MODULUS:
        raise ValueError(f"{name} is not a canonical field element")


def compute_commitment(secret: int, amount: int, token_id: int, blinding: int) -> int:
    return poseidon_hash([secret, amount, token_id, blinding])


def compute_nullifier(secret: int, rho: int) -> int:
    return poseidon_hash([secret, rho])


@dataclass(frozen=True)
class Note:
    """A shielded note. Plaintext belongs to whoever holds `secret`."""

    secret: int = field(repr=False)
    amount: int
    asset: AssetId
    blinding: int = field(repr=False)
    rho: int = field(repr=False)
    commitment: int = field(init=False, repr=False)
    nullifier: int = field(init=False, repr=False)

    def __post_init__(self) -> None:
        validate_amount(self.amount)
        for name in ("secret", "blinding", "rho"):
            _check_field(name, getattr(self, name))
        if not isinstance(self.asset, AssetId):
            raise ValueError("asset must be an AssetId")
        object.__setattr__(
            self,
            "commitment",
            compute_commitment(self.secret, self.amount, self.token_id, self.blinding),
        )
        object.__setattr__(self, "nullifier", compute_nullifier(self.secret, self.rho))

    @property
    def token_id(self) -> int:
        return asset_to_field(self.asset)

    def to_dict(self) -> dict[str, Any]:
        """Full plaintext, for local persistence only"""
        return {
            "secret": str(self.secret),
            "amount": str(self.amount),
            "asset": {"kind": self.asset.tag, "mint": self.asset.mint},
            "blinding": str(self.blinding),
            "rho": str(self.rho),
            "commitment": str(self.commitment),
            "nullifier": str(self.nullifier),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        asset_data = data["asset"]
        asset = (
            AssetId.native()
            if asset_data["kind"] == AssetId.native().tag
            else AssetId.spl(asset_data["mint"])
        )
        note = cls(
            secret=int(data["secret"]),
            amount=int(data["amount"]),
            asset=asset,
            blinding=int(data["blinding"]),
            rho=int(data["rho"]),
        )
        if "commitment" in data and int(data["commitment"]) != note.commitment:
            raise ValueError("Stored commitment does not match note contents")
        return note


def create_note(
    secret: int,
    amount: int,
    asset: Union[AssetId, str],
    blinding: int,
    rho: int,
) -> Note:
    """
    Build a note from explicit values

    Args:
        secret: Owner secret (field element)
        amount: Positive amount below the field modulus
        asset: AssetId, "SOL" or a mint address
        blinding: Commitment blinding (field element)
        rho: Nullifier randomness (field element)

    Returns:
        Note with commitment and nullifier derived
    """
    return Note(
        secret=secret,
        amount=amount,
        asset=AssetId.from_token(asset),
        blinding=blinding,
        rho=rho,
    )


def create_note_from_secrets(amount: int, asset: Union[AssetId, str]) -> Note:
    """Build a note with a fresh secret, blinding and rho"""
    return create_note(
        secret=random_field_element(),
        amount=amount,
        asset=asset,
        blinding=random_field_element(),
        rho=random_field_element(),
    )
