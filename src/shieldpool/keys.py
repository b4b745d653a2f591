"""
Shielded key hierarchy

One 32-byte seed yields four independent key materials, each through
HKDF-SHA256 with its own info label:

    seed
      ├── spend key       shieldpool/spend/v1
      ├── view key        shieldpool/view/v1
      ├── nullifier key   shieldpool/nullifier/v1
      └── ECDH keypair    shieldpool/shielded/v1  (secp256k1)

The compressed ECDH public key is the shareable shielded address.
"""

from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from solders.keypair import Keypair

from .errors import InvalidAddress
from .poseidon import FIELD_MODULUS

SEED_SIZE = 32
COMPRESSED_PUBKEY_SIZE = 33

SPEND_KEY_INFO = b"shieldpool/spend/v1"
VIEW_KEY_INFO = b"shieldpool/view/v1"
NULLIFIER_KEY_INFO = b"shieldpool/nullifier/v1"
SHIELDED_KEY_INFO = b"shieldpool/shielded/v1"

SHIELDED_ADDRESS_PREFIX = "shpool1"

# secp256k1 group order
SECP256K1_ORDER = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16
)


def _hkdf(seed: bytes, info: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=info,
    ).derive(seed)


def ecdh_private_key(secret: bytes) -> ec.EllipticCurvePrivateKey:
    """Load 32 secret bytes as a secp256k1 private key"""
    if len(secret) != 32:
        raise ValueError(f"ECDH secret must be 32 bytes, got {len(secret)}")
    scalar = int.from_bytes(secret, "big") % (SECP256K1_ORDER - 1) + 1
    return ec.derive_private_key(scalar, ec.SECP256K1())


def compressed_public_key(private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """33-byte SEC1 compressed point"""
    return private_key.public_key().public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.CompressedPoint,
    )


def load_public_key(data: bytes) -> ec.EllipticCurvePublicKey:
    """
    Parse a compressed secp256k1 public key

    Raises:
        ValueError: If the bytes are not a valid compressed point
    """
    if len(data) != COMPRESSED_PUBKEY_SIZE or data[0] not in (0x02, 0x03):
        raise ValueError("Expected a 33-byte compressed secp256k1 point")
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), data)


@dataclass(frozen=True)
class ViewingKeys:
    """Key package that can discover and read notes but not spend them"""

    view_key: bytes = field(repr=False)
    ecdh_private: bytes = field(repr=False)
    ecdh_public: bytes
    shielded_address: str


@dataclass(frozen=True)
class ShieldedKeys:
    """Full key hierarchy of one wallet"""

    spend_key: bytes = field(repr=False)
    view_key: bytes = field(repr=False)
    nullifier_key: bytes = field(repr=False)
    ecdh_private: bytes = field(repr=False)
    ecdh_public: bytes
    shielded_address: str

    def viewing_keys(self) -> ViewingKeys:
        return ViewingKeys(
            view_key=self.view_key,
            ecdh_private=self.ecdh_private,
            ecdh_public=self.ecdh_public,
            shielded_address=self.shielded_address,
        )


def derive_keys(seed: bytes) -> ShieldedKeys:
    """
    Derive the shielded key hierarchy from a master seed

    Args:
        seed: 32-byte master seed

    Returns:
        ShieldedKeys

    Raises:
        ValueError: If the seed is not 32 bytes
    """
    if not isinstance(seed, (bytes, bytearray)) or len(seed) != SEED_SIZE:
        raise ValueError(f"Seed must be exactly {SEED_SIZE} bytes")
    seed = bytes(seed)

    ecdh_secret = _hkdf(seed, SHIELDED_KEY_INFO)
    ecdh_public = compressed_public_key(ecdh_private_key(ecdh_secret))

    return ShieldedKeys(
        spend_key=_hkdf(seed, SPEND_KEY_INFO),
        view_key=_hkdf(seed, VIEW_KEY_INFO),
        nullifier_key=_hkdf(seed, NULLIFIER_KEY_INFO),
        ecdh_private=ecdh_secret,
        ecdh_public=ecdh_public,
        shielded_address=encode_shielded_address(ecdh_public),
    )


def keys_from_keypair(keypair: Keypair) -> ShieldedKeys:
    """Derive shielded keys from a Solana keypair's 32-byte secret seed"""
    return derive_keys(bytes(keypair.secret()))


def encode_shielded_address(public_key: bytes) -> str:
    """Prefix + hex of the compressed ECDH public key"""
    if len(public_key) != COMPRESSED_PUBKEY_SIZE:
        raise ValueError("Shielded public key must be 33 bytes")
    return SHIELDED_ADDRESS_PREFIX + public_key.hex()


def decode_shielded_address(address: str) -> bytes:
    """
    Decode a shielded address back to the compressed public key

    Raises:
        InvalidAddress: On wrong prefix, bad hex, or a point not on the curve
    """
    if not address.startswith(SHIELDED_ADDRESS_PREFIX):
        raise InvalidAddress("Invalid shielded address format")
    try:
        public_key = bytes.fromhex(address[len(SHIELDED_ADDRESS_PREFIX):])
        load_public_key(public_key)
    except ValueError as e:
        raise InvalidAddress(f"Invalid shielded address: {e}") from e
    return public_key


def is_valid_shielded_address(address: str) -> bool:
    try:
        decode_shielded_address(address)
    except InvalidAddress:
        return False
    return True


def key_to_field(key: bytes) -> int:
    """Big-endian key bytes reduced into the field, for circuit inputs"""
    return int.from_bytes(key, "big") % FIELD_MODULUS
