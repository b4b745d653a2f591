"""
Encrypted note channel

Out-of-band note discovery: the sender seals the full note plaintext to the
recipient's shielded public key and publishes it next to the commitment.
Recipients scan every payload; a payload that is not theirs fails
authentication and is skipped silently. A payload that authenticates but
names an SPL tokenId missing from the local registry is still returned,
with `asset` unset, so the recipient can register the mint and claim it.

Wire format (bit-exact):

    ephemeralPubkey (33, compressed secp256k1) | nonce (12) | ciphertext

Compact plaintext (193 bytes, integers big-endian):

    amount | tokenId | secret | blinding | rho | commitment | assetTag (1)
"""

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .assets import AssetId, AssetKind, AssetRegistry
from .keys import (
    COMPRESSED_PUBKEY_SIZE,
    compressed_public_key,
    ecdh_private_key,
    load_public_key,
)
from .note import Note, compute_commitment
from .utils import bytes_to_field, field_to_bytes, field_to_hex

logger = logging.getLogger(__name__)

ENCRYPTION_INFO = b"shieldpool/encrypt/v1"
NONCE_SIZE = 12
TAG_SIZE = 16
FIELD_SIZE = 32
PLAINTEXT_SIZE = 6 * FIELD_SIZE + 1
MEMO_PREFIX = "shieldpool:"



@dataclass(frozen=True)
class NotePayload:
    """
    Decrypted note contents

    `asset` is None for an SPL note whose tokenId is not in the registry
    that opened it. Such a payload is authentic but cannot become a `Note`
    until its mint is registered (see `resolve`).
    """

    amount: int
    token_id: int
    secret: int
    blinding: int
    rho: int
    commitment: int
    asset: Optional[AssetId]

    @classmethod
    def from_note(cls, note: Note) -> "NotePayload":
        return cls(
            amount=note.amount,
            token_id=note.token_id,
            secret=note.secret,
            blinding=note.blinding,
            rho=note.rho,
            commitment=note.commitment,
            asset=note.asset,
        )

    @property
    def resolved(self) -> bool:
        return self.asset is not None

    @property
    def tag(self) -> int:
        return self.asset.tag if self.asset is not None else int(AssetKind.SPL)

    def resolve(self, registry: AssetRegistry) -> "NotePayload":
        """Fill in the asset from `registry`; unchanged if still unknown"""
        if self.asset is not None:
            return self
        asset = registry.resolve(self.token_id, self.tag)
        return self if asset is None else replace(self, asset=asset)

    def to_note(self) -> Note:
        if self.asset is None:
            raise ValueError(
                f"Asset of tokenId {field_to_hex(self.token_id)} is not registered"
            )
        return Note(
            secret=self.secret,
            amount=self.amount,
            asset=self.asset,
            blinding=self.blinding,
            rho=self.rho,
        )

    def to_bytes(self) -> bytes:
        return b"".join(
            [
                field_to_bytes(self.amount),
                field_to_bytes(self.token_id),
                field_to_bytes(self.secret),
                field_to_bytes(self.blinding),
                field_to_bytes(self.rho),
                field_to_bytes(self.commitment),
                bytes([self.tag]),
            ]
        )

    @classmethod
    def from_bytes(cls, data: bytes, registry: AssetRegistry) -> "NotePayload":
        """
        Parse the compact plaintext

        Raises:
            ValueError: On bad length, non-canonical fields, an unknown asset
                tag, a tokenId that disagrees with its tag, or a commitment
                that does not recompute
        """
        if len(data) != PLAINTEXT_SIZE:
            raise ValueError(f"Plaintext must be {PLAINTEXT_SIZE} bytes, got {len(data)}")
        fields = [
            bytes_to_field(data[i * FIELD_SIZE:(i + 1) * FIELD_SIZE]) for i in range(6)
        ]
        amount, token_id, secret, blinding, rho, commitment = fields
        tag = data[-1]
        if tag not in (AssetKind.NATIVE, AssetKind.SPL):
            raise ValueError(f"Unknown asset tag {tag}")

        asset = registry.resolve(token_id)
        if asset is not None and asset.tag != tag:
            raise ValueError(f"tokenId does not match asset tag {tag}")
        # native is always registered, so only SPL notes can stay unresolved
        if asset is None and tag != AssetKind.SPL:
            raise ValueError(f"Unknown tokenId for asset tag {tag}")
        if compute_commitment(secret, amount, token_id, blinding) != commitment:
            raise ValueError("Commitment does not match plaintext")

        return cls(
            amount=amount,
            token_id=token_id,
            secret=secret,
            blinding=blinding,
            rho=rho,
            commitment=commitment,
            asset=asset,
        )


@dataclass(frozen=True)
class EncryptedNotePayload:
    ephemeral_pubkey: bytes
    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.ephemeral_pubkey + self.nonce + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedNotePayload":
        header = COMPRESSED_PUBKEY_SIZE + NONCE_SIZE
        if len(data) <= header + TAG_SIZE:
            raise ValueError("Encrypted payload too short")
        return cls(
            ephemeral_pubkey=data[:COMPRESSED_PUBKEY_SIZE],
            nonce=data[COMPRESSED_PUBKEY_SIZE:header],
            ciphertext=data[header:],
        )

    def to_memo(self) -> str:
        """Text form carried in a relayer memo"""
        return MEMO_PREFIX + "|".join(
            [self.ephemeral_pubkey.hex(), self.nonce.hex(), self.ciphertext.hex()]
        )

    @classmethod
    def from_memo(cls, memo: str) -> "EncryptedNotePayload":
        if not memo.startswith(MEMO_PREFIX):
            raise ValueError("Not a shieldpool memo")
        parts = memo[len(MEMO_PREFIX):].split("|")
        if len(parts) != 3:
            raise ValueError("Memo must have three parts")
        ephemeral_pubkey, nonce, ciphertext = (bytes.fromhex(p) for p in parts)
        return cls.from_bytes(ephemeral_pubkey + nonce + ciphertext)


def _symmetric_key(private_key: ec.EllipticCurvePrivateKey, peer: ec.EllipticCurvePublicKey) -> bytes:
    shared = private_key.exchange(ec.ECDH(), peer)
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=ENCRYPTION_INFO,
    ).derive(shared)


def encrypt_for(recipient_pubkey: bytes, payload: NotePayload) -> EncryptedNotePayload:
    """
    Seal a note payload to a recipient

    Args:
        recipient_pubkey: 33-byte compressed secp256k1 key (the shielded
            address body)
        payload: Note contents

    Returns:
        EncryptedNotePayload with a fresh ephemeral key and nonce

    Raises:
        ValueError: If the recipient key is not a valid point
    """
    peer = load_public_key(recipient_pubkey)
    ephemeral = ec.generate_private_key(ec.SECP256K1())
    key = _symmetric_key(ephemeral, peer)
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = ChaCha20Poly1305(key).encrypt(nonce, payload.to_bytes(), None)
    return EncryptedNotePayload(
        ephemeral_pubkey=compressed_public_key(ephemeral),
        nonce=nonce,
        ciphertext=ciphertext,
    )


def decrypt_with(
    private_key: bytes,
    payload: EncryptedNotePayload,
    registry: Optional[AssetRegistry] = None,
) -> Optional[NotePayload]:
    """
    Try to open a payload

    Never raises for payloads that are not ours or are malformed: a scanner
    feeds this every payload on the ledger.

    Args:
        private_key: 32-byte ECDH secret (`ShieldedKeys.ecdh_private`)
        payload: Candidate payload
        registry: Known assets (defaults to native plus common tokens)

    Returns:
        NotePayload, or None if the payload is not for this key. An SPL
        payload whose tokenId is not in `registry` comes back with
        `asset=None`.
    """
    if registry is None:
        registry = AssetRegistry.with_common_tokens()
    if len(payload.nonce) != NONCE_SIZE:
        logger.debug("Skipping payload with bad nonce length")
        return None
    try:
        peer = load_public_key(payload.ephemeral_pubkey)
        key = _symmetric_key(ecdh_private_key(private_key), peer)
        plaintext = ChaCha20Poly1305(key).decrypt(payload.nonce, payload.ciphertext, None)
    except InvalidTag:
        return None
    except ValueError as e:
        logger.debug(f"Skipping malformed payload: {e}")
        return None

    try:
        opened = NotePayload.from_bytes(plaintext, registry)
    except ValueError as e:
        logger.warning(f"Discarding authenticated payload: {e}")
        return None
    if not opened.resolved:
        logger.warning(
            "Received a note for unregistered SPL tokenId %s, register its mint to spend it",
            field_to_hex(opened.token_id)[:18],
        )
    return opened
