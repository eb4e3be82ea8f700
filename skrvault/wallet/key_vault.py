"""
Custodial key vault.

Generates Solana key pairs and seals private keys with AES-256-GCM under a
process-wide master key. Sealed material is stored as a single base64 token:

    version (1 byte) | nonce (12 bytes) | tag (16 bytes) | ciphertext

Decryption fails closed: a tag mismatch raises IntegrityError and a malformed
token raises DecodeError. No partial plaintext is ever returned.
"""

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Tuple, Union

import base58
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from solders.keypair import Keypair

from skrvault.core.exceptions import DecodeError, IntegrityError


FORMAT_VERSION = 1
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
HEADER_SIZE = 1 + NONCE_SIZE + TAG_SIZE

# scrypt cost parameters for master key derivation
SCRYPT_N = 2 ** 15
SCRYPT_R = 8
SCRYPT_P = 1


class MasterKey:
    """256-bit wallet encryption key. Never rendered in logs or reprs."""

    __slots__ = ("_key",)

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError("Master key must be 32 bytes")
        self._key = bytes(key)

    def __repr__(self) -> str:
        return "MasterKey(<redacted>)"

    __str__ = __repr__

    def __reduce__(self):
        raise TypeError("MasterKey cannot be serialized")

    def cipher(self) -> AESGCM:
        return AESGCM(self._key)


@dataclass(frozen=True)
class EncryptedKeyMaterial:
    """Nonce, auth tag and ciphertext of one sealed private key."""

    iv: bytes
    auth_tag: bytes
    ciphertext: bytes

    def to_token(self) -> str:
        blob = bytes([FORMAT_VERSION]) + self.iv + self.auth_tag + self.ciphertext
        return base64.b64encode(blob).decode("ascii")

    @classmethod
    def from_token(cls, token: str) -> "EncryptedKeyMaterial":
        try:
            blob = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, ValueError, UnicodeEncodeError, AttributeError) as e:
            raise DecodeError("Key material is not valid base64") from e

        if len(blob) <= HEADER_SIZE:
            raise DecodeError("Key material is truncated", {"length": len(blob)})
        if blob[0] != FORMAT_VERSION:
            raise DecodeError("Unsupported key material version", {"version": blob[0]})

        iv = blob[1:1 + NONCE_SIZE]
        tag = blob[1 + NONCE_SIZE:HEADER_SIZE]
        return cls(iv=iv, auth_tag=tag, ciphertext=blob[HEADER_SIZE:])


def derive_master_key(
    secret: str,
    salt: str,
    n: int = SCRYPT_N,
    r: int = SCRYPT_R,
    p: int = SCRYPT_P
) -> MasterKey:
    """Derive the master key from the configured secret. Run once at startup."""
    if not secret:
        raise ValueError("Wallet encryption secret is empty")
    kdf = Scrypt(salt=salt.encode("utf-8"), length=KEY_SIZE, n=n, r=r, p=p)
    return MasterKey(kdf.derive(secret.encode("utf-8")))


def generate_key_pair() -> Tuple[str, bytes]:
    """Return (public address, 64-byte secret key) for a fresh wallet."""
    keypair = Keypair()
    return str(keypair.pubkey()), bytes(keypair)


def encrypt(raw_private_key: bytes, master_key: MasterKey) -> EncryptedKeyMaterial:
    """Seal a private key with a fresh random nonce."""
    nonce = os.urandom(NONCE_SIZE)
    sealed = master_key.cipher().encrypt(nonce, bytes(raw_private_key), None)
    return EncryptedKeyMaterial(
        iv=nonce,
        auth_tag=sealed[-TAG_SIZE:],
        ciphertext=sealed[:-TAG_SIZE]
    )


def decrypt(
    material: Union[EncryptedKeyMaterial, str],
    master_key: MasterKey
) -> bytes:
    """Open sealed key material, failing closed on any tampering."""
    if isinstance(material, str):
        material = EncryptedKeyMaterial.from_token(material)

    if len(material.iv) != NONCE_SIZE or len(material.auth_tag) != TAG_SIZE:
        raise DecodeError("Key material header is malformed")
    if not material.ciphertext:
        raise DecodeError("Key material has no ciphertext")

    try:
        return master_key.cipher().decrypt(
            material.iv, material.ciphertext + material.auth_tag, None
        )
    except InvalidTag as e:
        raise IntegrityError() from e


def export_portable(raw_private_key: bytes) -> str:
    """Base58 encoding accepted by common Solana wallets."""
    return base58.b58encode(bytes(raw_private_key)).decode("ascii")


def keypair_from_private_key(raw_private_key: bytes) -> Keypair:
    """Rebuild a signer from decrypted key bytes."""
    try:
        return Keypair.from_bytes(bytes(raw_private_key))
    except ValueError as e:
        raise DecodeError("Decrypted key is not a valid Solana keypair") from e


class KeyVault:
    """Binds the vault operations to one master key."""

    def __init__(self, master_key: MasterKey):
        self._master_key = master_key

    @classmethod
    def from_settings(cls, settings) -> "KeyVault":
        return cls(derive_master_key(
            settings.wallet_encryption_secret,
            settings.wallet_encryption_salt
        ))

    def generate_key_pair(self) -> Tuple[str, bytes]:
        return generate_key_pair()

    def seal(self, raw_private_key: bytes) -> str:
        """Encrypt and serialize for storage."""
        return encrypt(raw_private_key, self._master_key).to_token()

    def open(self, token: str) -> bytes:
        return decrypt(token, self._master_key)

    def open_keypair(self, token: str) -> Keypair:
        return keypair_from_private_key(self.open(token))

    def export_portable(self, raw_private_key: bytes) -> str:
        return export_portable(raw_private_key)

    def __repr__(self) -> str:
        return "KeyVault(master_key=<redacted>)"
