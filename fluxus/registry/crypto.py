"""
Mapping registry crypto.

Client cache:
    lookup hash  = base64(SHA-256("origin:credentialId"))
    key          = PBKDF2-HMAC-SHA256("origin:credentialId", salt, 210_000) -> AES-256
    record       = AES-GCM(address) with a fresh 96-bit IV, tag appended to ciphertext

Server store:
    lookup hash  = base64url(HMAC-SHA256(secret, "origin:credentialId"))
    key          = SHA-256(secret)
    record       = AES-256-GCM(address) with ciphertext, IV and tag kept apart

Never log the inputs or outputs of these helpers.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


NONCE_SIZE = 12  # 96-bit IV
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
SALT_SIZE = 16
PBKDF2_ITERATIONS = 210_000


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"), validate=True)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + padding).encode("ascii"))


def credential_material(origin: str, credential_id: str) -> bytes:
    return f"{origin}:{credential_id}".encode("utf-8")


# ---------------------------------------------------------------------------
# Client cache
# ---------------------------------------------------------------------------

def generate_salt() -> str:
    return b64encode(os.urandom(SALT_SIZE))


def hash_credential_id(origin: str, credential_id: str) -> str:
    return b64encode(hashlib.sha256(credential_material(origin, credential_id)).digest())


def derive_credential_key(
    origin: str,
    credential_id: str,
    salt: str,
    iterations: int = PBKDF2_ITERATIONS,
) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=b64decode(salt),
        iterations=iterations,
    )
    return kdf.derive(credential_material(origin, credential_id))


def encrypt_with_key(address: str, key: bytes) -> tuple[str, str]:
    """Returns (ciphertext_b64, iv_b64); ciphertext carries the GCM tag."""
    iv = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(iv, address.encode("utf-8"), None)
    return b64encode(ciphertext), b64encode(iv)


def decrypt_with_key(ciphertext: str, iv: str, key: bytes) -> str:
    """Raises cryptography.exceptions.InvalidTag or ValueError on failure."""
    plaintext = AESGCM(key).decrypt(b64decode(iv), b64decode(ciphertext), None)
    return plaintext.decode("utf-8")


# ---------------------------------------------------------------------------
# Server store
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SealedAddress:
    address_ciphertext: str
    iv: str
    auth_tag: str


def server_encryption_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def hmac_credential_hash(origin: str, credential_id: str, secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        credential_material(origin, credential_id),
        hashlib.sha256,
    ).digest()
    return b64url_encode(digest)


def seal_address(address: str, secret: str) -> SealedAddress:
    iv = os.urandom(NONCE_SIZE)
    sealed = AESGCM(server_encryption_key(secret)).encrypt(iv, address.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return SealedAddress(
        address_ciphertext=b64url_encode(ciphertext),
        iv=b64url_encode(iv),
        auth_tag=b64url_encode(tag),
    )


def open_address(sealed: SealedAddress, secret: str) -> str:
    """Raises cryptography.exceptions.InvalidTag or ValueError on failure."""
    ciphertext = b64url_decode(sealed.address_ciphertext) + b64url_decode(sealed.auth_tag)
    plaintext = AESGCM(server_encryption_key(secret)).decrypt(
        b64url_decode(sealed.iv), ciphertext, None
    )
    return plaintext.decode("utf-8")
