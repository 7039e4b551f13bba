"""
Password-based encryption for the sensitive part of a backup.

Key Derivation:
    PBKDF2-HMAC-SHA256 turns the backup password and a fresh 256-bit salt
    into a 256-bit key. The same password and salt always give the same key.

Cipher:
    AES-256-GCM with a fresh 96-bit nonce per encryption. GCM appends an
    authentication tag, so decrypting with a key derived from the wrong
    password, or decrypting altered ciphertext, fails instead of returning
    garbage. The algorithm id is bound as associated data.

Salts and nonces are not secret and travel in the document's cleartext
encryption info.
"""

from __future__ import annotations

import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from hubvault.backup.errors import DecryptionError
from hubvault.config.settings import DEFAULT_KDF_ITERATIONS

ALGORITHM_ID = "AES-256-GCM/PBKDF2-SHA256"

KEY_LENGTH = 32  # 256 bits
SALT_LENGTH = 32  # 256 bits
IV_LENGTH = 12  # 96 bits, the GCM standard nonce size


def generate_salt() -> bytes:
    """Return a fresh random salt. Never reuse one across documents."""
    return secrets.token_bytes(SALT_LENGTH)


def generate_iv() -> bytes:
    """Return a fresh random nonce for one encryption."""
    return secrets.token_bytes(IV_LENGTH)


def derive_key(
    password: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS
) -> bytes:
    """
    Derive a symmetric key from a password and salt.

    Args:
        password: The backup password.
        salt: Random salt stored with the document.
        iterations: PBKDF2 iteration count, stored with the document.

    Returns:
        A 32-byte key.
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt(
    key: bytes,
    iv: bytes,
    plaintext: bytes,
    associated_data: bytes | None = ALGORITHM_ID.encode(),
) -> bytes:
    """Encrypt ``plaintext``; the result carries the authentication tag."""
    return AESGCM(key).encrypt(iv, plaintext, associated_data)


def decrypt(
    key: bytes,
    iv: bytes,
    ciphertext: bytes,
    associated_data: bytes | None = ALGORITHM_ID.encode(),
) -> bytes:
    """
    Decrypt and authenticate ``ciphertext``.

    Raises:
        DecryptionError: If the key is wrong or the data was tampered with.
    """
    if len(iv) != IV_LENGTH:
        raise DecryptionError(f"Invalid IV length: {len(iv)} bytes")
    try:
        return AESGCM(key).decrypt(iv, ciphertext, associated_data)
    except InvalidTag as e:
        raise DecryptionError(
            "Could not decrypt backup: wrong password or corrupted data"
        ) from e
