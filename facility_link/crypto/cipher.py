"""
Symmetric cipher for telemetry payloads.

AES-GCM keyed with the derived session key. The 16-byte IV travels in the
packet header; the GCM tag makes decryption fail loudly on a wrong key,
a wrong IV, or tampered ciphertext.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import DecryptError, DecryptReason

IV_SIZE = 16


def generate_iv() -> bytes:
    """Fresh random IV, one per message."""
    return os.urandom(IV_SIZE)


def encrypt(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    """
    Encrypt with AES-GCM.

    Args:
        plaintext: Serialized record
        key: 16 or 32-byte session key
        iv: IV_SIZE-byte initialization vector

    Returns:
        ciphertext + 16-byte tag
    """
    if len(iv) != IV_SIZE:
        raise ValueError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    return AESGCM(key).encrypt(iv, plaintext, associated_data=None)


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """Decrypt with AES-GCM. Raises DecryptError(AUTHENTICATION) on any mismatch."""
    if len(iv) != IV_SIZE:
        raise DecryptError(DecryptReason.AUTHENTICATION, f"IV must be {IV_SIZE} bytes, got {len(iv)}")
    try:
        return AESGCM(key).decrypt(iv, ciphertext, associated_data=None)
    except InvalidTag:
        raise DecryptError(
            DecryptReason.AUTHENTICATION,
            "Authentication failed: wrong key, wrong IV or corrupt ciphertext"
        ) from None
    except ValueError as e:
        raise DecryptError(DecryptReason.AUTHENTICATION, str(e)) from None
