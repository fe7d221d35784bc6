"""
Facility Link cryptography: long-lived identities, ephemeral ECDH sessions
and the AES-GCM payload cipher.
"""

from .identity import (
    CURVES,
    curve_for_bits,
    load_private_key,
    load_public_key,
    generate_identity,
    public_key_fingerprint,
)
from .session import (
    SessionPolicy,
    SessionManager,
    EphemeralSession,
    derive_sender_session,
    derive_receiver_session,
    serialize_public_key,
    deserialize_public_key,
    DIGESTS,
)
from .cipher import IV_SIZE, generate_iv, encrypt, decrypt

__all__ = [
    # Identity
    'CURVES',
    'curve_for_bits',
    'load_private_key',
    'load_public_key',
    'generate_identity',
    'public_key_fingerprint',
    # Session
    'SessionPolicy',
    'SessionManager',
    'EphemeralSession',
    'derive_sender_session',
    'derive_receiver_session',
    'serialize_public_key',
    'deserialize_public_key',
    'DIGESTS',
    # Cipher
    'IV_SIZE',
    'generate_iv',
    'encrypt',
    'decrypt',
]
