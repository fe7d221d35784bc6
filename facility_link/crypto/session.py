"""
Session Key Derivation

Ephemeral ECDH handshake shared by both ends of the link:

    Sender:   K = digest(ECDH(ephemeral_private, receiver_public))
    Receiver: K = digest(ECDH(receiver_private, ephemeral_public))

The sender embeds the ephemeral public key in every packet, so the receiver
reproduces K with no round-trip. The ephemeral private key and the raw shared
secret are dropped as soon as K exists.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..errors import KeyAgreementError
from .identity import CURVES

logger = logging.getLogger(__name__)

DIGESTS = {
    'md5': hashes.MD5,  # 16-byte key, AES-128
    'sha256': hashes.SHA256,  # 32-byte key, AES-256
}
DEFAULT_DIGEST = 'md5'


class SessionPolicy(Enum):
    """How often the sender generates fresh ephemeral material."""
    PER_PROCESS = "per-process"  # once at startup
    PER_TICK = "per-tick"  # at the start of every send-loop tick


@dataclass(frozen=True)
class EphemeralSession:
    """Sender-side result of one handshake derivation."""
    key: bytes
    public_key: bytes  # DER SubjectPublicKeyInfo, goes on the wire
    curve_bits: int
    created_at: float = field(default_factory=time.time)

    @property
    def fingerprint(self) -> str:
        return _digest_bytes(self.public_key, 'sha256').hex()[:16]


def _digest_bytes(data: bytes, algorithm: str) -> bytes:
    try:
        h = hashes.Hash(DIGESTS[algorithm]())
    except KeyError:
        raise KeyAgreementError(f"{algorithm}: unsupported digest (use md5 or sha256)") from None
    h.update(data)
    return h.finalize()


def derive_key(shared_secret: bytes, digest: str = DEFAULT_DIGEST) -> bytes:
    """Symmetric key material from an ECDH shared secret."""
    return _digest_bytes(shared_secret, digest)


def serialize_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )


def deserialize_public_key(blob: bytes) -> ec.EllipticCurvePublicKey:
    """Rebuild an EC public key from its wire form. Raises KeyAgreementError."""
    try:
        key = serialization.load_der_public_key(blob)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyAgreementError(f"Unable to rebuild session public key: {e}") from None
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise KeyAgreementError(f"Session public key is {type(key).__name__}, not an EC key")
    return key


def _exchange(private_key, public_key) -> bytes:
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise KeyAgreementError(f"Remote key is {type(public_key).__name__}, not an EC public key")
    if not isinstance(private_key, ec.EllipticCurvePrivateKey):
        raise KeyAgreementError(f"Local key is {type(private_key).__name__}, not an EC private key")
    if private_key.curve.name != public_key.curve.name:
        raise KeyAgreementError(
            f"Curve mismatch: local {private_key.curve.name}, remote {public_key.curve.name}. "
            "This could be due to specifying an invalid key length."
        )
    try:
        return private_key.exchange(ec.ECDH(), public_key)
    except ValueError as e:
        raise KeyAgreementError(f"ECDH failed: {e}") from None


def derive_sender_session(
    local_private: Optional[ec.EllipticCurvePrivateKey],
    remote_public: ec.EllipticCurvePublicKey,
    curve_bits: int,
    digest: str = DEFAULT_DIGEST,
) -> EphemeralSession:
    """
    Run the sender half of the handshake.

    Args:
        local_private: Sender's long-lived key. Not part of the derivation;
            the ephemeral pair is generated independently of it.
        remote_public: Receiver's long-lived public key
        curve_bits: 256 or 384, must match the receiver's curve
        digest: 'md5' or 'sha256'

    Raises:
        KeyAgreementError: unsupported strength, curve mismatch or bad key object
    """
    if curve_bits not in CURVES:
        raise KeyAgreementError(f"{curve_bits}: key size must be either 256 or 384")

    ephemeral_private = ec.generate_private_key(CURVES[curve_bits]())
    try:
        shared_secret = _exchange(ephemeral_private, remote_public)
        key = derive_key(shared_secret, digest)
        public_blob = serialize_public_key(ephemeral_private.public_key())
    finally:
        del ephemeral_private

    session = EphemeralSession(key=key, public_key=public_blob, curve_bits=curve_bits)
    logger.debug(f"Derived sender session {session.fingerprint} ({curve_bits}-bit, {digest})")
    return session


def derive_receiver_session(
    local_private: ec.EllipticCurvePrivateKey,
    remote_ephemeral_public: Union[bytes, ec.EllipticCurvePublicKey],
    digest: str = DEFAULT_DIGEST,
) -> bytes:
    """
    Run the receiver half of the handshake.

    Args:
        local_private: Receiver's long-lived private key
        remote_ephemeral_public: Ephemeral key from the packet header,
            either DER bytes or a key object

    Returns:
        Symmetric key identical to the sender's
    """
    if isinstance(remote_ephemeral_public, (bytes, bytearray)):
        remote_ephemeral_public = deserialize_public_key(bytes(remote_ephemeral_public))
    return derive_key(_exchange(local_private, remote_ephemeral_public), digest)


class SessionManager:
    """
    Owns the sender's current ephemeral session.

    Derives once at construction; ``for_tick()`` re-derives when the policy
    is PER_TICK.
    """

    def __init__(
        self,
        remote_public: ec.EllipticCurvePublicKey,
        curve_bits: int,
        policy: SessionPolicy = SessionPolicy.PER_PROCESS,
        digest: str = DEFAULT_DIGEST,
        local_private: Optional[ec.EllipticCurvePrivateKey] = None,
    ):
        self.remote_public = remote_public
        self.curve_bits = curve_bits
        self.policy = policy
        self.digest = digest
        self.local_private = local_private
        self.rotations = 0
        self._current = self._derive()

    def _derive(self) -> EphemeralSession:
        return derive_sender_session(self.local_private, self.remote_public, self.curve_bits, self.digest)

    @property
    def current(self) -> EphemeralSession:
        return self._current

    def rotate(self) -> EphemeralSession:
        """Replace the current session with fresh ephemeral material."""
        self._current = self._derive()
        self.rotations += 1
        logger.info(f"Rotated session key, new session {self._current.fingerprint}")
        return self._current

    def for_tick(self) -> EphemeralSession:
        """Session to use for the tick that is starting."""
        if self.policy is SessionPolicy.PER_TICK:
            return self.rotate()
        return self._current
