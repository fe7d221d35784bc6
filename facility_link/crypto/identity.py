"""
Long-lived EC identities.

Loads the PEM/DER key files each side of the link is provisioned with and
generates new key pairs for provisioning. Only P-256 and P-384 are accepted.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional, Tuple, Type, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..errors import KeyLoadError, KeyLoadReason

logger = logging.getLogger(__name__)

# Approved key strengths (bits) -> curve
CURVES: Dict[int, Type[ec.EllipticCurve]] = {
    256: ec.SECP256R1,
    384: ec.SECP384R1,
}

PathLike = Union[str, os.PathLike]


def curve_for_bits(bits: int) -> ec.EllipticCurve:
    """Return a curve instance for an approved key strength."""
    try:
        return CURVES[bits]()
    except (KeyError, TypeError):
        raise ValueError(f"{bits}: key size must be either 256 or 384") from None


def _read_key_file(path: PathLike) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except FileNotFoundError:
        raise KeyLoadError(KeyLoadReason.NOT_FOUND, str(path), "no such file or directory") from None
    except OSError as e:
        raise KeyLoadError(KeyLoadReason.NOT_FOUND, str(path), e.strerror or str(e)) from None


def _parse(data: bytes, private: bool):
    """Parse PEM or DER key material as a private or public key."""
    is_pem = data.lstrip().startswith(b"-----BEGIN")
    if private:
        loader = serialization.load_pem_private_key if is_pem else serialization.load_der_private_key
        return loader(data, password=None)
    loader = serialization.load_pem_public_key if is_pem else serialization.load_der_public_key
    return loader(data)


def _load_key(path: PathLike, private: bool, curve_bits: Optional[int]):
    data = _read_key_file(path)
    expected = "private" if private else "public"

    try:
        key = _parse(data, private)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        # A key of the other half parses cleanly: report the kind, not garbage
        try:
            _parse(data, not private)
        except (ValueError, TypeError, UnsupportedAlgorithm):
            raise KeyLoadError(KeyLoadReason.MALFORMED, str(path), str(e)) from None
        raise KeyLoadError(
            KeyLoadReason.WRONG_KEY_KIND, str(path), f"expected an EC {expected} key"
        ) from None

    key_type = ec.EllipticCurvePrivateKey if private else ec.EllipticCurvePublicKey
    if not isinstance(key, key_type):
        raise KeyLoadError(
            KeyLoadReason.WRONG_KEY_KIND, str(path),
            f"expected an EC {expected} key, got {type(key).__name__}"
        )

    if curve_bits is not None and key.curve.key_size != curve_bits:
        raise KeyLoadError(
            KeyLoadReason.WRONG_KEY_KIND, str(path),
            f"key is {key.curve.name} ({key.curve.key_size} bits), expected {curve_bits} bits"
        )

    logger.debug(f"Loaded EC {expected} key {path} ({key.curve.name})")
    return key


def load_private_key(path: PathLike, curve_bits: Optional[int] = None) -> ec.EllipticCurvePrivateKey:
    """
    Load a long-lived EC private key.

    Args:
        path: PEM or DER key file
        curve_bits: Required key strength, or None to accept either

    Raises:
        KeyLoadError: missing file, unparseable content, or not an EC private key
    """
    return _load_key(path, True, curve_bits)


def load_public_key(path: PathLike, curve_bits: Optional[int] = None) -> ec.EllipticCurvePublicKey:
    """Load a peer's EC public key. Same failure modes as load_private_key."""
    return _load_key(path, False, curve_bits)


def public_key_fingerprint(public_key: ec.EllipticCurvePublicKey) -> str:
    """Short hex fingerprint for logs."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    digest = hashes.Hash(hashes.SHA256())
    digest.update(der)
    return digest.finalize().hex()[:16]


def generate_identity(
    directory: PathLike,
    curve_bits: int = 384,
    name: str = "ec-key",
    overwrite: bool = False,
) -> Tuple[Path, Path]:
    """
    Generate a long-lived key pair and write it as PEM.

    The private half goes to ``<name>.pem`` (mode 0600), the public half
    to ``<name>.pub``.

    Returns:
        (private_path, public_path)
    """
    directory = Path(directory)
    private_path = directory / f"{name}.pem"
    public_path = directory / f"{name}.pub"

    if not overwrite:
        for path in (private_path, public_path):
            if path.exists():
                raise FileExistsError(f"{path}: refusing to overwrite existing key")

    private_key = ec.generate_private_key(curve_for_bits(curve_bits))

    directory.mkdir(parents=True, exist_ok=True)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )

    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(private_pem)
    public_path.write_bytes(public_pem)

    logger.info(f"Generated {curve_bits}-bit identity: {private_path}, {public_path}")
    return private_path, public_path
