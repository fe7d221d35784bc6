"""
Record codec: TelemetryRecord <-> (iv, ciphertext).
"""

import json
import logging
from typing import Tuple

from ..crypto.cipher import decrypt, encrypt, generate_iv
from ..errors import DecryptError, DecryptReason
from ..telemetry.record import TelemetryRecord

logger = logging.getLogger(__name__)


def serialize_record(record: TelemetryRecord) -> bytes:
    """Canonical byte form: sorted keys, compact separators. Non-finite numbers raise ValueError."""
    document = json.dumps(record.to_dict(), sort_keys=True, separators=(',', ':'), allow_nan=False)
    return document.encode('utf-8')


def deserialize_record(plaintext: bytes) -> TelemetryRecord:
    try:
        return TelemetryRecord.from_dict(json.loads(plaintext.decode('utf-8')))
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        # json.JSONDecodeError is a ValueError
        raise DecryptError(DecryptReason.MALFORMED_PAYLOAD, f"Decrypted payload is not a record: {e}") from None


def encode(record: TelemetryRecord, key: bytes) -> Tuple[bytes, bytes]:
    """
    Encrypt a record under a fresh IV.

    Returns:
        (iv, ciphertext)
    """
    iv = generate_iv()
    return iv, encrypt(serialize_record(record), key, iv)


def decode(ciphertext: bytes, key: bytes, iv: bytes) -> TelemetryRecord:
    """
    Decrypt and rebuild a record. All or nothing.

    Raises:
        DecryptError: AUTHENTICATION if the cipher rejects key/iv/ciphertext,
            MALFORMED_PAYLOAD if the plaintext is not a valid record
    """
    return deserialize_record(decrypt(ciphertext, key, iv))
