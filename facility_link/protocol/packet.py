"""
Wire packet.

Self-describing JSON document, byte fields base64-encoded::

    {
      "version": 1,
      "header": {
        "senderID": "<origin process>",
        "sessionPublicKey": "<DER ephemeral EC public key>",
        "iv": "<16 bytes>"
      },
      "data": "<AES-GCM ciphertext + tag>"
    }

A new immutable Packet is built for every send.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Dict

from ..crypto.cipher import IV_SIZE
from ..errors import PacketFormatError

PROTOCOL_VERSION = 1
MAX_PACKET_SIZE = 65507  # largest UDP payload


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def _unb64(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise PacketFormatError(f"'{name}' must be a base64 string")
    try:
        return base64.b64decode(value.encode('ascii'), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise PacketFormatError(f"'{name}' is not valid base64") from None


@dataclass(frozen=True)
class PacketHeader:
    """Cleartext header the receiver needs to derive the key and decrypt."""
    sender_id: str
    session_public_key: bytes
    iv: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "senderID": self.sender_id,
            "sessionPublicKey": _b64(self.session_public_key),
            "iv": _b64(self.iv),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PacketHeader":
        if not isinstance(data, dict):
            raise PacketFormatError("'header' must be an object")
        for name in ("senderID", "sessionPublicKey", "iv"):
            if name not in data:
                raise PacketFormatError(f"header is missing '{name}'")
        if not isinstance(data["senderID"], str) or not data["senderID"]:
            raise PacketFormatError("'senderID' must be a non-empty string")

        session_public_key = _unb64(data["sessionPublicKey"], "sessionPublicKey")
        if not session_public_key:
            raise PacketFormatError("'sessionPublicKey' is empty")
        iv = _unb64(data["iv"], "iv")
        if len(iv) != IV_SIZE:
            raise PacketFormatError(f"'iv' must be {IV_SIZE} bytes, got {len(iv)}")

        return cls(sender_id=data["senderID"], session_public_key=session_public_key, iv=iv)


@dataclass(frozen=True)
class Packet:
    """One encrypted telemetry message."""
    header: PacketHeader
    data: bytes
    version: int = PROTOCOL_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "header": self.header.to_dict(),
            "data": _b64(self.data),
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(',', ':'), sort_keys=True).encode('utf-8')

    @classmethod
    def from_dict(cls, data: Any) -> "Packet":
        if not isinstance(data, dict):
            raise PacketFormatError("packet must be a JSON object")
        version = data.get("version")
        if isinstance(version, bool) or version != PROTOCOL_VERSION:
            raise PacketFormatError(f"unsupported protocol version: {version!r}")
        if "header" not in data or "data" not in data:
            raise PacketFormatError("packet needs 'header' and 'data'")
        return cls(
            header=PacketHeader.from_dict(data["header"]),
            data=_unb64(data["data"], "data"),
            version=version,
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Packet":
        """
        Parse a packet off the wire.

        Raises:
            PacketFormatError: not JSON, missing fields, bad base64 or IV width
        """
        if len(raw) > MAX_PACKET_SIZE:
            raise PacketFormatError(f"packet too large: {len(raw)} bytes")
        try:
            document = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise PacketFormatError(f"packet is not a JSON document: {e}") from None
        except RecursionError:
            raise PacketFormatError("packet nests too deeply") from None
        return cls.from_dict(document)
