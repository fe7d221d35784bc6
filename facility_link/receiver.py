"""
Telemetry Receiver (Decoder)

Waits for packets, derives the session key from the ephemeral public key
embedded in each header plus the receiver's long-lived private key, and
decrypts the record.

A bad packet (malformed framing, unusable session key, failed decryption)
is logged and counted; the loop keeps waiting for the next one.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .config import ReceiverConfig
from .crypto.identity import load_private_key
from .crypto.session import DEFAULT_DIGEST, derive_receiver_session
from .errors import (
    DecryptError,
    DecryptReason,
    KeyAgreementError,
    PacketFormatError,
    TransportError,
)
from .protocol.codec import decode
from .protocol.packet import Packet
from .telemetry.record import TelemetryRecord
from .transport.tunnel import Tunnel, UdpTunnel, parse_address

logger = logging.getLogger(__name__)

RecordCallback = Callable[[TelemetryRecord, Packet], None]


@dataclass
class ReceiverStats:
    """Counters for receiver health monitoring."""
    received: int = 0
    decoded: int = 0
    rejected: Dict[str, int] = field(default_factory=dict)
    transport_errors: int = 0
    delivery_errors: int = 0

    def reject(self, code: str) -> None:
        self.rejected[code] = self.rejected.get(code, 0) + 1

    def to_dict(self) -> dict:
        return {
            "received": self.received,
            "decoded": self.decoded,
            "rejected": dict(self.rejected),
            "transport_errors": self.transport_errors,
            "delivery_errors": self.delivery_errors,
        }


class TelemetryReceiver:
    """Decoder side of the link."""

    KEY_CACHE_SIZE = 32

    def __init__(
        self,
        tunnel: Tunnel,
        private_key: ec.EllipticCurvePrivateKey,
        digest: str = DEFAULT_DIGEST,
        receive_timeout: float = 5.0,
        on_record: Optional[RecordCallback] = None,
    ):
        """
        Args:
            tunnel: Link from the sender
            private_key: Receiver's long-lived private key
            digest: Must match the sender's digest
            receive_timeout: Seconds per blocking receive before re-checking stop
            on_record: Called with every decoded record and its packet;
                exceptions it raises are logged, never propagated
        """
        if receive_timeout <= 0:
            raise ValueError("receive_timeout must be positive")
        self.tunnel = tunnel
        self.private_key = private_key
        self.digest = digest
        self.receive_timeout = receive_timeout
        self.on_record = on_record

        self.stats = ReceiverStats()
        self._keys: "OrderedDict[bytes, bytes]" = OrderedDict()
        self._stop = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: ReceiverConfig,
        tunnel: Optional[Tunnel] = None,
        on_record: Optional[RecordCallback] = None,
    ) -> "TelemetryReceiver":
        """
        Load the receiver identity and build a receiver.

        Raises:
            KeyLoadError: private key missing, malformed or of the wrong kind
        """
        private_key = load_private_key(config.private_key, config.key_size)
        if tunnel is None:
            tunnel = UdpTunnel(parse_address(config.local_address), parse_address(config.remote_address))
        return cls(
            tunnel=tunnel,
            private_key=private_key,
            digest=config.digest,
            receive_timeout=config.receive_timeout,
            on_record=on_record,
        )

    def session_key(self, packet: Packet) -> bytes:
        """
        Symmetric key for a packet's ephemeral session.

        Keys are cached per ephemeral public key; a new ephemeral key always
        triggers a fresh derivation.

        Raises:
            DecryptError(KEY_AGREEMENT): the embedded key is unusable
        """
        blob = packet.header.session_public_key
        key = self._keys.get(blob)
        if key is not None:
            self._keys.move_to_end(blob)
            return key

        try:
            key = derive_receiver_session(self.private_key, blob, self.digest)
        except KeyAgreementError as e:
            raise DecryptError(DecryptReason.KEY_AGREEMENT, e.message) from None

        self._keys[blob] = key
        if len(self._keys) > self.KEY_CACHE_SIZE:
            self._keys.popitem(last=False)
        return key

    def open(self, packet: Packet) -> TelemetryRecord:
        """Derive the session key and decrypt. Raises DecryptError."""
        return decode(packet.data, self.session_key(packet), packet.header.iv)

    def process(self, raw: bytes) -> TelemetryRecord:
        """
        Parse, derive and decrypt one raw message.

        Raises:
            PacketFormatError: framing is invalid
            DecryptError: key agreement or decryption failed
        """
        packet = Packet.from_bytes(raw)
        record = self.open(packet)
        self._deliver(record, packet)
        return record

    def _deliver(self, record: TelemetryRecord, packet: Packet) -> None:
        """Hand a decoded record to on_record. A failing callback is logged and counted."""
        if self.on_record is None:
            return
        try:
            self.on_record(record, packet)
        except Exception as e:
            self.stats.delivery_errors += 1
            logger.exception(f"Delivery of record from {record.subnetwork_id} failed: {e}")

    def await_one(self, timeout: Optional[float] = None) -> Optional[Packet]:
        """
        Block until one packet arrives.

        Returns:
            The parsed packet, or None on timeout
        """
        raw = self.tunnel.receive(timeout if timeout is not None else self.receive_timeout)
        if raw is None:
            return None
        return Packet.from_bytes(raw)

    def receive_one(self, timeout: Optional[float] = None) -> Optional[TelemetryRecord]:
        """Single-shot receive: wait, derive, decrypt. Errors propagate."""
        packet = self.await_one(timeout)
        if packet is None:
            return None
        return self.open(packet)

    def _handle(self, raw: bytes) -> Optional[TelemetryRecord]:
        self.stats.received += 1
        try:
            record = self.process(raw)
        except (PacketFormatError, DecryptError) as e:
            self.stats.reject(e.code)
            logger.warning(f"Rejected packet: {e}")
            return None
        self.stats.decoded += 1
        logger.debug(f"Decoded record from {record.subnetwork_id}")
        return record

    def run(self, max_packets: Optional[int] = None) -> None:
        """
        Receive until stop() (or until ``max_packets`` messages were handled).

        Per-message failures never end the loop.
        """
        self._stop.clear()
        logger.info(f"Receiver listening (timeout {self.receive_timeout}s)")

        while not self._stop.is_set():
            try:
                raw = self.tunnel.receive(self.receive_timeout)
            except TransportError as e:
                self.stats.transport_errors += 1
                logger.error(f"Receive failed: {e}")
                self._stop.wait(self.receive_timeout)
                continue

            if raw is None:
                continue

            self._handle(raw)
            if max_packets is not None and self.stats.received >= max_packets:
                break

        logger.info(f"Receiver stopped: {self.stats.to_dict()}")

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        self.stop()
        self.tunnel.close()
