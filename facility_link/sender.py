"""
Telemetry Sender (Collector driver)

Periodically reads every discovered subnetwork, encrypts each record under
the current session key with a fresh IV, and pushes one packet per
subnetwork through the tunnel.

State machine:

    IDLE --(timer)--> ITERATING --(all subnetworks done)--> IDLE

Ticks never overlap. If a tick runs past the next deadline, the overdue
ticks are skipped rather than queued.
"""

import logging
import threading
import time
from dataclasses import dataclass, asdict
from enum import Enum, auto
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .config import SenderConfig
from .crypto.identity import load_private_key, load_public_key, public_key_fingerprint
from .crypto.session import EphemeralSession, SessionManager
from .errors import CollectionError, TransportError
from .protocol.codec import encode
from .protocol.packet import Packet, PacketHeader
from .telemetry.collector import collect
from .telemetry.sources import JsonSnapshotSource, Subnetwork, SubnetworkSource
from .transport.tunnel import Tunnel, UdpTunnel, parse_address

logger = logging.getLogger(__name__)


class SenderState(Enum):
    IDLE = auto()
    ITERATING = auto()


@dataclass
class SenderStats:
    """Counters for sender health monitoring."""
    ticks: int = 0
    skipped_ticks: int = 0
    packets_sent: int = 0
    send_errors: int = 0
    collect_errors: int = 0
    session_rotations: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class TelemetrySender:
    """
    Collector side of the link.

    Owns the session manager (and through it the ephemeral session) for the
    lifetime of the process.
    """

    def __init__(
        self,
        tunnel: Tunnel,
        source: SubnetworkSource,
        sessions: SessionManager,
        sender_id: str,
        interval: float = 5.0,
        identity: Optional[ec.EllipticCurvePrivateKey] = None,
    ):
        """
        Args:
            tunnel: Link to the receiver
            source: Subnetwork discovery, queried every tick
            sessions: Current ephemeral session and rotation policy
            sender_id: Identifier stamped into every packet header
            interval: Seconds between ticks
            identity: Sender's long-lived private key, if provisioned
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.tunnel = tunnel
        self.source = source
        self.sessions = sessions
        self.sender_id = sender_id
        self.interval = interval
        self.identity = identity

        self.state = SenderState.IDLE
        self.stats = SenderStats()
        self._stop = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: SenderConfig,
        tunnel: Optional[Tunnel] = None,
        source: Optional[SubnetworkSource] = None,
    ) -> "TelemetrySender":
        """
        Load key material and build a sender.

        Raises:
            KeyLoadError: peer public key or own private key unusable
            KeyAgreementError: initial session cannot be derived
        """
        peer_public = load_public_key(config.peer_public_key, config.key_size)
        logger.info(f"Peer public key {config.peer_public_key} ({public_key_fingerprint(peer_public)})")

        identity = None
        if config.private_key:
            identity = load_private_key(config.private_key)

        sessions = SessionManager(
            remote_public=peer_public,
            curve_bits=config.key_size,
            policy=config.policy,
            digest=config.digest,
            local_private=identity,
        )
        logger.info(f"Session {sessions.current.fingerprint} established, policy {sessions.policy.value}")

        if tunnel is None:
            tunnel = UdpTunnel(parse_address(config.local_address), parse_address(config.remote_address))
        if source is None:
            source = JsonSnapshotSource(config.snapshot_path)

        return cls(
            tunnel=tunnel,
            source=source,
            sessions=sessions,
            sender_id=config.sender_id,
            interval=config.interval,
            identity=identity,
        )

    def build_packet(self, subnetwork: Subnetwork, session: EphemeralSession) -> Packet:
        """Collect one subnetwork and wrap its encrypted record."""
        record = collect(subnetwork)
        iv, ciphertext = encode(record, session.key)
        header = PacketHeader(
            sender_id=self.sender_id,
            session_public_key=session.public_key,
            iv=iv,
        )
        return Packet(header=header, data=ciphertext)

    def _send_subnetwork(self, subnetwork: Subnetwork, session: EphemeralSession) -> bool:
        try:
            packet = self.build_packet(subnetwork, session)
        except CollectionError as e:
            self.stats.collect_errors += 1
            logger.warning(f"Skipping subnetwork: {e}")
            return False

        try:
            self.tunnel.send(packet.to_bytes())
        except TransportError as e:
            self.stats.send_errors += 1
            logger.warning(f"Send failed for {subnetwork.subnetwork_id}: {e}")
            return False

        self.stats.packets_sent += 1
        logger.debug(f"Sent {subnetwork.subnetwork_id} iv={packet.header.iv.hex()[:8]}...")
        return True

    def tick(self) -> int:
        """
        Process every currently discovered subnetwork once.

        Returns:
            Number of packets handed to the tunnel
        """
        self.state = SenderState.ITERATING
        sent = 0
        try:
            rotations = self.sessions.rotations
            session = self.sessions.for_tick()
            self.stats.session_rotations += self.sessions.rotations - rotations

            try:
                subnetworks = self.source.discover()
            except CollectionError as e:
                self.stats.collect_errors += 1
                logger.warning(f"Subnetwork discovery failed: {e}")
                subnetworks = []
            except Exception as e:
                self.stats.collect_errors += 1
                logger.exception(f"Subnetwork discovery raised {type(e).__name__}: {e}")
                subnetworks = []

            for subnetwork in subnetworks:
                if self._stop.is_set():
                    logger.info("Stop requested, abandoning tick")
                    break
                if self._send_subnetwork(subnetwork, session):
                    sent += 1
        finally:
            self.stats.ticks += 1
            self.state = SenderState.IDLE

        logger.debug(f"Tick {self.stats.ticks}: {sent}/{len(subnetworks)} subnetworks sent")
        return sent

    def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Run the send loop until stop() (or ``max_ticks`` ticks).

        The first tick fires one interval after start.
        """
        self._stop.clear()
        logger.info(f"Sender {self.sender_id} running every {self.interval}s")
        next_tick = time.monotonic() + self.interval
        ticks = 0

        while not self._stop.is_set():
            delay = next_tick - time.monotonic()
            if delay > 0 and self._stop.wait(delay):
                break

            self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break

            next_tick += self.interval
            now = time.monotonic()
            if now >= next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                self.stats.skipped_ticks += missed
                next_tick += missed * self.interval
                logger.warning(f"Tick overran the interval, skipped {missed} tick(s)")

        logger.info(f"Sender stopped: {self.stats.to_dict()}")

    def stop(self) -> None:
        self._stop.set()

    def close(self) -> None:
        self.stop()
        self.tunnel.close()
