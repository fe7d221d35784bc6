"""
Point-to-Point Tunnel

Unicast datagram link between exactly two peers. No acknowledgement,
retransmission or ordering: every send is fire-and-forget and every
receive yields one whole message.

Implementations:
- UdpTunnel: UDP socket bound locally, pinned to one remote peer
- LoopbackTunnel: in-process pair backed by queues
"""

import logging
import queue
import socket
import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from ..errors import TransportError

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class Tunnel(ABC):
    """Abstract point-to-point link"""

    MAX_MESSAGE_SIZE = 65507

    @abstractmethod
    def send(self, data: bytes) -> None:
        """Send one message to the peer. Raises TransportError."""

    @abstractmethod
    def receive(self, timeout: Optional[float] = None) -> Optional[bytes]:
        """
        Block for one message.

        Args:
            timeout: Seconds to wait, None to wait forever

        Returns:
            Message bytes, or None if the timeout expired
        """

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class UdpTunnel(Tunnel):
    """UDP tunnel pinned to a single remote peer."""

    def __init__(self, local_address: Address, remote_address: Address):
        self.local_address = local_address
        self.remote_address = remote_address
        self._remote_ip: Optional[str] = None
        try:
            self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self.socket.bind(local_address)
        except OSError as e:
            raise TransportError(f"Cannot bind {local_address[0]}:{local_address[1]}: {e}") from None
        logger.info(f"UDP tunnel {self.socket.getsockname()} <-> {remote_address}")

    def _resolved_remote_ip(self) -> str:
        if self._remote_ip is None:
            try:
                self._remote_ip = socket.gethostbyname(self.remote_address[0])
            except OSError as e:
                raise TransportError(f"Cannot resolve {self.remote_address[0]}: {e}") from None
        return self._remote_ip

    def send(self, data: bytes) -> None:
        if len(data) > self.MAX_MESSAGE_SIZE:
            raise TransportError(f"Message too large: {len(data)} bytes")
        try:
            self.socket.sendto(data, self.remote_address)
        except OSError as e:
            raise TransportError(f"Send to {self.remote_address} failed: {e}") from None

    def receive(self, timeout: Optional[float] = None) -> Optional[bytes]:
        try:
            self.socket.settimeout(timeout)
            while True:
                data, addr = self.socket.recvfrom(self.MAX_MESSAGE_SIZE + 1)
                if addr[0] == self._resolved_remote_ip():
                    return data
                logger.debug(f"Dropping datagram from unexpected peer {addr}")
        except socket.timeout:
            return None
        except OSError as e:
            raise TransportError(f"Receive failed: {e}") from None

    def close(self) -> None:
        self.socket.close()


class LoopbackTunnel(Tunnel):
    """One end of an in-memory tunnel. Create ends with ``pair()``."""

    def __init__(self, inbox: "queue.Queue[bytes]", outbox: "queue.Queue[bytes]"):
        self._inbox = inbox
        self._outbox = outbox
        self._closed = threading.Event()

    @classmethod
    def pair(cls) -> Tuple["LoopbackTunnel", "LoopbackTunnel"]:
        """Two connected ends: what one sends the other receives."""
        a_to_b: "queue.Queue[bytes]" = queue.Queue()
        b_to_a: "queue.Queue[bytes]" = queue.Queue()
        return cls(b_to_a, a_to_b), cls(a_to_b, b_to_a)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, data: bytes) -> None:
        if self.closed:
            raise TransportError("Tunnel is closed")
        if len(data) > self.MAX_MESSAGE_SIZE:
            raise TransportError(f"Message too large: {len(data)} bytes")
        self._outbox.put(bytes(data))

    def receive(self, timeout: Optional[float] = None) -> Optional[bytes]:
        if self.closed:
            raise TransportError("Tunnel is closed")
        try:
            return self._inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        """Messages waiting to be received on this end."""
        return self._inbox.qsize()

    def close(self) -> None:
        self._closed.set()


def parse_address(value: str, default_host: str = "0.0.0.0") -> Address:
    """Parse ``host:port`` or ``port``."""
    host, _, port = value.rpartition(':')
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"{value}: expected host:port") from None
    if not 0 <= port_number <= 65535:
        raise ValueError(f"{value}: port out of range")
    return (host or default_host, port_number)
