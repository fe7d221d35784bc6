"""
Facility Link - Encrypted Storage-Network Telemetry

Periodically collects energy and inventory telemetry from storage-network
controllers and pushes it over a point-to-point tunnel, encrypted under a
key agreed with an ephemeral ECDH handshake.

Components:
- crypto: EC identities, session key derivation, AES-GCM payload cipher
- protocol: wire packet framing and the record codec
- telemetry: records, subnetwork sources, collector
- transport: UDP and loopback tunnels
- sender / receiver: the two ends of the link

Usage:
    from facility_link import SenderConfig, TelemetrySender

    config = SenderConfig(name="fuel-plant", peer_public_key="/etc/facility-link/receiver.pub").validate()
    sender = TelemetrySender.from_config(config)
    sender.run()
"""

__version__ = '1.0.0'

from .errors import (
    FacilityLinkError,
    ConfigurationError,
    KeyLoadError,
    KeyLoadReason,
    KeyAgreementError,
    DecryptError,
    DecryptReason,
    PacketFormatError,
    TransportError,
    CollectionError,
)
from .config import SenderConfig, ReceiverConfig
from .telemetry import TelemetryRecord
from .protocol import Packet, PacketHeader
from .sender import TelemetrySender, SenderState, SenderStats
from .receiver import TelemetryReceiver, ReceiverStats

__all__ = [
    # Errors
    'FacilityLinkError',
    'ConfigurationError',
    'KeyLoadError',
    'KeyLoadReason',
    'KeyAgreementError',
    'DecryptError',
    'DecryptReason',
    'PacketFormatError',
    'TransportError',
    'CollectionError',
    # Configuration
    'SenderConfig',
    'ReceiverConfig',
    # Data
    'TelemetryRecord',
    'Packet',
    'PacketHeader',
    # Endpoints
    'TelemetrySender',
    'SenderState',
    'SenderStats',
    'TelemetryReceiver',
    'ReceiverStats',
]
