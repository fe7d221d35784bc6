"""
Facility link wire protocol: packet framing and the encrypted record codec.
"""

from .packet import Packet, PacketHeader, PROTOCOL_VERSION, MAX_PACKET_SIZE
from .codec import encode, decode, serialize_record, deserialize_record

__all__ = [
    'Packet',
    'PacketHeader',
    'PROTOCOL_VERSION',
    'MAX_PACKET_SIZE',
    'encode',
    'decode',
    'serialize_record',
    'deserialize_record',
]
