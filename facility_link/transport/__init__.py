"""
Facility link transport: point-to-point tunnels.
"""

from .tunnel import Tunnel, UdpTunnel, LoopbackTunnel, parse_address

__all__ = [
    'Tunnel',
    'UdpTunnel',
    'LoopbackTunnel',
    'parse_address',
]
