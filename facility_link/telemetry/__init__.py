"""
Storage-network telemetry: records, data sources and the collector.
"""

from .record import TelemetryRecord
from .sources import (
    Subnetwork,
    SubnetworkSource,
    StaticSubnetwork,
    StaticSource,
    JsonSnapshotSource,
)
from .collector import collect, convert_energy, normalize_inventory

__all__ = [
    'TelemetryRecord',
    'Subnetwork',
    'SubnetworkSource',
    'StaticSubnetwork',
    'StaticSource',
    'JsonSnapshotSource',
    'collect',
    'convert_energy',
    'normalize_inventory',
]
