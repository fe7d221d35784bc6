"""
Subnetwork data sources.

A source enumerates the storage subnetworks currently reachable; it is asked
again on every tick, so subnetworks that come and go are picked up or dropped
without restarting the sender.

Sources:
- StaticSource: fixed in-memory list (tests, embedding)
- JsonSnapshotSource: controller snapshot file written by the host,
  re-read on every discovery
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)


class Subnetwork(ABC):
    """One storage-network controller, as exposed by the host."""

    @property
    @abstractmethod
    def subnetwork_id(self) -> str:
        """Stable controller address"""

    @abstractmethod
    def avg_power_usage(self) -> float:
        """Average draw in host energy units per tick"""

    @abstractmethod
    def idle_power_usage(self) -> float:
        """Idle draw in host energy units per tick"""

    @abstractmethod
    def items_in_network(self) -> Any:
        """Item inventory: mapping or list of stack dicts"""

    @abstractmethod
    def fluids_in_network(self) -> Any:
        """Fluid inventory: mapping or list of stack dicts"""


class SubnetworkSource(ABC):
    """Enumerates reachable subnetworks."""

    @abstractmethod
    def discover(self) -> List[Subnetwork]:
        pass


@dataclass
class StaticSubnetwork(Subnetwork):
    """In-memory subnetwork snapshot."""
    address: str
    avg_power: float = 0.0
    idle_power: float = 0.0
    items: Any = field(default_factory=dict)
    fluids: Any = field(default_factory=dict)

    @property
    def subnetwork_id(self) -> str:
        return self.address

    def avg_power_usage(self) -> float:
        return self.avg_power

    def idle_power_usage(self) -> float:
        return self.idle_power

    def items_in_network(self) -> Any:
        return self.items

    def fluids_in_network(self) -> Any:
        return self.fluids

    @classmethod
    def from_dict(cls, data: dict) -> "StaticSubnetwork":
        """Build from a snapshot file entry"""
        return cls(
            address=str(data["id"]),
            avg_power=float(data.get("avgPowerUsage", 0.0)),
            idle_power=float(data.get("idlePowerUsage", 0.0)),
            items=data.get("items", {}),
            fluids=data.get("fluids", {}),
        )


class StaticSource(SubnetworkSource):
    """Source over a mutable list of subnetworks."""

    def __init__(self, subnetworks: Optional[Iterable[Subnetwork]] = None):
        self.subnetworks = list(subnetworks or [])

    def discover(self) -> List[Subnetwork]:
        return list(self.subnetworks)


class JsonSnapshotSource(SubnetworkSource):
    """
    Reads controllers from a JSON snapshot file.

    Format::

        {"controllers": [
            {"id": "...", "avgPowerUsage": 12.5, "idlePowerUsage": 2.0,
             "items": [{"label": "Stick", "size": 64}], "fluids": {}}
        ]}

    A missing, unreadable or wrongly shaped snapshot means no subnetworks
    this tick.
    """

    ENV_VAR = "FACILITY_LINK_SNAPSHOT"

    def __init__(self, path: Optional[str] = None):
        self.path = path or os.environ.get(self.ENV_VAR, "/var/lib/facility-link/controllers.json")

    def discover(self) -> List[Subnetwork]:
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Controller snapshot not found: {self.path}")
            return []
        except (OSError, ValueError, RecursionError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            logger.warning(f"Could not read controller snapshot {self.path}: {e}")
            return []

        controllers = data.get("controllers", []) if isinstance(data, dict) else None
        if not isinstance(controllers, list):
            logger.warning(f"Controller snapshot {self.path} has no 'controllers' list, ignoring it")
            return []

        subnetworks = []
        for entry in controllers:
            try:
                subnetworks.append(StaticSubnetwork.from_dict(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed controller entry in {self.path}: {e}")
        return subnetworks
