"""
Telemetry record exchanged over the link.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Dict, Union

Quantity = Union[int, float]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)


def _quantities(data: Any, name: str) -> Dict[str, Quantity]:
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be an object, got {type(data).__name__}")
    for key, value in data.items():
        if not isinstance(key, str) or not _is_number(value):
            raise ValueError(f"'{name}' entry {key!r} must map a string to a number")
    return dict(data)


@dataclass(frozen=True)
class TelemetryRecord:
    """One subnetwork's readings for one tick."""
    timestamp: str
    subnetwork_id: str
    energy: float
    items: Dict[str, Quantity] = field(default_factory=dict)
    fluids: Dict[str, Quantity] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire dictionary"""
        return {
            "timestamp": self.timestamp,
            "subnetworkID": self.subnetwork_id,
            "energy": self.energy,
            "items": dict(self.items),
            "fluids": dict(self.fluids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TelemetryRecord":
        """
        Deserialize from the wire dictionary.

        Strict: every field must be present with the right type, otherwise
        ValueError. Nothing is defaulted.
        """
        if not isinstance(data, dict):
            raise ValueError(f"record must be an object, got {type(data).__name__}")

        missing = [k for k in ("timestamp", "subnetworkID", "energy", "items", "fluids") if k not in data]
        if missing:
            raise ValueError(f"record is missing field(s): {', '.join(missing)}")

        if not isinstance(data["timestamp"], str):
            raise ValueError("'timestamp' must be a string")
        if not isinstance(data["subnetworkID"], str):
            raise ValueError("'subnetworkID' must be a string")
        if not _is_number(data["energy"]):
            raise ValueError("'energy' must be a number")

        return cls(
            timestamp=data["timestamp"],
            subnetwork_id=data["subnetworkID"],
            energy=data["energy"],
            items=_quantities(data["items"], "items"),
            fluids=_quantities(data["fluids"], "fluids"),
        )
