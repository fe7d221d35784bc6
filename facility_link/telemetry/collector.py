"""
Telemetry Collector

Turns one subnetwork's host readings into a TelemetryRecord.

Energy is reported in FE/t: the controller's working draw (average minus
idle, rounded to two decimals) in AE/t, converted with the fixed host
ratio of 2 FE per 0.05 AE.
"""

import logging
import math
from numbers import Real
from typing import Any, Dict

from ..errors import CollectionError
from .record import Quantity, TelemetryRecord, utc_timestamp
from .sources import Subnetwork

logger = logging.getLogger(__name__)

AE_UNIT = 0.05
FE_PER_AE_UNIT = 2


def convert_energy(avg_power: float, idle_power: float) -> float:
    """Working draw in FE/t from host average/idle draw in AE/t."""
    working = round(avg_power - idle_power, 2)
    return (working / AE_UNIT) * FE_PER_AE_UNIT


def _stack_key(stack: Dict[str, Any]) -> Any:
    return stack.get("label") or stack.get("name")


def _stack_quantity(stack: Dict[str, Any]) -> Any:
    for field_name in ("size", "amount"):
        if field_name in stack:
            return stack[field_name]
    return None


def normalize_inventory(raw: Any) -> Dict[str, Quantity]:
    """
    Flatten a host inventory into ``{key: quantity}``.

    Accepts a mapping, or the host's list of stack tables
    (``label``/``name`` plus ``size``/``amount``). The host's ``n`` count
    entry is dropped and repeated keys are summed.
    """
    inventory: Dict[str, Quantity] = {}
    if not raw:
        return inventory

    if isinstance(raw, dict):
        entries = [(k, v) for k, v in raw.items() if k != 'n']
    else:
        entries = []
        for stack in raw:
            if not isinstance(stack, dict):
                continue
            entries.append((_stack_key(stack), _stack_quantity(stack)))

    for key, quantity in entries:
        usable = isinstance(quantity, Real) and not isinstance(quantity, bool) and math.isfinite(quantity)
        if key is None or not usable:
            logger.debug(f"Ignoring inventory entry {key!r}: {quantity!r}")
            continue
        key = str(key)
        inventory[key] = inventory.get(key, 0) + quantity
    return inventory


def collect(subnetwork: Subnetwork) -> TelemetryRecord:
    """
    Read one subnetwork.

    Raises:
        CollectionError: the host failed to answer one of the reads, or
            reported a non-finite power draw
    """
    subnetwork_id = subnetwork.subnetwork_id
    try:
        energy = convert_energy(subnetwork.avg_power_usage(), subnetwork.idle_power_usage())
        items = normalize_inventory(subnetwork.items_in_network())
        fluids = normalize_inventory(subnetwork.fluids_in_network())
    except CollectionError:
        raise
    except Exception as e:
        raise CollectionError(subnetwork_id, str(e)) from e

    if not math.isfinite(energy):
        raise CollectionError(subnetwork_id, f"power reading is not a finite number ({energy})")

    return TelemetryRecord(
        timestamp=utc_timestamp(),
        subnetwork_id=subnetwork_id,
        energy=energy,
        items=items,
        fluids=fluids,
    )
