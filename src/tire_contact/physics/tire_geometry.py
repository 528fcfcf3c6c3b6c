"""Wheel geometry and loaded (effective) rolling radius."""

from dataclasses import dataclass, asdict
from typing import Dict, Optional

from tire_contact.contact.patch import PatchConventions


@dataclass
class WheelConfig:
    """Static wheel geometry."""

    tire_radius: float = 0.33  # m, unloaded
    min_effective_radius: float = 0.28  # m
    tire_width: float = 0.245  # m

    def to_dict(self) -> Dict:
        return asdict(self)


def compute_effective_radius(
    tire_radius: float,
    min_effective_radius: float,
    vertical_load: float,
    stiffness: float,
    conventions: Optional[PatchConventions] = None,
) -> float:
    """
    Loaded rolling radius.

    Args:
        tire_radius: Unloaded radius [m]
        min_effective_radius: Lower bound [m]
        vertical_load: Vertical force [N]
        stiffness: Vertical stiffness [N/m]
        conventions: Provides the stiffness floor

    Returns:
        Radius within [min_effective_radius, tire_radius], or 0 for a
        non-positive tire radius
    """
    conv = conventions or PatchConventions()
    if tire_radius <= 0.0:
        return 0.0

    safe_stiffness = max(stiffness, conv.min_stiffness)
    compression = min(max(vertical_load, 0.0) / safe_stiffness, tire_radius)
    return min(max(tire_radius - compression, min_effective_radius), tire_radius)
