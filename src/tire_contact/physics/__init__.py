"""Force synthesis and wheel geometry."""

from tire_contact.physics.force_solver import ForceResult, ForceSolver, SolverConfig
from tire_contact.physics.tire_geometry import WheelConfig, compute_effective_radius

__all__ = ["ForceResult", "ForceSolver", "SolverConfig", "WheelConfig", "compute_effective_radius"]
