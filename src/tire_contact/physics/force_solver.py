"""
Contact Force Solver

Converts a fused contact patch into wheel forces:
- Vertical force from a spring-damper over penetration
- Longitudinal/lateral forces from slip, bounded by the friction circle
- Aligning torque (first-order: Fy x longitudinal CoP offset)
- Energy clamp against nonphysical energy injection

Two policies, selected by contact state:
- Emergency (no ground): previous vertical force decays toward zero
- Normal: full force synthesis

Output depends only on the inputs. No clocks are read.
"""

import numpy as np
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from tire_contact.contact.patch import ContactPatch
from tire_contact.contact.regime import ContactState, is_no_ground


class SolverRegime(Enum):
    NORMAL = "normal"
    EMERGENCY = "emergency"


@dataclass
class SolverConfig:
    """Force model parameters."""

    # Vertical spring-damper
    stiffness: float = 200000.0  # N/m
    damping: float = 3000.0  # N*s/m

    # Tangential gains (force per unit slip per N of vertical load)
    longitudinal_gain: float = 10.0
    lateral_gain: float = 8.0
    friction_coefficient: float = 1.0  # mu

    # Emergency regime
    min_confidence: float = 0.1
    emergency_falloff: float = 10.0  # 1/s

    # Energy clamp
    energy_ceiling: float = 5000.0  # J per tick
    velocity_up_axis: int = 2  # Index of the vertical axis in world velocity

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class SolverDiagnostics:
    """Per-tick solver record."""
    regime: SolverRegime = SolverRegime.NORMAL
    contact_state: Optional[ContactState] = None
    patch_confidence: float = 0.0
    energy: float = 0.0  # J, before clamping
    energy_clamped: bool = False
    energy_scale: float = 1.0
    safety_reason: Optional[str] = None
    contract_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'regime': self.regime.value,
            'contact_state': self.contact_state.value if self.contact_state is not None else None,
            'patch_confidence': self.patch_confidence,
            'energy': self.energy,
            'energy_clamped': self.energy_clamped,
            'energy_scale': self.energy_scale,
            'safety_reason': self.safety_reason,
            'contract_id': self.contract_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SolverDiagnostics':
        state = data.get('contact_state')
        return cls(
            regime=SolverRegime(data.get('regime', 'normal')),
            contact_state=ContactState(state) if state is not None else None,
            patch_confidence=float(data.get('patch_confidence', 0.0)),
            energy=float(data.get('energy', 0.0)),
            energy_clamped=bool(data.get('energy_clamped', False)),
            energy_scale=float(data.get('energy_scale', 1.0)),
            safety_reason=data.get('safety_reason'),
            contract_id=data.get('contract_id'),
        )


@dataclass
class ForceResult:
    """Forces for one wheel, one tick. Consumed immediately by integration."""
    fx: float = 0.0  # N, longitudinal
    fy: float = 0.0  # N, lateral
    fz: float = 0.0  # N, vertical
    mz: float = 0.0  # N*m, aligning torque
    center_of_pressure: np.ndarray = field(default_factory=lambda: np.zeros(3))  # World
    confidence: float = 0.0
    effective_radius: Optional[float] = None  # m
    diagnostics: SolverDiagnostics = field(default_factory=SolverDiagnostics)

    def to_dict(self) -> Dict[str, Any]:
        """Lossless mapping form for logging and replay."""
        return {
            'fx': self.fx,
            'fy': self.fy,
            'fz': self.fz,
            'mz': self.mz,
            'center_of_pressure': [float(v) for v in self.center_of_pressure],
            'confidence': self.confidence,
            'effective_radius': self.effective_radius,
            'diagnostics': self.diagnostics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ForceResult':
        return cls(
            fx=float(data['fx']),
            fy=float(data['fy']),
            fz=float(data['fz']),
            mz=float(data['mz']),
            center_of_pressure=np.array(data.get('center_of_pressure', [0.0, 0.0, 0.0]), dtype=float),
            confidence=float(data.get('confidence', 0.0)),
            effective_radius=data.get('effective_radius'),
            diagnostics=SolverDiagnostics.from_dict(data.get('diagnostics', {})),
        )


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def apply_friction_circle(fx: float, fy: float, fz: float, mu: float) -> Tuple[float, float]:
    """
    Limit tangential force magnitude to mu * fz, preserving direction.

    Returns:
        (fx, fy) after limiting
    """
    limit = max(mu * fz, 0.0)
    magnitude = float(np.hypot(fx, fy))
    if magnitude > limit and magnitude > 0.0:
        scale = limit / magnitude
        return fx * scale, fy * scale
    return fx, fy


def force_in_velocity_axes(fx: float, fy: float, fz: float, up_axis: int = 2) -> np.ndarray:
    """Reorder (fx, fy, fz) so the vertical component sits on the velocity's up axis."""
    if up_axis == 0:
        return np.array([fz, fx, fy])
    if up_axis == 1:
        return np.array([fx, fz, fy])
    return np.array([fx, fy, fz])


def apply_energy_clamp(
    forces: Tuple[float, float, float, float],
    velocity: Sequence[float],
    dt: float,
    ceiling: float,
    up_axis: int = 2,
) -> Tuple[Tuple[float, float, float, float], float, bool, float]:
    """
    Uniformly rescale forces whose per-tick work exceeds the ceiling.

    Args:
        forces: (fx, fy, fz, mz)
        velocity: World velocity [m/s]
        dt: Timestep [s]
        ceiling: Energy ceiling [J]
        up_axis: Vertical axis index of velocity

    Returns:
        (scaled forces, energy, clamped, scale)
    """
    fx, fy, fz, mz = forces
    v = np.asarray(velocity, dtype=float).reshape(3)
    if not np.all(np.isfinite(v)):
        v = np.zeros(3)

    energy = float(force_in_velocity_axes(fx, fy, fz, up_axis) @ v) * dt
    magnitude = abs(energy)
    if ceiling > 0.0 and magnitude > ceiling:
        scale = ceiling / magnitude
        return (fx * scale, fy * scale, fz * scale, mz * scale), energy, True, scale
    return forces, energy, False, 1.0


class ForceSolver:
    """
    Stateless force synthesis; safe to share across wheels.

    Richer tire models can subclass and override `_normal_forces`.
    """

    def __init__(self, config: Optional[SolverConfig] = None):
        self.config = config or SolverConfig()

    def classify(self, patch: ContactPatch, contact_state: Optional[ContactState] = None) -> SolverRegime:
        """Select the policy: from the contact state if given, else the no-ground gate."""
        if contact_state is not None:
            no_ground = contact_state is ContactState.AIRBORNE
        else:
            no_ground = is_no_ground(patch, self.config.min_confidence)
        return SolverRegime.EMERGENCY if no_ground else SolverRegime.NORMAL

    def solve(
        self,
        patch: ContactPatch,
        dt: float,
        velocity: Sequence[float],
        previous_vertical_force: float,
        slip: Optional[Sequence[float]] = None,
        grip_multiplier: float = 1.0,
        contact_state: Optional[ContactState] = None,
    ) -> ForceResult:
        """
        Compute forces for one tick.

        Args:
            patch: Fused (optionally contract-adjusted) patch
            dt: Timestep [s]
            velocity: World velocity [m/s]
            previous_vertical_force: Last tick's fz [N]
            slip: Slip to use instead of the patch's raw slip (e.g. lagged)
            grip_multiplier: Scales the friction coefficient (hysteresis grip)
            contact_state: Explicit state from the regime machine

        Returns:
            ForceResult
        """
        c = self.config
        dt = max(float(dt), 0.0)
        regime = self.classify(patch, contact_state)
        diagnostics = SolverDiagnostics(
            regime=regime,
            contact_state=contact_state,
            patch_confidence=patch.confidence,
            contract_id=patch.contract_id,
        )

        if regime is SolverRegime.EMERGENCY:
            t = float(np.clip(dt * c.emergency_falloff, 0.0, 1.0))
            forces = (0.0, 0.0, _lerp(float(previous_vertical_force), 0.0, t), 0.0)
            diagnostics.safety_reason = 'no_ground'
        else:
            forces = self._normal_forces(patch, slip, grip_multiplier)

        forces, energy, clamped, scale = apply_energy_clamp(
            forces, velocity, dt, c.energy_ceiling, c.velocity_up_axis)
        diagnostics.energy = energy
        diagnostics.energy_clamped = clamped
        diagnostics.energy_scale = scale

        fx, fy, fz, mz = forces
        return ForceResult(
            fx=fx,
            fy=fy,
            fz=fz,
            mz=mz,
            center_of_pressure=np.array(patch.center_world, dtype=float),
            confidence=patch.confidence,
            diagnostics=diagnostics,
        )

    def _normal_forces(
        self,
        patch: ContactPatch,
        slip: Optional[Sequence[float]],
        grip_multiplier: float,
    ) -> Tuple[float, float, float, float]:
        c = self.config

        fz = max(0.0, c.stiffness * patch.penetration_avg + c.damping * patch.penetration_rate)

        s = np.asarray(patch.slip if slip is None else slip, dtype=float)
        fx = float(s[0]) * fz * c.longitudinal_gain
        fy = float(s[1]) * fz * c.lateral_gain
        fx, fy = apply_friction_circle(fx, fy, fz, c.friction_coefficient * max(grip_multiplier, 0.0))

        # First-order aligning torque
        mz = fy * float(patch.center_local[0])
        return fx, fy, fz, mz
