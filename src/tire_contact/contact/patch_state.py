"""
Contact Patch State

Temporal memory wrapped around successive patch aggregations:
- Stored energy (slip/penetration work, capped)
- Residual energy (short-term shock memory)
- Hysteresis factor (grip damping, 0.7-1.0)
- Lagged slip (exponentially smoothed toward raw slip)

Patch rebuilds and hysteresis updates are separate calls so that
hysteresis survives ticks with no samples (sensor dropout).
"""

import logging

import numpy as np
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Sequence

from tire_contact.contact.patch import ContactPatch, PatchConventions, aggregate_patch
from tire_contact.contact.samples import Sample


logger = logging.getLogger(__name__)


@dataclass
class HysteresisConfig:
    """Hysteresis and slip-lag parameters."""

    # Energy storage
    max_stored_energy: float = 5000.0  # J, ceiling
    slip_activation_threshold: float = 0.05  # Slip magnitude before accrual
    slip_energy_gain: float = 0.02  # x slip * load * dt
    penetration_energy_gain: float = 0.01  # x penetration * stiffness * dt
    residual_gain: float = 2000.0  # x change in slip magnitude
    residual_slip_threshold: float = 0.02  # Minimum slip change for residual
    residual_weight: float = 0.3  # Residual share in hysteresis drive

    # Decay rates [1/s]
    fast_recovery_rate: float = 4.0
    slow_recovery_rate: float = 0.8
    residual_decay_rate: float = 6.0
    slow_recovery_threshold: float = 0.5  # Normalized energy above which recovery is slow

    # Grip
    hysteresis_floor: float = 0.7
    confidence_grip_floor: float = 0.5

    # Slip lag
    slip_lag_rate: float = 12.0  # 1/s
    slip_noise_gain: float = 0.002  # Noise amplitude at full residual energy

    def to_dict(self) -> Dict:
        return asdict(self)


def _lerp(a: float, b: float, t: float) -> float:
    return a + (b - a) * t


def deterministic_slip_noise(residual_energy: float, lagged_slip: np.ndarray, amplitude: float) -> np.ndarray:
    """
    Directional noise offset, a pure function of its inputs.

    Hash-style phase from (residual_energy, lagged_slip), so replays
    reproduce the same offset.
    """
    if amplitude <= 0.0:
        return np.zeros(2)
    seed = residual_energy * 12.9898 + lagged_slip[0] * 78.233 + lagged_slip[1] * 37.719
    phase = np.sin(seed) * 43758.5453
    angle = 2.0 * np.pi * (phase - np.floor(phase))
    return amplitude * np.array([np.cos(angle), np.sin(angle)])


class ContactPatchState:
    """
    Per-wheel temporal contact state.

    Not thread-safe: one instance per wheel tick sequence.
    """

    def __init__(
        self,
        config: Optional[HysteresisConfig] = None,
        conventions: Optional[PatchConventions] = None,
    ):
        self.config = config or HysteresisConfig()
        self.conventions = conventions or PatchConventions()
        self.reset()

    def reset(self):
        """Clear patch and hysteresis."""
        self.reset_patch()
        self.reset_hysteresis()

    def reset_patch(self):
        """Clear patch aggregates only; hysteresis is kept (respawn/teleport)."""
        self.patch = ContactPatch()
        self.timestamp = 0.0
        self._built = False

    def reset_hysteresis(self):
        """
        Zero all temporal memory.

        Only for discontinuous repositioning, never per tick.
        """
        self.stored_energy = 0.0
        self.residual_energy = 0.0
        self.hysteresis_factor = 1.0
        self.lagged_slip = np.zeros(2)
        self.last_slip_magnitude = 0.0

    # === PATCH ===

    def rebuild(self, samples: Sequence[Sample], timestamp: float = 0.0) -> ContactPatch:
        """Aggregate this tick's samples and adopt the result."""
        patch = aggregate_patch(samples, self.conventions, timestamp=timestamp)
        return self.adopt_patch(patch, timestamp)

    def adopt_patch(self, patch: ContactPatch, timestamp: Optional[float] = None) -> ContactPatch:
        """Adopt an aggregated (possibly contract-adjusted) patch."""
        self.patch = patch
        self.timestamp = patch.timestamp if timestamp is None else timestamp

        # No artificial lag at cold start
        if not self._built:
            self.lagged_slip = np.array(patch.slip, dtype=float)
            self.last_slip_magnitude = patch.slip_magnitude
            self._built = True

        return patch

    @property
    def is_valid(self) -> bool:
        return self.patch.has_contact

    # === HYSTERESIS ===

    def update_hysteresis(self, dt: float, load: float, stiffness: float):
        """
        Advance temporal memory by one tick.

        Args:
            dt: Timestep [s]
            load: Vertical load [N]
            stiffness: Vertical tire stiffness [N/m]
        """
        c = self.config
        dt = max(float(dt), 0.0)
        raw_slip = np.array(self.patch.slip, dtype=float)

        if not self.is_valid:
            self.stored_energy *= np.exp(-c.fast_recovery_rate * dt)
            self.residual_energy *= np.exp(-c.residual_decay_rate * dt)
            self.lagged_slip = raw_slip
            self._update_factor()
            return

        slip_magnitude = self.patch.slip_magnitude

        # Energy accrual
        if slip_magnitude > c.slip_activation_threshold:
            self.stored_energy += c.slip_energy_gain * slip_magnitude * max(load, 0.0) * dt
        if self.patch.penetration_max > 0.0:
            self.stored_energy += c.penetration_energy_gain * self.patch.penetration_max * max(stiffness, 0.0) * dt

        slip_change = abs(slip_magnitude - self.last_slip_magnitude)
        if slip_change > c.residual_slip_threshold:
            self.residual_energy += c.residual_gain * slip_change
            logger.debug(
                "Slip transient captured as residual energy.",
                extra={
                    "event": "patch_state.slip_transient",
                    "slip_change": slip_change,
                    "residual_energy": self.residual_energy,
                },
            )
        self.residual_energy = min(self.residual_energy, c.max_stored_energy)
        self.last_slip_magnitude = slip_magnitude

        self.stored_energy = min(self.stored_energy, c.max_stored_energy)

        # Asymmetric release: slow while heavily loaded
        if self.normalized_energy > c.slow_recovery_threshold:
            rate = c.slow_recovery_rate
        else:
            rate = c.fast_recovery_rate
        self.stored_energy *= np.exp(-rate * dt)
        self.residual_energy *= np.exp(-c.residual_decay_rate * dt)

        self._update_factor()

        # Slip lag
        alpha = 1.0 - np.exp(-c.slip_lag_rate * dt)
        self.lagged_slip = self.lagged_slip + (raw_slip - self.lagged_slip) * alpha

        if self.residual_energy > 0.0:
            amplitude = c.slip_noise_gain * min(self.residual_energy / c.max_stored_energy, 1.0)
            self.lagged_slip = self.lagged_slip + deterministic_slip_noise(
                self.residual_energy, self.lagged_slip, amplitude
            )

    @property
    def normalized_energy(self) -> float:
        if self.config.max_stored_energy <= 0.0:
            return 0.0
        return self.stored_energy / self.config.max_stored_energy

    def _update_factor(self):
        c = self.config
        if c.max_stored_energy <= 0.0:
            self.hysteresis_factor = 1.0
            return
        drive = (self.stored_energy + c.residual_weight * self.residual_energy) / c.max_stored_energy
        # sqrt softens the onset
        self.hysteresis_factor = _lerp(1.0, c.hysteresis_floor, np.sqrt(np.clip(drive, 0.0, 1.0)))

    def effective_grip(self) -> float:
        """Hysteresis factor scaled down further by low patch confidence."""
        confidence = float(np.clip(self.patch.confidence, 0.0, 1.0))
        return self.hysteresis_factor * _lerp(self.config.confidence_grip_floor, 1.0, confidence)

    def get_state(self) -> Dict:
        """Hysteresis/energy snapshot for telemetry."""
        return {
            'stored_energy': self.stored_energy,
            'residual_energy': self.residual_energy,
            'hysteresis_factor': self.hysteresis_factor,
            'effective_grip': self.effective_grip(),
            'lagged_slip': self.lagged_slip.copy(),
            'last_slip_magnitude': self.last_slip_magnitude,
            'valid': self.is_valid,
        }
