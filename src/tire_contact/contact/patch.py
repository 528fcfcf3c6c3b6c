"""
Contact Patch Aggregation

Fuses one tick's samples (any number of sources) into a single weighted
contact description:
- Center of pressure (local and world)
- Average normal (local and world, re-normalized)
- Penetration statistics
- Weighted slip
- Confidence and contact area

Aggregation is a pure function of its inputs.
"""

import numpy as np
from dataclasses import dataclass, field, asdict, replace
from typing import Dict, Optional, Sequence

from tire_contact.contact.samples import Sample, UP, count_ray_samples


@dataclass
class PatchConventions:
    """Numeric conventions shared by aggregation and the radius model."""

    epsilon: float = 1.0e-6  # Guard for divisions
    min_stiffness: float = 1.0e-4  # N/m, floor for compression estimates
    min_positive_weight: float = 0.0  # Weights at or below are dropped
    contact_penetration_threshold: float = 0.0  # m, samples must exceed this
    contact_area_scale: float = 1.0  # Area per unit contact weight

    def to_dict(self) -> Dict:
        return asdict(self)


def normalize_weights(
    weights: Sequence[float],
    conventions: Optional[PatchConventions] = None,
) -> np.ndarray:
    """
    Normalize weights to sum to one.

    Weights at or below the minimum positive weight map to zero. If the
    remaining sum is at or below epsilon, every entry is zero.

    Args:
        weights: Raw weights
        conventions: Numeric conventions (defaults if None)

    Returns:
        Array of normalized weights, same length as input
    """
    conv = conventions or PatchConventions()
    w = np.asarray(weights, dtype=float).reshape(-1)
    positive = w > conv.min_positive_weight
    total = float(np.sum(w[positive])) if w.size else 0.0

    if total <= conv.epsilon:
        return np.zeros(w.size)

    return np.where(positive, w / total, 0.0)


@dataclass(frozen=True, eq=False)
class ContactPatch:
    """Fused contact description for one tick."""

    center_local: np.ndarray = field(default_factory=lambda: np.zeros(3))  # m
    center_world: np.ndarray = field(default_factory=lambda: np.zeros(3))  # m
    normal_local: np.ndarray = field(default_factory=lambda: UP.copy())
    normal_world: np.ndarray = field(default_factory=lambda: UP.copy())
    penetration_avg: float = 0.0  # m, weighted
    penetration_max: float = 0.0  # m
    penetration_rate: float = 0.0  # m/s, mean over contributing samples
    slip: np.ndarray = field(default_factory=lambda: np.zeros(2))  # (long, lat)
    total_weight: float = 0.0
    weights: np.ndarray = field(default_factory=lambda: np.zeros(0))  # Normalized, per input sample
    confidence: float = 0.0  # Mean over contributing samples
    contact_area: float = 0.0
    sample_count: int = 0
    contributing_count: int = 0
    ray_count: int = 0  # Valid ray samples in the input
    timestamp: float = 0.0

    # Extension fields, written only by the influence layer
    width_scale: float = 1.0
    contract_id: Optional[str] = None
    adjusted: bool = False

    @property
    def has_contact(self) -> bool:
        return self.contributing_count > 0 and self.total_weight > 0.0

    @property
    def effective_area(self) -> float:
        return self.contact_area * self.width_scale

    @property
    def slip_magnitude(self) -> float:
        return float(np.linalg.norm(self.slip))

    def get_state(self) -> Dict:
        """Diagnostic snapshot for telemetry overlays."""
        return {
            'confidence': self.confidence,
            'penetration_avg': self.penetration_avg,
            'penetration_max': self.penetration_max,
            'penetration_rate': self.penetration_rate,
            'total_weight': self.total_weight,
            'contact_area': self.effective_area,
            'contributing_samples': self.contributing_count,
            'ray_samples': self.ray_count,
            'adjusted': self.adjusted,
            'contract_id': self.contract_id,
        }


def _sample_weight(sample: Sample, conventions: PatchConventions) -> float:
    if not sample.valid or not sample.is_finite:
        return 0.0
    if sample.penetration <= conventions.contact_penetration_threshold:
        return 0.0
    return sample.weight


def _unit_or_up(vector: np.ndarray, epsilon: float) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm <= epsilon or not np.isfinite(norm):
        return UP.copy()
    return vector / norm


def world_center_of_pressure(
    patch: ContactPatch,
    samples: Sequence[Sample],
) -> np.ndarray:
    """
    World-space center of pressure.

    Second pass over the original sample positions using the patch's
    normalized weights, so local and world centers share one weighting.
    """
    if not patch.has_contact or len(samples) != patch.weights.size:
        return np.zeros(3)

    # Excluded samples may carry non-finite positions; 0 * nan is nan
    used = patch.weights > 0.0
    positions = np.array([s.world_position for s, u in zip(samples, used) if u], dtype=float)
    return patch.weights[used] @ positions


def aggregate_patch(
    samples: Sequence[Sample],
    conventions: Optional[PatchConventions] = None,
    timestamp: float = 0.0,
) -> ContactPatch:
    """
    Aggregate samples into a contact patch in O(n).

    Args:
        samples: Samples from all sources for this tick
        conventions: Numeric conventions (defaults if None)
        timestamp: Tick timestamp stored on the patch

    Returns:
        ContactPatch (safe defaults when nothing contributes)
    """
    conv = conventions or PatchConventions()
    samples = list(samples)
    n = len(samples)
    ray_count = count_ray_samples(samples)

    raw = np.array([_sample_weight(s, conv) for s in samples], dtype=float)
    weights = normalize_weights(raw, conv)
    contributing = weights > 0.0
    total_weight = float(np.sum(raw[contributing])) if n else 0.0

    if n == 0 or not np.any(contributing):
        return ContactPatch(
            weights=np.zeros(n),
            sample_count=n,
            ray_count=ray_count,
            timestamp=timestamp,
        )

    used = [s for s, c in zip(samples, contributing) if c]
    w = weights[contributing]

    local_positions = np.array([s.local_position for s in used])
    local_normals = np.array([s.local_normal for s in used])
    world_normals = np.array([s.world_normal for s in used])
    slips = np.array([s.slip for s in used])
    penetrations = np.array([s.penetration for s in used])

    # Pre-normalized weights, so weighted sums are already averages
    center_local = w @ local_positions
    normal_local = _unit_or_up(w @ local_normals, conv.epsilon)
    normal_world = _unit_or_up(w @ world_normals, conv.epsilon)
    slip = w @ slips

    patch = ContactPatch(
        center_local=center_local,
        normal_local=normal_local,
        normal_world=normal_world,
        penetration_avg=float(w @ penetrations),
        penetration_max=float(np.max(penetrations)),
        penetration_rate=float(np.mean([s.penetration_rate for s in used])),
        slip=slip,
        total_weight=total_weight,
        weights=weights,
        confidence=float(np.mean([np.clip(s.confidence, 0.0, 1.0) for s in used])),
        contact_area=total_weight * conv.contact_area_scale,
        sample_count=n,
        contributing_count=len(used),
        ray_count=ray_count,
        timestamp=timestamp,
    )

    return replace(patch, center_world=world_center_of_pressure(patch, samples))
