"""
Contact Samples

A sample is a single contact observation delivered by a reader:
- Dense "shader" grid samples (rendered depth/normal textures)
- Sparse ray samples (physics ray casts)

Frame convention (wheel frame):
- x: longitudinal (forward)
- y: lateral
- z: vertical (up)

Slip vectors are stored as (longitudinal, lateral).
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple, Union


UP = np.array([0.0, 0.0, 1.0])


class SampleSource(Enum):
    """Origin of a contact sample."""
    SHADER = "shader"  # Dense grid samples
    RAYCAST = "raycast"  # Sparse ray samples


def _frozen_vector(values, size: int) -> np.ndarray:
    """Copy into a read-only float array of fixed size."""
    vec = np.array(values, dtype=float).reshape(size)
    vec.setflags(write=False)
    return vec


@dataclass(frozen=True, eq=False)
class Sample:
    """Single contact observation. Immutable after creation."""

    local_position: np.ndarray = field(default_factory=lambda: np.zeros(3))  # m, wheel frame
    local_normal: np.ndarray = field(default_factory=lambda: UP.copy())
    world_position: np.ndarray = field(default_factory=lambda: np.zeros(3))  # m
    world_normal: np.ndarray = field(default_factory=lambda: UP.copy())
    penetration: float = 0.0  # m, >= 0
    penetration_rate: float = 0.0  # m/s
    confidence: float = 0.0  # [0, 1]
    slip: np.ndarray = field(default_factory=lambda: np.zeros(2))  # (long, lat)
    source: SampleSource = SampleSource.SHADER
    grid_index: Tuple[int, int] = (0, 0)
    timestamp: float = 0.0
    valid: bool = True

    def __post_init__(self):
        object.__setattr__(self, 'local_position', _frozen_vector(self.local_position, 3))
        object.__setattr__(self, 'local_normal', _frozen_vector(self.local_normal, 3))
        object.__setattr__(self, 'world_position', _frozen_vector(self.world_position, 3))
        object.__setattr__(self, 'world_normal', _frozen_vector(self.world_normal, 3))
        object.__setattr__(self, 'slip', _frozen_vector(self.slip, 2))
        object.__setattr__(self, 'grid_index', tuple(int(i) for i in self.grid_index))

    @property
    def is_finite(self) -> bool:
        return bool(
            np.isfinite(self.penetration)
            and np.isfinite(self.confidence)
            and np.isfinite(self.penetration_rate)
            and np.all(np.isfinite(self.local_position))
            and np.all(np.isfinite(self.world_position))
            and np.all(np.isfinite(self.slip))
        )

    @property
    def weight(self) -> float:
        """Contact weight: max(penetration, 0) * clamp(confidence, 0, 1)."""
        if not self.valid or not self.is_finite or self.penetration <= 0.0:
            return 0.0
        return max(self.penetration, 0.0) * float(np.clip(self.confidence, 0.0, 1.0))


SampleSet = Union[Sequence[Sample], Mapping[str, Sequence[Sample]]]


def flatten_sources(samples: SampleSet) -> List[Sample]:
    """
    Merge any number of sample sources into one ordered list.

    Args:
        samples: Flat sequence, or mapping of source name -> sequence

    Returns:
        List of samples (mapping order preserved)
    """
    if isinstance(samples, Mapping):
        merged = []
        for source_samples in samples.values():
            merged.extend(source_samples)
        return merged
    return list(samples)


def count_ray_samples(samples: Iterable[Sample]) -> int:
    """Number of valid ray samples in a set."""
    return sum(1 for s in samples if s.source is SampleSource.RAYCAST and s.valid)


# === SYNTHETIC READERS ===
# Stand-ins for texture/ray readers, used by replay scenarios and tests.

def make_grid_samples(
    penetration: float,
    confidence: float = 1.0,
    slip: Tuple[float, float] = (0.0, 0.0),
    grid: Tuple[int, int] = (5, 3),
    length: float = 0.2,
    width: float = 0.3,
    penetration_rate: float = 0.0,
    wheel_origin: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    timestamp: float = 0.0,
    pitch: float = 0.0,
) -> List[Sample]:
    """
    Build a dense shader grid over a flat contact footprint.

    Args:
        penetration: Penetration depth at the footprint center [m]
        confidence: Per-sample confidence [0, 1]
        slip: (longitudinal, lateral) slip shared by all samples
        grid: (rows along x, columns along y)
        length: Footprint length along x [m]
        width: Footprint width along y [m]
        penetration_rate: Penetration velocity [m/s]
        wheel_origin: World position of the wheel-frame origin
        timestamp: Sample timestamp
        pitch: Penetration gradient along x [m/m]; shifts the center of pressure

    Returns:
        List of SHADER samples
    """
    rows, cols = grid
    origin = np.array(wheel_origin, dtype=float)
    xs = np.linspace(-length / 2.0, length / 2.0, rows) if rows > 1 else np.zeros(1)
    ys = np.linspace(-width / 2.0, width / 2.0, cols) if cols > 1 else np.zeros(1)

    samples = []
    for i, x in enumerate(xs):
        for j, y in enumerate(ys):
            depth = max(penetration + pitch * x, 0.0)
            local = np.array([x, y, -depth])
            samples.append(Sample(
                local_position=local,
                local_normal=UP,
                world_position=origin + local,
                world_normal=UP,
                penetration=depth,
                penetration_rate=penetration_rate,
                confidence=confidence,
                slip=slip,
                source=SampleSource.SHADER,
                grid_index=(i, j),
                timestamp=timestamp,
                valid=depth > 0.0,
            ))
    return samples


def make_ray_samples(
    penetration: float,
    count: int = 3,
    confidence: float = 1.0,
    slip: Tuple[float, float] = (0.0, 0.0),
    width: float = 0.3,
    penetration_rate: float = 0.0,
    wheel_origin: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    timestamp: float = 0.0,
) -> List[Sample]:
    """Build sparse ray samples spread across the tire width."""
    origin = np.array(wheel_origin, dtype=float)
    ys = np.linspace(-width / 2.0, width / 2.0, count) if count > 1 else np.zeros(max(count, 0))
    hit = penetration > 0.0

    samples = []
    for k, y in enumerate(ys):
        local = np.array([0.0, y, -max(penetration, 0.0)])
        samples.append(Sample(
            local_position=local,
            local_normal=UP,
            world_position=origin + local,
            world_normal=UP,
            penetration=max(penetration, 0.0),
            penetration_rate=penetration_rate,
            confidence=confidence,
            slip=slip,
            source=SampleSource.RAYCAST,
            grid_index=(k, 0),
            timestamp=timestamp,
            valid=hit,
        ))
    return samples


def samples_from_dict(spec: Dict, timestamp: float = 0.0) -> Dict[str, List[Sample]]:
    """
    Build per-source samples from a scenario mapping.

    Example:
        {'shader': {'penetration': 0.02, 'grid': [5, 3]},
         'raycast': {'penetration': 0.02, 'count': 3}}
    """
    sources = {}
    if 'shader' in spec and spec['shader'] is not None:
        params = dict(spec['shader'])
        if 'grid' in params:
            params['grid'] = tuple(params['grid'])
        if 'slip' in params:
            params['slip'] = tuple(params['slip'])
        sources['shader'] = make_grid_samples(timestamp=timestamp, **params)
    if 'raycast' in spec and spec['raycast'] is not None:
        params = dict(spec['raycast'])
        if 'slip' in params:
            params['slip'] = tuple(params['slip'])
        sources['raycast'] = make_ray_samples(timestamp=timestamp, **params)
    return sources
