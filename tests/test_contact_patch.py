"""
Tests for contact patch aggregation.

Run with: pytest tests/test_contact_patch.py -v
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from tire_contact.contact.patch import (
    PatchConventions,
    aggregate_patch,
    normalize_weights,
    world_center_of_pressure,
)
from tire_contact.contact.samples import (
    Sample,
    SampleSource,
    flatten_sources,
    make_grid_samples,
    make_ray_samples,
)


def _sample(x, penetration, confidence=1.0, valid=True, source=SampleSource.SHADER, **kwargs):
    local = np.array([x, 0.0, -penetration])
    return Sample(
        local_position=local,
        world_position=local + np.array([10.0, 5.0, 0.0]),
        penetration=penetration,
        confidence=confidence,
        valid=valid,
        source=source,
        **kwargs
    )


def _assert_safe_default(patch):
    assert patch.confidence == 0.0
    assert np.array_equal(patch.normal_local, [0.0, 0.0, 1.0])
    assert np.array_equal(patch.normal_world, [0.0, 0.0, 1.0])
    assert np.array_equal(patch.center_local, np.zeros(3))
    assert np.array_equal(patch.slip, np.zeros(2))
    assert not patch.has_contact
    for value in (patch.penetration_avg, patch.penetration_max, patch.total_weight, patch.contact_area):
        assert np.isfinite(value)


def test_empty_input_gives_safe_defaults():
    """No samples at all."""
    patch = aggregate_patch([])
    _assert_safe_default(patch)
    assert patch.weights.size == 0


def test_zero_weight_input_gives_safe_defaults():
    """Invalid, zero-penetration and zero-confidence samples contribute nothing."""
    samples = [
        _sample(0.0, 0.02, valid=False),
        _sample(0.1, 0.0),
        _sample(-0.1, 0.03, confidence=0.0),
    ]
    patch = aggregate_patch(samples)

    _assert_safe_default(patch)
    assert np.array_equal(patch.weights, np.zeros(3))


def test_normalized_weights_sum_to_one():
    samples = make_grid_samples(penetration=0.02, pitch=0.05, grid=(7, 4))
    patch = aggregate_patch(samples)

    assert abs(np.sum(patch.weights) - 1.0) < 1e-9
    assert patch.weights.size == len(samples)


def test_aggregation_is_idempotent():
    """Same input twice gives bit-identical output."""
    samples = make_grid_samples(penetration=0.02, confidence=0.8, slip=(0.05, -0.02), pitch=0.1)
    samples += make_ray_samples(penetration=0.018, confidence=0.6)

    a = aggregate_patch(samples)
    b = aggregate_patch(samples)

    for name in ('center_local', 'center_world', 'normal_local', 'normal_world', 'slip', 'weights'):
        assert np.array_equal(getattr(a, name), getattr(b, name)), name
    for name in ('penetration_avg', 'penetration_max', 'penetration_rate', 'total_weight', 'confidence'):
        assert getattr(a, name) == getattr(b, name), name


def test_confidence_is_mean_of_contributing_samples():
    """Excluded samples must not dilute confidence."""
    samples = [
        _sample(0.0, 0.02, confidence=0.8),
        _sample(0.1, 0.02, confidence=0.6),
        _sample(0.2, 0.02, confidence=1.0, valid=False),
        _sample(0.3, 0.0, confidence=1.0),
    ]
    patch = aggregate_patch(samples)

    assert abs(patch.confidence - 0.7) < 1e-12
    assert patch.contributing_count == 2


def test_weighted_center_local_and_world_agree():
    """Penetration 0.01 and 0.03 give weights 0.25/0.75."""
    samples = [_sample(-0.1, 0.01), _sample(0.1, 0.03)]
    patch = aggregate_patch(samples)

    assert np.allclose(patch.weights, [0.25, 0.75])
    assert abs(patch.center_local[0] - 0.05) < 1e-12
    assert np.allclose(patch.center_world - patch.center_local, [10.0, 5.0, 0.0])
    assert np.allclose(world_center_of_pressure(patch, samples), patch.center_world)
    assert abs(patch.total_weight - 0.04) < 1e-12
    assert abs(patch.penetration_avg - 0.025) < 1e-12
    assert patch.penetration_max == 0.03


def test_average_normal_is_renormalized():
    tilt = np.array([0.6, 0.0, 0.8])
    samples = [
        _sample(0.0, 0.02, local_normal=tilt, world_normal=tilt),
        _sample(0.1, 0.02, local_normal=[0.0, 0.0, 1.0], world_normal=[0.0, 0.0, 1.0]),
    ]
    patch = aggregate_patch(samples)

    assert abs(np.linalg.norm(patch.normal_local) - 1.0) < 1e-12
    assert abs(np.linalg.norm(patch.normal_world) - 1.0) < 1e-12
    assert patch.normal_local[0] > 0.0


def test_non_finite_samples_are_ignored():
    samples = [_sample(0.0, 0.02), _sample(0.1, float('nan'))]
    patch = aggregate_patch(samples)

    assert patch.contributing_count == 1
    assert np.all(np.isfinite(patch.center_local))
    assert patch.weights[1] == 0.0


def test_contact_threshold_convention():
    """Penetration below the threshold is not contact."""
    patch = aggregate_patch(
        [_sample(0.0, 0.02)],
        PatchConventions(contact_penetration_threshold=0.03),
    )
    assert patch.confidence == 0.0


def test_ray_samples_counted():
    samples = make_grid_samples(penetration=0.02) + make_ray_samples(penetration=0.02, count=4)
    patch = aggregate_patch(samples)
    assert patch.ray_count == 4

    missed = make_ray_samples(penetration=0.0, count=4)
    assert aggregate_patch(missed).ray_count == 0


def test_normalize_weights():
    out = normalize_weights([1.0, 1.0, 2.0])
    assert abs(np.sum(out) - 1.0) < 1e-12
    assert np.allclose(out, [0.25, 0.25, 0.5])

    assert np.array_equal(normalize_weights([0.0, 0.0]), np.zeros(2))
    assert np.array_equal(normalize_weights([1e-9, 1e-9]), np.zeros(2))

    dropped = normalize_weights([0.5, 2.0, 2.0], PatchConventions(min_positive_weight=1.0))
    assert np.allclose(dropped, [0.0, 0.5, 0.5])


def test_flatten_sources_accepts_any_number_of_sources():
    sources = {
        'shader': make_grid_samples(penetration=0.02, grid=(2, 2)),
        'raycast': make_ray_samples(penetration=0.02, count=2),
        'extra': [_sample(0.0, 0.01)],
    }
    flat = flatten_sources(sources)
    assert len(flat) == 7
    assert aggregate_patch(flat).sample_count == 7


def test_samples_are_immutable():
    sample = _sample(0.0, 0.02)
    try:
        sample.local_position[0] = 1.0
        mutated = True
    except ValueError:
        mutated = False
    assert not mutated


def test_excluded_sample_with_non_finite_position():
    """A missed ray with NaN positions must not poison the world center."""
    nan3 = [float('nan')] * 3
    missed = Sample(
        local_position=nan3,
        world_position=nan3,
        source=SampleSource.RAYCAST,
        valid=False,
    )
    samples = [_sample(0.05, 0.02), missed]
    patch = aggregate_patch(samples)

    assert np.all(np.isfinite(patch.center_local))
    assert np.all(np.isfinite(patch.center_world))
    assert np.allclose(patch.center_world, [10.05, 5.0, -0.02])
    assert np.allclose(world_center_of_pressure(patch, samples), patch.center_world)
