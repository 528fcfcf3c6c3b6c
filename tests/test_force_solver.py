"""
Tests for the contact force solver.

Run with: pytest tests/test_force_solver.py -v
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from tire_contact.contact.patch import ContactPatch, aggregate_patch
from tire_contact.contact.regime import ContactState
from tire_contact.contact.samples import Sample, make_grid_samples, make_ray_samples
from tire_contact.physics.force_solver import (
    ForceResult,
    ForceSolver,
    SolverConfig,
    SolverRegime,
    apply_energy_clamp,
    apply_friction_circle,
    force_in_velocity_axes,
)


ZERO_VELOCITY = np.zeros(3)


def _single_sample_patch(penetration=0.02, penetration_rate=0.0):
    return aggregate_patch([Sample(
        local_position=[0.0, 0.0, -penetration],
        world_position=[1.0, 2.0, -penetration],
        penetration=penetration,
        penetration_rate=penetration_rate,
        confidence=1.0,
    )])


def test_emergency_decay_reaches_zero():
    """prev 1000 N, dt 0.1 s, falloff 10/s: decay factor saturates at 1."""
    solver = ForceSolver()
    result = solver.solve(ContactPatch(), 0.1, ZERO_VELOCITY, previous_vertical_force=1000.0)

    assert result.fz == 0.0
    assert result.fx == 0.0 and result.fy == 0.0 and result.mz == 0.0
    assert result.diagnostics.regime is SolverRegime.EMERGENCY
    assert result.diagnostics.safety_reason == 'no_ground'


def test_emergency_decay_partial():
    solver = ForceSolver()
    result = solver.solve(ContactPatch(), 0.05, ZERO_VELOCITY, previous_vertical_force=1000.0)

    assert np.isclose(result.fz, 500.0)
    assert 0.0 <= result.fz <= 1000.0


def test_single_sample_spring_damper():
    solver = ForceSolver()
    patch = _single_sample_patch(penetration=0.02, penetration_rate=0.1)
    result = solver.solve(patch, 0.01, ZERO_VELOCITY, previous_vertical_force=0.0)

    assert result.diagnostics.regime is SolverRegime.NORMAL
    assert np.isclose(result.fz, 200000.0 * 0.02 + 3000.0 * 0.1)
    assert result.fx == 0.0 and result.fy == 0.0 and result.mz == 0.0
    assert not result.diagnostics.energy_clamped
    assert np.allclose(result.center_of_pressure, [1.0, 2.0, -0.02])


def test_vertical_force_never_negative():
    solver = ForceSolver()
    patch = _single_sample_patch(penetration=0.001, penetration_rate=-5.0)
    result = solver.solve(patch, 0.01, ZERO_VELOCITY, previous_vertical_force=0.0)
    assert result.fz == 0.0


def test_friction_circle_preserves_direction():
    fx, fy = apply_friction_circle(800.0, 800.0, 1000.0, 1.0)

    assert np.isclose(np.hypot(fx, fy), 1000.0)
    assert np.isclose(fx, fy)

    # Inside the circle: unchanged
    assert apply_friction_circle(300.0, -400.0, 1000.0, 1.0) == (300.0, -400.0)


def test_grip_multiplier_limits_tangential_force():
    solver = ForceSolver()
    patch = aggregate_patch(make_grid_samples(penetration=0.02, slip=(0.5, 0.0)))
    result = solver.solve(patch, 0.01, ZERO_VELOCITY, 0.0, grip_multiplier=0.5)

    assert np.isclose(abs(result.fx), 0.5 * result.fz)
    assert result.fx > 0.0


def test_aligning_torque_from_cop_offset():
    solver = ForceSolver()
    patch = aggregate_patch(make_grid_samples(penetration=0.02, slip=(0.0, 0.05), pitch=0.05))
    result = solver.solve(patch, 0.01, ZERO_VELOCITY, 0.0)

    assert patch.center_local[0] > 0.0
    assert result.fy > 0.0
    assert np.isclose(result.mz, result.fy * patch.center_local[0])


def test_energy_clamp_scales_uniformly():
    solver = ForceSolver(SolverConfig(energy_ceiling=1.0))
    patch = _single_sample_patch(penetration=0.02)
    velocity = np.array([0.0, 0.0, -1.0])
    result = solver.solve(patch, 0.01, velocity, 0.0)

    diag = result.diagnostics
    assert diag.energy_clamped
    assert np.isclose(diag.energy, -40.0)
    assert np.isclose(diag.energy_scale, 1.0 / 40.0)
    assert np.isclose(result.fz, 100.0)
    assert np.isclose(abs(result.fz * velocity[2] * 0.01), 1.0)


def test_energy_clamp_helper():
    forces = (100.0, 0.0, 1000.0, 5.0)
    out, energy, clamped, scale = apply_energy_clamp(forces, [10.0, 0.0, 0.0], 0.01, 5000.0)
    assert out == forces
    assert np.isclose(energy, 10.0)
    assert not clamped and scale == 1.0

    out, energy, clamped, scale = apply_energy_clamp(forces, [10.0, 0.0, 0.0], 0.01, 5.0)
    assert clamped
    assert np.isclose(scale, 0.5)
    assert np.allclose(out, [50.0, 0.0, 500.0, 2.5])


def test_velocity_axis_reorder():
    assert np.array_equal(force_in_velocity_axes(1.0, 2.0, 3.0), [1.0, 2.0, 3.0])
    assert np.array_equal(force_in_velocity_axes(1.0, 2.0, 3.0, up_axis=1), [1.0, 3.0, 2.0])


def test_emergency_gate_requires_no_rays():
    solver = ForceSolver()

    dense_only = aggregate_patch(make_grid_samples(penetration=0.02, confidence=0.05))
    assert solver.classify(dense_only) is SolverRegime.EMERGENCY

    with_rays = aggregate_patch(make_ray_samples(penetration=0.02, confidence=0.05))
    assert with_rays.confidence < 0.1
    assert solver.classify(with_rays) is SolverRegime.NORMAL


def test_contact_state_selects_policy():
    solver = ForceSolver()
    patch = aggregate_patch(make_grid_samples(penetration=0.02))

    assert solver.classify(patch, ContactState.AIRBORNE) is SolverRegime.EMERGENCY
    assert solver.classify(ContactPatch(), ContactState.IMPACT_TRANSITION) is SolverRegime.NORMAL
    assert solver.classify(patch, ContactState.DEGRADED_PERSISTENT) is SolverRegime.NORMAL


def test_solve_is_deterministic():
    solver = ForceSolver()
    patch = aggregate_patch(make_grid_samples(penetration=0.025, slip=(0.1, 0.05), pitch=0.1))
    velocity = np.array([30.0, 1.0, -0.2])

    a = solver.solve(patch, 0.01, velocity, 2000.0)
    b = solver.solve(patch, 0.01, velocity, 2000.0)
    assert a.to_dict() == b.to_dict()


def test_force_result_round_trip():
    solver = ForceSolver()
    patch = aggregate_patch(make_grid_samples(penetration=0.02, slip=(0.05, 0.02)))
    result = solver.solve(patch, 0.01, [20.0, 0.0, 0.0], 0.0, contact_state=ContactState.FULL_CONFIDENCE)
    result.effective_radius = 0.31

    data = result.to_dict()
    restored = ForceResult.from_dict(data)

    assert restored.to_dict() == data
    assert restored.diagnostics.contact_state is ContactState.FULL_CONFIDENCE
