"""
Tests for contact patch temporal state (hysteresis and slip lag).

Run with: pytest tests/test_patch_state.py -v
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from tire_contact.contact.patch_state import (
    ContactPatchState,
    HysteresisConfig,
    deterministic_slip_noise,
)
from tire_contact.contact.samples import make_grid_samples


STIFFNESS = 200000.0


def test_first_build_has_no_lag():
    state = ContactPatchState()
    state.rebuild(make_grid_samples(penetration=0.02, slip=(0.1, -0.05)))

    assert np.allclose(state.lagged_slip, [0.1, -0.05])
    assert np.isclose(state.last_slip_magnitude, np.hypot(0.1, 0.05))


def test_decay_without_samples():
    """No valid patch: stored energy decays at the fast rate only."""
    state = ContactPatchState()
    state.stored_energy = 1000.0
    state.residual_energy = 500.0
    state.rebuild([])

    dt = 0.05
    for _ in range(10):
        state.update_hysteresis(dt, load=0.0, stiffness=STIFFNESS)

    assert np.isclose(state.stored_energy, 1000.0 * np.exp(-4.0 * 0.5), rtol=1e-9)
    assert np.isclose(state.residual_energy, 500.0 * np.exp(-6.0 * 0.5), rtol=1e-9)
    assert state.stored_energy > 0.0


def test_stored_energy_monotone_without_decay():
    """With all decay rates at zero, constant slip never reduces stored energy."""
    config = HysteresisConfig(
        max_stored_energy=10.0,
        fast_recovery_rate=0.0,
        slow_recovery_rate=0.0,
        residual_decay_rate=0.0,
    )
    state = ContactPatchState(config)
    samples = make_grid_samples(penetration=0.02, slip=(0.2, 0.0))

    history = []
    for _ in range(100):
        state.rebuild(samples)
        state.update_hysteresis(0.01, load=4000.0, stiffness=STIFFNESS)
        history.append(state.stored_energy)

    assert all(b >= a for a, b in zip(history, history[1:]))
    assert history[-1] == 10.0
    assert state.residual_energy == 0.0
    assert np.isclose(state.hysteresis_factor, 0.7)


def test_hysteresis_factor_bounds():
    state = ContactPatchState()
    slips = [(0.0, 0.0), (0.3, 0.1), (-0.2, 0.0), (0.5, -0.4), (0.0, 0.0)]

    for i in range(200):
        state.rebuild(make_grid_samples(penetration=0.03, slip=slips[i % len(slips)]))
        state.update_hysteresis(0.01, load=6000.0, stiffness=STIFFNESS)
        assert 0.7 <= state.hysteresis_factor <= 1.0

    assert state.hysteresis_factor < 1.0


def test_invalid_tick_snaps_lagged_slip():
    state = ContactPatchState()
    state.rebuild(make_grid_samples(penetration=0.02, slip=(0.2, 0.1)))
    state.update_hysteresis(0.01, load=4000.0, stiffness=STIFFNESS)
    assert np.linalg.norm(state.lagged_slip) > 0.0

    state.rebuild([])
    state.update_hysteresis(0.01, load=4000.0, stiffness=STIFFNESS)
    assert np.array_equal(state.lagged_slip, np.zeros(2))


def test_slip_jump_creates_residual_and_lag():
    state = ContactPatchState()
    state.rebuild(make_grid_samples(penetration=0.02, slip=(0.0, 0.0)))
    state.update_hysteresis(0.01, load=4000.0, stiffness=STIFFNESS)
    assert state.residual_energy == 0.0

    state.rebuild(make_grid_samples(penetration=0.02, slip=(0.3, 0.0)))
    state.update_hysteresis(0.01, load=4000.0, stiffness=STIFFNESS)

    assert state.residual_energy > 0.0
    # Lagged slip moves toward the new slip but does not reach it in one tick
    assert 0.0 < state.lagged_slip[0] < 0.3


def test_reset_patch_keeps_hysteresis():
    state = ContactPatchState()
    for _ in range(20):
        state.rebuild(make_grid_samples(penetration=0.03, slip=(0.2, 0.0)))
        state.update_hysteresis(0.01, load=6000.0, stiffness=STIFFNESS)

    stored = state.stored_energy
    factor = state.hysteresis_factor
    assert stored > 0.0

    state.reset_patch()
    assert not state.is_valid
    assert state.stored_energy == stored
    assert state.hysteresis_factor == factor

    state.reset_hysteresis()
    assert state.stored_energy == 0.0
    assert state.residual_energy == 0.0
    assert state.hysteresis_factor == 1.0


def test_effective_grip_scales_with_confidence():
    state = ContactPatchState()
    assert np.isclose(state.effective_grip(), 0.5)

    state.rebuild(make_grid_samples(penetration=0.02, confidence=1.0))
    assert np.isclose(state.effective_grip(), 1.0)


def test_slip_noise_is_deterministic():
    lagged = np.array([0.1, -0.02])
    a = deterministic_slip_noise(250.0, lagged, 0.001)
    b = deterministic_slip_noise(250.0, lagged, 0.001)

    assert np.array_equal(a, b)
    assert np.isclose(np.linalg.norm(a), 0.001)
    assert np.array_equal(deterministic_slip_noise(250.0, lagged, 0.0), np.zeros(2))


def test_replayed_sequences_match():
    def run():
        state = ContactPatchState()
        for k in range(30):
            slip = (0.05 * (k % 4), -0.03 * (k % 3))
            state.rebuild(make_grid_samples(penetration=0.02, slip=slip))
            state.update_hysteresis(0.01, load=5000.0, stiffness=STIFFNESS)
        return state

    a, b = run(), run()
    assert np.array_equal(a.lagged_slip, b.lagged_slip)
    assert a.stored_energy == b.stored_energy
    assert a.residual_energy == b.residual_energy


def test_get_state_snapshot():
    state = ContactPatchState()
    state.rebuild(make_grid_samples(penetration=0.02))
    snapshot = state.get_state()

    for key in ('stored_energy', 'residual_energy', 'hysteresis_factor', 'effective_grip', 'lagged_slip'):
        assert key in snapshot
    assert snapshot['valid'] is True


def test_asymmetric_release():
    """Heavily loaded energy releases at the slow rate, lighter energy at the fast rate."""
    config = HysteresisConfig()
    samples = make_grid_samples(penetration=0.02, slip=(0.0, 0.0))
    dt = 0.01

    # Zero slip and zero stiffness: no accrual, decay only
    state = ContactPatchState(config)
    state.rebuild(samples)
    state.stored_energy = 0.8 * config.max_stored_energy
    state.update_hysteresis(dt, load=0.0, stiffness=0.0)
    assert np.isclose(
        state.stored_energy,
        0.8 * config.max_stored_energy * np.exp(-config.slow_recovery_rate * dt),
        rtol=1e-12,
    )

    state = ContactPatchState(config)
    state.rebuild(samples)
    state.stored_energy = 0.2 * config.max_stored_energy
    state.update_hysteresis(dt, load=0.0, stiffness=0.0)
    assert np.isclose(
        state.stored_energy,
        0.2 * config.max_stored_energy * np.exp(-config.fast_recovery_rate * dt),
        rtol=1e-12,
    )
