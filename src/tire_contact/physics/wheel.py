"""
Wheel Contact Pipeline

Runs one wheel's tick in fixed order:
1. Aggregate samples from all sources
2. Apply the influence contract (optional)
3. Update temporal state (hysteresis, slip lag)
4. Update the contact regime
5. Solve forces

VehicleContactSystem owns one independent pipeline per wheel.
"""

import numpy as np
from typing import Dict, Mapping, Optional, Sequence

from tire_contact.config import ContactConfig
from tire_contact.contact.influence import InfluenceContract, InfluenceProposal, apply_influence
from tire_contact.contact.patch import ContactPatch, aggregate_patch
from tire_contact.contact.patch_state import ContactPatchState
from tire_contact.contact.regime import ContactRegimeMachine, ContactState
from tire_contact.contact.samples import SampleSet, flatten_sources
from tire_contact.physics.force_solver import ForceResult, ForceSolver
from tire_contact.physics.tire_geometry import compute_effective_radius


class WheelContactPipeline:
    """
    Contact core for a single wheel.

    Owns the wheel's patch state, regime and previous vertical force.
    Not thread-safe; never share an instance between wheels.
    """

    def __init__(self, config: Optional[ContactConfig] = None, name: str = "FL"):
        self.config = config or ContactConfig()
        self.name = name
        self.solver = ForceSolver(self.config.solver)
        self.state = ContactPatchState(self.config.hysteresis, self.config.conventions)
        self.regime = ContactRegimeMachine(
            self.config.regime, min_confidence=self.config.solver.min_confidence)
        self.previous_vertical_force = 0.0
        self.time = 0.0  # s, accumulated from dt
        self.last_result = ForceResult()

    def reset(self):
        """Full reset (new session)."""
        self.state.reset()
        self.regime.reset()
        self.previous_vertical_force = 0.0
        self.time = 0.0
        self.last_result = ForceResult()

    def reset_patch(self):
        """Respawn/teleport: drop patch data, keep hysteresis to avoid popping."""
        self.state.reset_patch()
        self.regime.reset()

    def tick(
        self,
        samples: SampleSet,
        dt: float,
        velocity: Sequence[float],
        contract: Optional[InfluenceContract] = None,
        proposal: Optional[InfluenceProposal] = None,
        now_ms: Optional[float] = None,
    ) -> ForceResult:
        """
        Process one tick.

        Args:
            samples: Flat sequence or mapping of source -> samples
            dt: Timestep [s]
            velocity: World velocity [m/s]
            contract: Influence contract from a subordinate source
            proposal: That source's proposed values
            now_ms: Contract clock; defaults to accumulated time in ms

        Returns:
            ForceResult
        """
        dt = max(float(dt), 0.0)
        self.time += dt
        if now_ms is None:
            now_ms = self.time * 1000.0

        patch = aggregate_patch(flatten_sources(samples), self.config.conventions, timestamp=self.time)
        patch = apply_influence(patch, contract, now_ms, proposal)

        self.state.adopt_patch(patch, self.time)
        self.state.update_hysteresis(dt, self.previous_vertical_force, self.config.solver.stiffness)

        contact_state = self.regime.update(patch, dt)

        result = self.solver.solve(
            patch,
            dt,
            velocity,
            self.previous_vertical_force,
            slip=self.state.lagged_slip,
            grip_multiplier=self.state.effective_grip(),
            contact_state=contact_state,
        )
        result.effective_radius = compute_effective_radius(
            self.config.wheel.tire_radius,
            self.config.wheel.min_effective_radius,
            result.fz,
            self.config.solver.stiffness,
            self.config.conventions,
        )

        self.previous_vertical_force = result.fz
        self.last_result = result
        return result

    @property
    def patch(self) -> ContactPatch:
        return self.state.patch

    @property
    def contact_state(self) -> ContactState:
        return self.regime.state

    @property
    def contact_width(self) -> float:
        """Tire width scaled by any contract width adjustment [m]."""
        return self.config.wheel.tire_width * self.state.patch.width_scale

    def get_state(self) -> Dict:
        """Patch, hysteresis and force snapshot for telemetry."""
        state = {'wheel': self.name, 'time': self.time, 'contact_state': self.regime.state.value}
        state.update(self.state.patch.get_state())
        state.update(self.state.get_state())
        state['contact_width'] = self.contact_width
        state['previous_vertical_force'] = self.previous_vertical_force
        return state


class VehicleContactSystem:
    """Manages one contact pipeline per wheel."""

    def __init__(self, config: Optional[ContactConfig] = None):
        self.config = config or ContactConfig()
        self.wheels = {
            name: WheelContactPipeline(self.config, name)
            for name in self.config.wheels
        }

    def step(
        self,
        samples_by_wheel: Mapping[str, SampleSet],
        dt: float,
        velocity,
        contracts: Optional[Mapping[str, InfluenceContract]] = None,
        proposals: Optional[Mapping[str, InfluenceProposal]] = None,
        now_ms: Optional[float] = None,
    ) -> Dict[str, ForceResult]:
        """
        Tick every wheel.

        Args:
            samples_by_wheel: Wheel name -> samples; missing wheels get none
            dt: Timestep [s]
            velocity: One world velocity, or wheel name -> velocity
            contracts: Wheel name -> contract
            proposals: Wheel name -> proposal
            now_ms: Contract clock

        Returns:
            Wheel name -> ForceResult
        """
        contracts = contracts or {}
        proposals = proposals or {}
        results = {}

        for name, pipeline in self.wheels.items():
            wheel_velocity = velocity[name] if isinstance(velocity, Mapping) else velocity
            results[name] = pipeline.tick(
                samples_by_wheel.get(name, []),
                dt,
                wheel_velocity,
                contract=contracts.get(name),
                proposal=proposals.get(name),
                now_ms=now_ms,
            )

        return results

    def get_total_forces(self, results: Mapping[str, ForceResult]) -> Dict[str, float]:
        """Sum forces from all wheels."""
        return {
            'Fx_total': float(np.sum([r.fx for r in results.values()])),
            'Fy_total': float(np.sum([r.fy for r in results.values()])),
            'Fz_total': float(np.sum([r.fz for r in results.values()])),
            'Mz_total': float(np.sum([r.mz for r in results.values()])),
        }

    def reset(self):
        for pipeline in self.wheels.values():
            pipeline.reset()

    def reset_patches(self):
        """Teleport/respawn: keep hysteresis on every wheel."""
        for pipeline in self.wheels.values():
            pipeline.reset_patch()
