"""
Quickstart Example - Tire Contact Core

Demonstrates one wheel through contact, dropout and landing.
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from tire_contact.contact.influence import (
    ContractPermissions,
    InfluenceContract,
    InfluenceProposal,
    OperationMode,
)
from tire_contact.contact.samples import make_grid_samples, make_ray_samples
from tire_contact.physics.wheel import WheelContactPipeline


def main():
    print("="*60)
    print("Tire Contact Core - Quickstart Example")
    print("="*60 + "\n")

    wheel = WheelContactPipeline(name="FL")
    velocity = np.array([20.0, 0.0, 0.0])
    dt = 0.01

    # 1. Steady contact with braking slip
    print("Steady contact (50 ticks)...")
    for _ in range(50):
        samples = {
            'shader': make_grid_samples(penetration=0.02, confidence=0.95, slip=(-0.06, 0.01)),
            'raycast': make_ray_samples(penetration=0.02),
        }
        result = wheel.tick(samples, dt, velocity)
    print(f"  Fz = {result.fz:.1f} N, Fx = {result.fx:.1f} N, Fy = {result.fy:.1f} N, "
          f"Mz = {result.mz:.2f} N*m")
    print(f"  Hysteresis factor = {wheel.state.hysteresis_factor:.3f}, "
          f"state = {wheel.contact_state.value}\n")

    # 2. Geometry fallback contract
    print("Applying geometry fallback contract...")
    contract = InfluenceContract.create(
        created_at_ms=wheel.time * 1000.0,
        operation_mode=OperationMode.BIAS,
        permissions=ContractPermissions(adjust_penetration=True),
    )
    proposal = InfluenceProposal(penetration=0.015)
    samples = {'shader': make_grid_samples(penetration=0.02, confidence=0.95)}
    result = wheel.tick(samples, dt, velocity, contract=contract, proposal=proposal)
    print(f"  Contract valid: {contract.is_valid_at(wheel.time * 1000.0)}, "
          f"adjusted penetration = {wheel.patch.penetration_avg * 1000.0:.2f} mm\n")

    # 3. Airborne
    print("Airborne (10 ticks)...")
    for _ in range(10):
        result = wheel.tick([], dt, velocity)
        print(f"  Fz = {result.fz:8.1f} N  regime = {result.diagnostics.regime.value}")

    print("\n" + "="*60)
    print("Quickstart Complete!")
    print("="*60)
    print("\nNext steps:")
    print("1. Replay a scenario: tire-contact-replay --scenario configs/scenario_braking_dropout.yaml")
    print("2. Plot telemetry: python scripts/visualize_forces.py --telemetry telemetry.csv")


if __name__ == "__main__":
    main()
