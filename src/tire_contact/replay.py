#!/usr/bin/env python3
"""
Scenario replay for the contact core.

Drives VehicleContactSystem through a YAML scenario of synthetic sample
ticks and writes per-wheel telemetry to CSV.

Usage:
    tire-contact-replay --scenario configs/scenario_braking_dropout.yaml --output telemetry.csv
"""

import argparse
import logging
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import yaml

from tire_contact.config import ContactConfig
from tire_contact.contact.influence import InfluenceContract, InfluenceProposal
from tire_contact.contact.samples import samples_from_dict
from tire_contact.physics.wheel import VehicleContactSystem


logger = logging.getLogger(__name__)


def load_scenario(filepath: str) -> Dict:
    """Load a scenario mapping from YAML."""
    with open(filepath, 'r') as f:
        scenario = yaml.safe_load(f)
    if not isinstance(scenario, dict):
        raise ValueError(f"Scenario must be a mapping: {filepath}")
    return scenario


def _wheel_samples(block: Dict, wheels, timestamp: float) -> Dict:
    """Expand a tick block's per-wheel sample specs ('all' applies to every wheel)."""
    specs = block.get('wheels') or {}
    shared = specs.get('all')
    samples = {}
    for name in wheels:
        spec = specs.get(name, shared)
        if spec:
            samples[name] = samples_from_dict(spec, timestamp=timestamp)
    return samples


def run_scenario(scenario: Dict, config: Optional[ContactConfig] = None) -> pd.DataFrame:
    """
    Run a scenario and collect telemetry.

    Args:
        scenario: Scenario mapping (see module docstring)
        config: Overrides the scenario's own 'config' section

    Returns:
        DataFrame with one row per wheel per tick
    """
    if config is None:
        config = ContactConfig.from_dict(scenario.get('config') or {})
    system = VehicleContactSystem(config)

    dt = float(scenario.get('dt', 0.01))
    velocity = np.array(scenario.get('velocity', [0.0, 0.0, 0.0]), dtype=float)

    contract = None
    if scenario.get('contract') is not None:
        contract = InfluenceContract.create_from_dict(scenario['contract'])
        logger.info(
            "Scenario contract loaded.",
            extra={
                "event": "replay.contract",
                "contract_id": contract.contract_id,
                "valid": contract.validate_structure(),
            },
        )
    proposal = InfluenceProposal(**scenario['proposal']) if scenario.get('proposal') else None
    contracts = {name: contract for name in system.wheels} if contract is not None else None
    proposals = {name: proposal for name in system.wheels} if proposal is not None else None

    rows: List[Dict] = []
    tick = 0
    for block in scenario.get('ticks', []):
        block_velocity = np.array(block.get('velocity', velocity), dtype=float)
        for _ in range(int(block.get('repeat', 1))):
            timestamp = (tick + 1) * dt
            samples = _wheel_samples(block, system.wheels, timestamp)
            results = system.step(
                samples, dt, block_velocity, contracts=contracts, proposals=proposals)

            for name, result in results.items():
                row = {'tick': tick, 'time': timestamp, 'wheel': name}
                row.update(result.to_dict())
                state = system.wheels[name].state
                row['stored_energy'] = state.stored_energy
                row['residual_energy'] = state.residual_energy
                row['hysteresis_factor'] = state.hysteresis_factor
                row['effective_grip'] = state.effective_grip()
                row['contact_width'] = system.wheels[name].contact_width
                rows.append(row)
            tick += 1

    if not rows:
        return pd.DataFrame()

    df = pd.json_normalize(rows, sep='_')
    cop = np.array(df.pop('center_of_pressure').tolist(), dtype=float).reshape(-1, 3)
    df['cop_x'], df['cop_y'], df['cop_z'] = cop[:, 0], cop[:, 1], cop[:, 2]
    return df


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Replay a contact-core scenario")

    parser.add_argument(
        "--scenario",
        type=str,
        required=True,
        help="Path to scenario YAML file"
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Contact config YAML (overrides the scenario's config section)"
    )

    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output CSV path (if None, prints a summary only)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level"
    )

    return parser.parse_args(argv)


def main(argv=None):
    """Main replay function."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    scenario = load_scenario(args.scenario)
    config = ContactConfig.from_yaml(args.config) if args.config else None

    print(f"\nReplaying scenario: {args.scenario}")
    df = run_scenario(scenario, config)

    if df.empty:
        print("Scenario produced no ticks")
        return df

    print(f"Ticks: {df['tick'].nunique()}, wheels: {df['wheel'].nunique()}")
    summary = df.groupby('wheel')[['fz', 'fx', 'fy', 'mz']].agg(['mean', 'max'])
    print(summary.round(2).to_string())
    print(f"Energy clamp engaged on {int(df['diagnostics_energy_clamped'].sum())} wheel-ticks")

    if args.output:
        df.to_csv(args.output, index=False)
        print(f"Telemetry saved to: {args.output}")

    return df


if __name__ == "__main__":
    main()
