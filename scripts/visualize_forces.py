#!/usr/bin/env python3
"""
Visualization script for contact-core replay telemetry.

Usage:
    python scripts/visualize_forces.py --telemetry telemetry.csv --wheel FL
"""

import argparse

import pandas as pd
import matplotlib.pyplot as plt
import numpy as np


STATE_LEVELS = {
    'airborne': 0,
    'impact_transition': 1,
    'degraded_persistent': 2,
    'full_confidence': 3,
}


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Visualize contact-core telemetry")

    parser.add_argument(
        "--telemetry",
        type=str,
        required=True,
        help="Path to replay telemetry CSV file"
    )

    parser.add_argument(
        "--wheel",
        type=str,
        default=None,
        help="Wheel to plot (default: first wheel in file)"
    )

    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output path for plot (if None, displays interactively)"
    )

    return parser.parse_args()


def plot_forces(df: pd.DataFrame, wheel: str = None, output_path: str = None):
    """
    Plot forces, hysteresis and contact state for one wheel.

    Args:
        df: Replay telemetry
        wheel: Wheel name
        output_path: Optional path to save plot
    """
    wheel = wheel or df['wheel'].iloc[0]
    data = df[df['wheel'] == wheel]
    time = data['time'].values if 'time' in data.columns else np.arange(len(data))

    fig, axes = plt.subplots(4, 1, figsize=(12, 12), sharex=True)
    fig.suptitle(f'Contact Forces - {wheel}', fontsize=16, fontweight='bold')

    # 1. Vertical force
    ax = axes[0]
    ax.plot(time, data['fz'], 'b-', linewidth=1.5, label='Fz')
    ax.set_ylabel('Fz (N)', fontweight='bold')
    ax.grid(True, alpha=0.3)
    clamped = data['diagnostics_energy_clamped'].astype(bool).values
    if clamped.any():
        ax.scatter(time[clamped], data['fz'].values[clamped], c='r', s=10, label='Energy clamp')
    ax.legend(loc='best', fontsize=8)

    # 2. Tangential forces and torque
    ax = axes[1]
    ax.plot(time, data['fx'], 'g-', linewidth=1.5, label='Fx')
    ax.plot(time, data['fy'], 'm-', linewidth=1.5, label='Fy')
    ax.set_ylabel('Force (N)', fontweight='bold')
    ax2 = ax.twinx()
    ax2.plot(time, data['mz'], 'k--', linewidth=1.0, label='Mz')
    ax2.set_ylabel('Mz (N*m)', fontweight='bold')
    ax.legend(loc='upper left', fontsize=8)
    ax.grid(True, alpha=0.3)

    # 3. Hysteresis
    ax = axes[2]
    ax.plot(time, data['hysteresis_factor'], 'orange', linewidth=1.5, label='Hysteresis factor')
    ax.plot(time, data['effective_grip'], 'r-', linewidth=1.5, label='Effective grip')
    ax.plot(time, data['confidence'], 'c-', linewidth=1.0, label='Confidence')
    ax.set_ylim(0.0, 1.1)
    ax.set_ylabel('Factor', fontweight='bold')
    ax.legend(loc='best', fontsize=8)
    ax.grid(True, alpha=0.3)

    # 4. Contact state
    ax = axes[3]
    levels = data['diagnostics_contact_state'].map(STATE_LEVELS)
    ax.plot(time, levels, 'k-', linewidth=1.5, drawstyle='steps-post')
    ax.set_yticks(list(STATE_LEVELS.values()))
    ax.set_yticklabels(list(STATE_LEVELS.keys()))
    ax.set_xlabel('Time (s)', fontweight='bold')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if output_path:
        plt.savefig(output_path, dpi=300, bbox_inches='tight')
        print(f"Plot saved to: {output_path}")
    else:
        plt.show()


def main():
    """Main visualization function."""
    args = parse_args()

    print(f"\nLoading telemetry from: {args.telemetry}")
    df = pd.read_csv(args.telemetry)
    print(f"Loaded {len(df)} rows, wheels: {sorted(df['wheel'].unique())}")

    print("\nGenerating visualization...\n")
    plot_forces(df, args.wheel, args.output)

    print("Done!")


if __name__ == "__main__":
    main()
