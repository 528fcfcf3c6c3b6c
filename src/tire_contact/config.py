"""
Contact Configuration

Aggregates every tunable of the contact core. Loads from and saves to
YAML; sub-sections map one-to-one onto the component configs.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple
import yaml

from tire_contact.contact.patch import PatchConventions
from tire_contact.contact.patch_state import HysteresisConfig
from tire_contact.contact.regime import RegimeConfig
from tire_contact.physics.force_solver import SolverConfig
from tire_contact.physics.tire_geometry import WheelConfig


@dataclass
class ContactConfig:
    """Complete contact-core configuration."""

    conventions: PatchConventions = field(default_factory=PatchConventions)
    hysteresis: HysteresisConfig = field(default_factory=HysteresisConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    wheel: WheelConfig = field(default_factory=WheelConfig)
    wheels: Tuple[str, ...] = ("FL", "FR", "RL", "RR")

    @classmethod
    def from_dict(cls, config_dict: Dict) -> 'ContactConfig':
        """Build from a mapping; unknown keys raise TypeError."""
        config_dict = dict(config_dict or {})
        wheels = config_dict.pop('wheels', None)
        config = cls(
            conventions=PatchConventions(**config_dict.pop('conventions', {}) or {}),
            hysteresis=HysteresisConfig(**config_dict.pop('hysteresis', {}) or {}),
            solver=SolverConfig(**config_dict.pop('solver', {}) or {}),
            regime=RegimeConfig(**config_dict.pop('regime', {}) or {}),
            wheel=WheelConfig(**config_dict.pop('wheel', {}) or {}),
        )
        if config_dict:
            raise TypeError(f"Unknown config sections: {sorted(config_dict)}")
        if wheels is not None:
            config.wheels = tuple(str(w) for w in wheels)
        return config

    def to_dict(self) -> Dict:
        return {
            'conventions': self.conventions.to_dict(),
            'hysteresis': self.hysteresis.to_dict(),
            'solver': self.solver.to_dict(),
            'regime': self.regime.to_dict(),
            'wheel': self.wheel.to_dict(),
            'wheels': list(self.wheels),
        }

    @classmethod
    def from_yaml(cls, filepath: str) -> 'ContactConfig':
        """Load configuration from YAML file."""
        with open(filepath, 'r') as f:
            config_dict = yaml.safe_load(f)
        return cls.from_dict(config_dict or {})

    def to_yaml(self, filepath: str):
        """Save configuration to YAML file."""
        with open(filepath, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False)
