"""Tire Contact Core - multi-source contact fusion and tire force synthesis."""

__version__ = "1.0.0"
__author__ = "Tire Contact Team"

from tire_contact.contact.samples import Sample, SampleSource
from tire_contact.contact.patch import ContactPatch, aggregate_patch
from tire_contact.contact.patch_state import ContactPatchState
from tire_contact.contact.influence import InfluenceContract, apply_influence
from tire_contact.physics.force_solver import ForceResult, ForceSolver
from tire_contact.config import ContactConfig
from tire_contact.physics.wheel import WheelContactPipeline, VehicleContactSystem

__all__ = [
    "Sample",
    "SampleSource",
    "ContactPatch",
    "aggregate_patch",
    "ContactPatchState",
    "InfluenceContract",
    "apply_influence",
    "ForceResult",
    "ForceSolver",
    "ContactConfig",
    "WheelContactPipeline",
    "VehicleContactSystem",
]
