"""Contact sampling, aggregation, temporal state and influence contracts."""

from tire_contact.contact.samples import Sample, SampleSource, make_grid_samples, make_ray_samples
from tire_contact.contact.patch import ContactPatch, PatchConventions, aggregate_patch, normalize_weights
from tire_contact.contact.patch_state import ContactPatchState, HysteresisConfig
from tire_contact.contact.influence import (
    AuthorityLevel,
    InfluenceContract,
    InfluenceProposal,
    OperationMode,
    apply_influence,
)
from tire_contact.contact.regime import ContactRegimeMachine, ContactState, RegimeConfig

__all__ = [
    "Sample",
    "SampleSource",
    "make_grid_samples",
    "make_ray_samples",
    "ContactPatch",
    "PatchConventions",
    "aggregate_patch",
    "normalize_weights",
    "ContactPatchState",
    "HysteresisConfig",
    "AuthorityLevel",
    "InfluenceContract",
    "InfluenceProposal",
    "OperationMode",
    "apply_influence",
    "ContactRegimeMachine",
    "ContactState",
    "RegimeConfig",
]
