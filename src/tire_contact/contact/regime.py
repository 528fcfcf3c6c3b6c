"""
Contact Regime State Machine

One explicit state per wheel:
- FULL_CONFIDENCE: trusted contact
- DEGRADED_PERSISTENT: confidence low for longer than the persistence time
- IMPACT_TRANSITION: landing or penetration spike, held briefly
- AIRBORNE: no trusted ground (emergency force decay)

The force solver's emergency branch is the policy for AIRBORNE; every
other state uses normal force synthesis.
"""

import logging

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Optional

from tire_contact.contact.patch import ContactPatch


logger = logging.getLogger(__name__)


class ContactState(Enum):
    FULL_CONFIDENCE = "full_confidence"
    DEGRADED_PERSISTENT = "degraded_persistent"
    IMPACT_TRANSITION = "impact_transition"
    AIRBORNE = "airborne"


@dataclass
class RegimeConfig:
    """Transition guards."""

    full_confidence_threshold: float = 0.6
    degraded_persistence_time: float = 0.25  # s below threshold before degraded
    impact_hold_time: float = 0.1  # s
    impact_penetration_rate: float = 0.5  # m/s, closing speed that counts as impact

    def to_dict(self) -> Dict:
        return asdict(self)


def is_no_ground(patch: ContactPatch, min_confidence: float) -> bool:
    """
    Emergency gate: low confidence AND no ray samples at all.

    Dense samples alone are not trusted to declare loss of contact. Only
    valid rays count: a missed ray is not an observation of ground.
    """
    return patch.confidence < min_confidence and patch.ray_count == 0


class ContactRegimeMachine:
    """Per-wheel contact state with persistence timers."""

    def __init__(self, config: Optional[RegimeConfig] = None, min_confidence: float = 0.1):
        self.config = config or RegimeConfig()
        self.min_confidence = min_confidence  # Shared with the force solver
        self.reset()

    def reset(self):
        self.state = ContactState.AIRBORNE
        self.low_confidence_time = 0.0
        self.impact_time_left = 0.0

    def update(self, patch: ContactPatch, dt: float) -> ContactState:
        """
        Advance one tick.

        Args:
            patch: This tick's (adjusted) patch
            dt: Timestep [s]

        Returns:
            New contact state
        """
        c = self.config
        dt = max(float(dt), 0.0)
        previous = self.state

        if is_no_ground(patch, self.min_confidence):
            self.low_confidence_time = 0.0
            self.impact_time_left = 0.0
            new_state = ContactState.AIRBORNE
        else:
            if previous is ContactState.AIRBORNE or patch.penetration_rate > c.impact_penetration_rate:
                self.impact_time_left = c.impact_hold_time
            else:
                self.impact_time_left = max(self.impact_time_left - dt, 0.0)

            if patch.confidence < c.full_confidence_threshold:
                self.low_confidence_time += dt
            else:
                self.low_confidence_time = 0.0

            if self.impact_time_left > 0.0:
                new_state = ContactState.IMPACT_TRANSITION
            elif self.low_confidence_time >= c.degraded_persistence_time:
                new_state = ContactState.DEGRADED_PERSISTENT
            else:
                new_state = ContactState.FULL_CONFIDENCE

        if new_state is not previous:
            logger.debug(
                "Contact state changed.",
                extra={
                    "event": "regime.transition",
                    "from_state": previous.value,
                    "to_state": new_state.value,
                    "confidence": patch.confidence,
                    "ray_samples": patch.ray_count,
                },
            )
        self.state = new_state
        return new_state

    @property
    def uses_emergency_policy(self) -> bool:
        return self.state is ContactState.AIRBORNE
