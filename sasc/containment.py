"""Homeostasis step that tightens or loosens containment from field turbulence."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import ControllerCfg, EntityCfg
from .field import clamp_containment
from .stability import stability_score, turbulence
from .state import LifecycleState


@dataclass(frozen=True)
class RegulationOutcome:
    turbulence: float
    containment_ratio: float
    stability_score: float
    tightened: bool
    escalate: bool


class ContainmentController:
    """Single regulation step; scheduling belongs to the owning entity."""

    def __init__(self, cfg: Optional[EntityCfg] = None) -> None:
        cfg = cfg or EntityCfg()
        self.ctl: ControllerCfg = cfg.controller
        self.critical_threshold = cfg.critical_threshold
        self.secondary_floor = cfg.secondary_floor

    def adjust_ratio(self, ratio: float, turb: float) -> tuple[float, bool]:
        if turb > self.ctl.turbulence_threshold:
            return clamp_containment(min(ratio * self.ctl.tighten_factor, self.ctl.ratio_ceiling)), True
        return clamp_containment(max(ratio * self.ctl.loosen_factor, self.ctl.ratio_floor)), False

    def should_escalate(self, score: float, lifecycle: LifecycleState) -> bool:
        if lifecycle.sealed:
            return False
        return score < self.critical_threshold and score < self.secondary_floor

    def regulate(self, field: np.ndarray, ratio: float, lifecycle: LifecycleState) -> RegulationOutcome:
        """Ticks read the field but never evolve it; only stimuli do."""
        turb = turbulence(field)
        new_ratio, tightened = self.adjust_ratio(ratio, turb)
        score = stability_score(field)
        return RegulationOutcome(
            turbulence=turb,
            containment_ratio=new_ratio,
            stability_score=score,
            tightened=tightened,
            escalate=self.should_escalate(score, lifecycle),
        )


__all__ = ["ContainmentController", "RegulationOutcome"]
