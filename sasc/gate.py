# -*- coding: utf-8 -*-
"""Seven-gate admission check for governed lifecycle transitions.

Checks run in a fixed order and stop at the first failure; callers rely on the
first failing gate being the one reported.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .config import CONTAINMENT_MAX, CONTAINMENT_MIN
from .field import clamp_containment
from .state import LifecycleState

SPIN_TARGET = 1.0
SPIN_TOLERANCE = 0.01
COMPTON_VOLUME = 3.896e-47
LN_2 = math.log(2.0)
ENTROPY_TOLERANCE = 1e-4
CARDINAL_VOTES = 5

# Containment-ratio multiplier applied by an approved transition.
TRANSITION_EFFECTS: Dict[LifecycleState, float] = {
    LifecycleState.CONFINED: 1.0,
    LifecycleState.ROTATING: 1.5,
    LifecycleState.TRANSPOSED: 2.0,
}
GOVERNED_TARGETS = frozenset(TRANSITION_EFFECTS)


class GateReason(str, Enum):
    DECOHERENCE_SPIN = "DecoherenceSpin"
    INSUFFICIENT_VOLUME = "InsufficientVolume"
    ENTANGLEMENT_MISMATCH = "EntanglementMismatch"
    FIREWALL_BREACH = "FirewallBreach"
    BACKUP_CORRUPTION = "BackupCorruption"
    CONSENSUS_FAILURE = "ConsensusFailure"
    SOVEREIGN_VETO_ACTIVE = "SovereignVetoActive"
    # peer protocol only; never produced by evaluate_gates
    BYZANTINE_ATTACK = "ByzantineAttack"


@dataclass(frozen=True)
class TransitionRequest:
    target: LifecycleState
    spin_total: float
    coherence_volume: float
    entanglement_entropy: float
    votes: Tuple[bool, ...]
    veto_released: bool
    backup_verified: bool

    def __post_init__(self) -> None:
        target = LifecycleState(self.target)
        if target not in GOVERNED_TARGETS:
            raise ValueError(f"{target.value} is not a governed transition target")
        for name in ("spin_total", "coherence_volume", "entanglement_entropy"):
            try:
                # NaN stays representable; the gates deny it
                object.__setattr__(self, name, float(getattr(self, name)))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{name} must be a number: {exc}") from exc
        if isinstance(self.votes, (str, bytes)):
            raise ValueError("votes must be a sequence of booleans")
        try:
            votes = tuple(bool(v) for v in self.votes)
        except TypeError as exc:
            raise ValueError(f"votes must be a sequence: {exc}") from exc
        if len(votes) != CARDINAL_VOTES:
            raise ValueError(f"expected {CARDINAL_VOTES} votes, got {len(votes)}")
        object.__setattr__(self, "target", target)
        object.__setattr__(self, "votes", votes)
        object.__setattr__(self, "veto_released", bool(self.veto_released))
        object.__setattr__(self, "backup_verified", bool(self.backup_verified))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "target": self.target.value,
            "spin_total": float(self.spin_total),
            "coherence_volume": float(self.coherence_volume),
            "entanglement_entropy": float(self.entanglement_entropy),
            "votes": list(self.votes),
            "veto_released": bool(self.veto_released),
            "backup_verified": bool(self.backup_verified),
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TransitionRequest":
        return cls(
            target=LifecycleState(payload["target"]),
            spin_total=payload["spin_total"],
            coherence_volume=payload["coherence_volume"],
            entanglement_entropy=payload["entanglement_entropy"],
            votes=payload["votes"],
            veto_released=bool(payload["veto_released"]),
            backup_verified=bool(payload["backup_verified"]),
        )


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    reason: Optional[GateReason] = None

    @classmethod
    def allow(cls) -> "GateResult":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: GateReason) -> "GateResult":
        return cls(allowed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    stability_score: Optional[float] = None
    reason: Optional[GateReason] = None

    @classmethod
    def success(cls, stability_score: float) -> "TransitionResult":
        return cls(ok=True, stability_score=float(stability_score))

    @classmethod
    def error(cls, reason: GateReason) -> "TransitionResult":
        return cls(ok=False, reason=reason)


class TransitionDenied(Exception):
    def __init__(self, reason: GateReason) -> None:
        super().__init__(f"transition denied: {reason.value}")
        self.reason = reason


GateCheck = Callable[[TransitionRequest, float], bool]

_GATES: Tuple[Tuple[str, GateCheck, GateReason], ...] = (
    ("spin_total", lambda req, _r: abs(req.spin_total - SPIN_TARGET) <= SPIN_TOLERANCE, GateReason.DECOHERENCE_SPIN),
    ("coherence_volume", lambda req, _r: req.coherence_volume > COMPTON_VOLUME, GateReason.INSUFFICIENT_VOLUME),
    (
        "entanglement_entropy",
        lambda req, _r: abs(req.entanglement_entropy - LN_2) <= ENTROPY_TOLERANCE,
        GateReason.ENTANGLEMENT_MISMATCH,
    ),
    ("containment_bound", lambda _req, r: CONTAINMENT_MIN <= r <= CONTAINMENT_MAX, GateReason.FIREWALL_BREACH),
    ("backup_integrity", lambda req, _r: req.backup_verified, GateReason.BACKUP_CORRUPTION),
    ("consensus", lambda req, _r: sum(1 for v in req.votes if v) == CARDINAL_VOTES, GateReason.CONSENSUS_FAILURE),
    ("override", lambda req, _r: req.veto_released, GateReason.SOVEREIGN_VETO_ACTIVE),
)

GATE_ORDER: Tuple[str, ...] = tuple(name for name, _check, _reason in _GATES)


def evaluate_gates(request: TransitionRequest, containment_ratio: float) -> GateResult:
    for _name, check, reason in _GATES:
        # NaN inputs fail every comparison and are denied at their gate
        if not check(request, containment_ratio):
            return GateResult.deny(reason)
    return GateResult.allow()


_AUTHORIZED = object()


@dataclass(frozen=True)
class ApprovedTransition:
    """Post-transition values; only :func:`authorize_transition` can build one."""

    target: LifecycleState
    containment_ratio: float
    request: TransitionRequest
    _token: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._token is not _AUTHORIZED:
            raise TypeError("ApprovedTransition must be produced by authorize_transition()")


def authorize_transition(request: TransitionRequest, containment_ratio: float) -> ApprovedTransition:
    result = evaluate_gates(request, containment_ratio)
    if result.reason is not None:
        raise TransitionDenied(result.reason)
    multiplier = TRANSITION_EFFECTS[request.target]
    return ApprovedTransition(
        target=request.target,
        containment_ratio=clamp_containment(containment_ratio * multiplier),
        request=request,
        _token=_AUTHORIZED,
    )


__all__ = [
    "ApprovedTransition",
    "COMPTON_VOLUME",
    "GATE_ORDER",
    "GOVERNED_TARGETS",
    "GateReason",
    "GateResult",
    "LN_2",
    "TRANSITION_EFFECTS",
    "TransitionDenied",
    "TransitionRequest",
    "TransitionResult",
    "authorize_transition",
    "evaluate_gates",
]
