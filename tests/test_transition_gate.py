from __future__ import annotations

import math
from typing import Any

import pytest

from sasc.gate import (
    GATE_ORDER,
    ApprovedTransition,
    GateReason,
    GateResult,
    TransitionDenied,
    TransitionRequest,
    authorize_transition,
    evaluate_gates,
)
from sasc.state import LifecycleState
from tests.entity_utils import build_request



def test_reference_request_is_allowed() -> None:
    result = evaluate_gates(build_request(), 0.85)
    assert result == GateResult.allow()
    assert bool(result) is True


def test_four_of_five_votes_is_consensus_failure() -> None:
    result = evaluate_gates(build_request(votes=(True, True, True, True, False)), 0.85)
    assert result == GateResult.deny(GateReason.CONSENSUS_FAILURE)
    assert not result


def test_first_failing_gate_is_reported() -> None:
    request = build_request(spin_total=0.5, votes=(True, False, True, True, False))
    assert evaluate_gates(request, 0.85).reason is GateReason.DECOHERENCE_SPIN


def test_unanimous_votes_do_not_mask_later_gate() -> None:
    result = evaluate_gates(build_request(veto_released=False), 0.85)
    assert result.reason is GateReason.SOVEREIGN_VETO_ACTIVE


@pytest.mark.parametrize(
    "overrides,ratio,reason",
    [
        ({"spin_total": 1.02}, 0.5, GateReason.DECOHERENCE_SPIN),
        ({"spin_total": math.nan}, 0.5, GateReason.DECOHERENCE_SPIN),
        ({"coherence_volume": 3.896e-47}, 0.5, GateReason.INSUFFICIENT_VOLUME),
        ({"entanglement_entropy": math.log(2) + 2e-4}, 0.5, GateReason.ENTANGLEMENT_MISMATCH),
        ({}, 0.95, GateReason.FIREWALL_BREACH),
        ({}, -0.01, GateReason.FIREWALL_BREACH),
        ({"backup_verified": False}, 0.5, GateReason.BACKUP_CORRUPTION),
        ({"votes": (False,) * 5}, 0.5, GateReason.CONSENSUS_FAILURE),
        ({"veto_released": False}, 0.5, GateReason.SOVEREIGN_VETO_ACTIVE),
    ],
)
def test_each_gate_reports_its_reason(overrides: dict[str, Any], ratio: float, reason: GateReason) -> None:
    assert evaluate_gates(build_request(**overrides), ratio) == GateResult.deny(reason)


def test_tolerances_accept_near_values() -> None:
    request = build_request(spin_total=1.005, entanglement_entropy=math.log(2) - 5e-5)
    assert evaluate_gates(request, 0.0).allowed
    assert evaluate_gates(request, 0.9).allowed


def test_gate_order_is_fixed() -> None:
    assert GATE_ORDER == (
        "spin_total",
        "coherence_volume",
        "entanglement_entropy",
        "containment_bound",
        "backup_integrity",
        "consensus",
        "override",
    )


@pytest.mark.parametrize(
    "target,ratio,expected",
    [
        (LifecycleState.ROTATING, 0.85, 0.9),
        (LifecycleState.ROTATING, 0.2, 0.3),
        (LifecycleState.TRANSPOSED, 0.3, 0.6),
        (LifecycleState.TRANSPOSED, 0.5, 0.9),
        (LifecycleState.CONFINED, 0.3, 0.3),
    ],
)
def test_authorize_transition_applies_clamped_effect(target: LifecycleState, ratio: float, expected: float) -> None:
    approved = authorize_transition(build_request(target=target), ratio)
    assert approved.target is target
    assert approved.containment_ratio == pytest.approx(expected)
    assert 0.0 <= approved.containment_ratio <= 0.9


def test_authorize_transition_refuses_failed_request() -> None:
    with pytest.raises(TransitionDenied) as excinfo:
        authorize_transition(build_request(backup_verified=False), 0.5)
    assert excinfo.value.reason is GateReason.BACKUP_CORRUPTION


def test_approved_transition_cannot_be_built_directly() -> None:
    with pytest.raises(TypeError):
        ApprovedTransition(target=LifecycleState.ROTATING, containment_ratio=0.5, request=build_request())


def test_request_validation() -> None:
    with pytest.raises(ValueError):
        build_request(votes=(True, True, True, True))
    with pytest.raises(ValueError):
        build_request(target=LifecycleState.SEALED_GENTLE)
    request = build_request(target="Transposed", votes=[1, 1, 1, 1, 1])
    assert request.target is LifecycleState.TRANSPOSED
    assert request.votes == (True, True, True, True, True)


@pytest.mark.parametrize(
    "overrides",
    [
        {"spin_total": None},
        {"coherence_volume": "large"},
        {"votes": None},
        {"votes": "TTTTT"},
    ],
)
def test_request_rejects_wrong_field_types(overrides: dict[str, Any]) -> None:
    with pytest.raises(ValueError):
        build_request(**overrides)


def test_numeric_strings_are_coerced() -> None:
    request = build_request(spin_total="1.0")
    assert request.spin_total == 1.0
    assert evaluate_gates(request, 0.5).allowed


def test_request_payload_roundtrip() -> None:
    request = build_request(target=LifecycleState.TRANSPOSED)
    assert TransitionRequest.from_payload(request.to_payload()) == request
