from __future__ import annotations

import json
import math

import pytest

from sasc.gate import TransitionRequest
from sasc.messages import (
    GetStability,
    Greeting,
    HandshakeOutcome,
    PeerHandshakeResult,
    StabilityReply,
    Stimulus,
    ThreatWarning,
    decode_message,
    encode_message,
    message_to_payload,
)
from sasc.state import LifecycleState


def test_warning_uses_short_type_tag() -> None:
    payload = message_to_payload(ThreatWarning(threat_level=0.8, containment_protocol="seal"))
    assert payload == {"type": "Warning", "threat_level": 0.8, "containment_protocol": "seal"}


def test_greeting_defaults_protocol_version() -> None:
    message = decode_message('{"type": "Greeting", "sender_id": "abc", "stability_score": 0.9, "audit_size": 3}')
    assert message == Greeting(sender_id="abc", stability_score=0.9, audit_size=3, protocol_version="V31")


def test_enums_are_encoded_by_value() -> None:
    raw = encode_message(PeerHandshakeResult(peer_id="p", outcome=HandshakeOutcome.BYZANTINE))
    assert json.loads(raw)["outcome"] == "byzantine"
    decoded = decode_message(raw)
    assert decoded.outcome is HandshakeOutcome.BYZANTINE


def test_transition_request_travels_as_plain_json() -> None:
    request = TransitionRequest(
        target=LifecycleState.TRANSPOSED,
        spin_total=1.0,
        coherence_volume=1e-46,
        entanglement_entropy=0.6931,
        votes=(True, True, False, True, True),
        veto_released=True,
        backup_verified=False,
    )
    payload = json.loads(encode_message(request))
    assert payload["type"] == "TransitionRequest"
    assert payload["target"] == "Transposed"
    assert payload["votes"] == [True, True, False, True, True]
    assert decode_message(json.dumps(payload)) == request


def test_empty_messages_carry_only_type() -> None:
    assert json.loads(encode_message(GetStability())) == {"type": "GetStability"}
    assert decode_message(b'{"type": "GetStability"}') == GetStability()


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"sender_id": "x"}',
        '{"type": "Teleport"}',
        '{"type": "Greeting", "sender_id": "x"}',
        '{"type": "GetStability", "extra": 1}',
        '{"type": "TransitionRequest", "target": "Rotating"}',
        '{"type": "TransitionRequest", "target": "Nowhere", "spin_total": 1.0, "coherence_volume": 1.0,'
        ' "entanglement_entropy": 0.69, "votes": [true, true, true, true, true],'
        ' "veto_released": true, "backup_verified": true}',
    ],
)
def test_malformed_frames_raise_value_error(raw: str) -> None:
    with pytest.raises(ValueError):
        decode_message(raw)


def test_unknown_python_type_cannot_be_encoded() -> None:
    with pytest.raises(ValueError):
        encode_message(object())


@pytest.mark.parametrize(
    "raw",
    [
        '{"type": "TransitionRequest", "target": "Rotating", "spin_total": null, "coherence_volume": 1.0,'
        ' "entanglement_entropy": 0.69, "votes": [true, true, true, true, true],'
        ' "veto_released": true, "backup_verified": true}',
        '{"type": "TransitionRequest", "target": "Rotating", "spin_total": 1.0, "coherence_volume": 1.0,'
        ' "entanglement_entropy": 0.69, "votes": 5, "veto_released": true, "backup_verified": true}',
        '{"type": "Greeting", "sender_id": "x", "stability_score": "high", "audit_size": 1}',
        '{"type": "Greeting", "sender_id": 7, "stability_score": 0.9, "audit_size": 1}',
        '{"type": "Warning", "threat_level": null}',
        '{"type": "Stimulus", "vorticity": NaN, "source_id": "x"}',
        '{"type": "Stimulus", "vorticity": Infinity, "source_id": "x"}',
        '{"type": "PeerHandshakeResult", "peer_id": "p", "outcome": "maybe"}',
    ],
)
def test_wrongly_typed_fields_raise_value_error(raw: str) -> None:
    with pytest.raises(ValueError):
        decode_message(raw)


def test_stimulus_requires_finite_vorticity() -> None:
    with pytest.raises(ValueError):
        Stimulus(vorticity=float("nan"), source_id="x")
    assert Stimulus(vorticity=1e200, source_id="x").vorticity == 1e200


def test_stability_reply_keeps_nan_for_byzantine_detection() -> None:
    reply = decode_message('{"type": "StabilityReply", "value": NaN}')
    assert isinstance(reply, StabilityReply)
    assert math.isnan(reply.value)
