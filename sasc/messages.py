# -*- coding: utf-8 -*-
"""Messages exchanged with an entity and their JSON wire form.

Every encoded message is a JSON object with a ``type`` discriminator; the other
keys are the dataclass fields.
"""

from __future__ import annotations

import json
import math
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Type

from .gate import TransitionRequest


class HandshakeOutcome(str, Enum):
    COMPLETED = "completed"
    BYZANTINE = "byzantine"


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _optional(cast: Callable[[Any], Any]) -> Callable[[Any], Any]:
    return lambda value: None if value is None else cast(value)


def _coerce(message: Any, **casts: Callable[[Any], Any]) -> None:
    """Normalise field types in place; bad values surface as ValueError."""
    for name, cast in casts.items():
        try:
            value = cast(getattr(message, name))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{type(message).__name__}.{name}: {exc}") from exc
        object.__setattr__(message, name, value)


@dataclass(frozen=True)
class Stimulus:
    vorticity: float
    source_id: str

    def __post_init__(self) -> None:
        _coerce(self, vorticity=float, source_id=_text)
        if not math.isfinite(self.vorticity):
            raise ValueError(f"Stimulus.vorticity must be finite, got {self.vorticity!r}")


@dataclass(frozen=True)
class GetStability:
    pass


@dataclass(frozen=True)
class StabilityReply:
    # may be NaN; the handshake judges that byzantine
    value: float

    def __post_init__(self) -> None:
        _coerce(self, value=float)


@dataclass(frozen=True)
class Greeting:
    sender_id: str
    stability_score: float
    audit_size: int
    protocol_version: str = "V31"

    def __post_init__(self) -> None:
        _coerce(self, sender_id=_text, stability_score=float, audit_size=int, protocol_version=_text)


@dataclass(frozen=True)
class ThreatWarning:
    threat_level: float
    containment_protocol: str = ""

    def __post_init__(self) -> None:
        _coerce(self, threat_level=float, containment_protocol=_text)


@dataclass(frozen=True)
class Ack:
    pass


@dataclass(frozen=True)
class RpcError:
    detail: str

    def __post_init__(self) -> None:
        _coerce(self, detail=_text)


@dataclass(frozen=True)
class TransitionReply:
    ok: bool
    stability_score: Optional[float] = None
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        _coerce(self, ok=bool, stability_score=_optional(float), reason=_optional(_text))


@dataclass(frozen=True)
class FatalCondition:
    reason: str

    def __post_init__(self) -> None:
        _coerce(self, reason=_text)


@dataclass(frozen=True)
class PeerHandshakeResult:
    peer_id: str
    outcome: HandshakeOutcome
    peer_stability: Optional[float] = None

    def __post_init__(self) -> None:
        _coerce(self, peer_id=_text, outcome=HandshakeOutcome, peer_stability=_optional(float))


_MESSAGE_TYPES: Dict[str, Type[Any]] = {
    "Stimulus": Stimulus,
    "GetStability": GetStability,
    "StabilityReply": StabilityReply,
    "Greeting": Greeting,
    "Warning": ThreatWarning,
    "Ack": Ack,
    "RpcError": RpcError,
    "FatalCondition": FatalCondition,
    "PeerHandshakeResult": PeerHandshakeResult,
    "TransitionRequest": TransitionRequest,
    "TransitionReply": TransitionReply,
}
_TYPE_NAMES = {cls: name for name, cls in _MESSAGE_TYPES.items()}


def message_to_payload(message: Any) -> Dict[str, Any]:
    name = _TYPE_NAMES.get(type(message))
    if name is None:
        raise ValueError(f"unsupported message type: {type(message).__name__}")
    if isinstance(message, TransitionRequest):
        body = message.to_payload()
    else:
        body = asdict(message)
    for key, value in body.items():
        if isinstance(value, Enum):
            body[key] = value.value
    return {"type": name, **body}


def message_from_payload(payload: Mapping[str, Any]) -> Any:
    data = dict(payload)
    name = data.pop("type", None)
    cls = _MESSAGE_TYPES.get(str(name))
    if cls is None:
        raise ValueError(f"unknown message type: {name!r}")
    if cls is TransitionRequest:
        try:
            return TransitionRequest.from_payload(data)
        except KeyError as exc:
            raise ValueError(f"TransitionRequest missing field {exc}") from exc
        except TypeError as exc:
            raise ValueError(f"malformed TransitionRequest message: {exc}") from exc
    allowed = {f.name for f in fields(cls)}
    unexpected = set(data) - allowed
    if unexpected:
        raise ValueError(f"{name} got unexpected fields: {sorted(unexpected)}")
    try:
        return cls(**data)
    except TypeError as exc:
        raise ValueError(f"malformed {name} message: {exc}") from exc


def encode_message(message: Any) -> str:
    return json.dumps(message_to_payload(message), ensure_ascii=False, sort_keys=True)


def decode_message(raw: str | bytes) -> Any:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("message is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ValueError("message must be a JSON object")
    return message_from_payload(payload)


__all__ = [
    "Ack",
    "FatalCondition",
    "GetStability",
    "Greeting",
    "HandshakeOutcome",
    "PeerHandshakeResult",
    "RpcError",
    "StabilityReply",
    "Stimulus",
    "ThreatWarning",
    "TransitionReply",
    "decode_message",
    "encode_message",
    "message_from_payload",
    "message_to_payload",
]
