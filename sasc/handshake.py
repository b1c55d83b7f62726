"""Best-effort handshake with peer entities.

The handshake runs as a detached task on an immutable snapshot of the local
entity. Whatever it learns goes back to the owner as a
:class:`~sasc.messages.PeerHandshakeResult`; it never touches owned state.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Union

from .messages import Greeting, HandshakeOutcome, PeerHandshakeResult, ThreatWarning
from .state import PeerRef

LOGGER = logging.getLogger(__name__)

WARNING_THREAT_LEVEL = 0.5


@dataclass(frozen=True)
class HandshakeSnapshot:
    entity_id: str
    stability_score: float
    audit_size: int


class PeerClient(Protocol):
    async def get_stability(self) -> float:
        ...

    async def exchange(self, greeting: Greeting) -> None:
        ...


PeerConnector = Callable[[PeerRef], PeerClient]


class LocalPeerClient:
    """Peer client for an entity living in the same event loop."""

    def __init__(self, entity: Any) -> None:
        self._entity = entity

    async def get_stability(self) -> float:
        return await self._entity.get_stability()

    async def exchange(self, greeting: Greeting) -> None:
        await self._entity.receive_peer_message(greeting)


class PeerDirectory:
    """Address book resolving peer references to in-process entities."""

    def __init__(self) -> None:
        self._entities: Dict[str, Any] = {}

    def register(self, address: str, entity: Any) -> PeerRef:
        self._entities[address] = entity
        return PeerRef(peer_id=entity.id, address=address)

    def connect(self, ref: PeerRef) -> PeerClient:
        entity = self._entities.get(ref.address)
        if entity is None:
            raise LookupError(f"no entity registered at {ref.address}")
        return LocalPeerClient(entity)


def is_byzantine_score(value: Any) -> bool:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return True
    return not math.isfinite(score) or score < 0.0 or score > 1.0


async def run_handshake(
    snapshot: HandshakeSnapshot,
    peer: PeerRef,
    client: PeerClient,
    deliver: Callable[[PeerHandshakeResult], None],
    *,
    critical_threshold: float = 0.72,
    timeout: float = 1.0,
    protocol_version: str = "V31",
) -> Optional[HandshakeOutcome]:
    """Query ``peer`` and, when it is stable enough, exchange one greeting.

    Returns the outcome delivered to the owner, or None when the peer was
    treated as untrusted. Never raises except on cancellation.
    """
    try:
        peer_score = await asyncio.wait_for(client.get_stability(), timeout)
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        LOGGER.info("peer %s untrusted: stability query failed (%s)", peer.peer_id, exc)
        return None

    if is_byzantine_score(peer_score):
        LOGGER.warning("peer %s reported impossible stability %r", peer.peer_id, peer_score)
        deliver(PeerHandshakeResult(peer_id=peer.peer_id, outcome=HandshakeOutcome.BYZANTINE))
        return HandshakeOutcome.BYZANTINE

    peer_score = float(peer_score)
    if peer_score < critical_threshold:
        LOGGER.info("peer %s untrusted: stability %.4f below %.2f", peer.peer_id, peer_score, critical_threshold)
        return None

    greeting = Greeting(
        sender_id=snapshot.entity_id,
        stability_score=snapshot.stability_score,
        audit_size=snapshot.audit_size,
        protocol_version=protocol_version,
    )
    try:
        await asyncio.wait_for(client.exchange(greeting), timeout)
    except asyncio.CancelledError:
        raise
    except Exception as exc:  # noqa: BLE001
        LOGGER.info("peer %s untrusted: exchange failed (%s)", peer.peer_id, exc)
        return None

    LOGGER.info(
        "handshake with %s complete (local %.4f, audit %d, peer %.4f)",
        peer.peer_id,
        snapshot.stability_score,
        snapshot.audit_size,
        peer_score,
    )
    deliver(
        PeerHandshakeResult(
            peer_id=peer.peer_id,
            outcome=HandshakeOutcome.COMPLETED,
            peer_stability=peer_score,
        )
    )
    return HandshakeOutcome.COMPLETED


def decode_peer_message(
    message: Union[Greeting, ThreatWarning],
    *,
    critical_threshold: float = 0.72,
) -> Optional[str]:
    """Return an audit note for an inbound peer message, or None to discard it."""
    if isinstance(message, Greeting):
        if message.stability_score >= critical_threshold:
            return f"ethical peer recognized: {message.sender_id}"
        return None
    if isinstance(message, ThreatWarning) and message.threat_level > WARNING_THREAT_LEVEL:
        return "containment recommended"
    return None


__all__ = [
    "HandshakeSnapshot",
    "LocalPeerClient",
    "PeerClient",
    "PeerConnector",
    "PeerDirectory",
    "decode_peer_message",
    "is_byzantine_score",
    "run_handshake",
]
