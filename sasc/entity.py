"""Single-writer actor owning one :class:`~sasc.state.ProcessState`.

All stimuli, ticks, transition requests and peer results are envelopes on one
``asyncio.Queue`` drained by a single worker task, so no two operations on the
same entity ever interleave. Reads go through the same queue and therefore see
a consistent state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import numpy as np

from .config import EntityCfg
from .containment import ContainmentController, RegulationOutcome
from .emergency import CouplingRegister, EmergencyLatch, ExternalCoupling
from .field import evolve_field
from .gate import TransitionDenied, TransitionRequest, TransitionResult, authorize_transition
from .handshake import HandshakeSnapshot, PeerConnector, decode_peer_message, run_handshake
from .measurement import DecoherenceFailure, PhaseSource, read_spin
from .messages import (
    FatalCondition,
    Greeting,
    HandshakeOutcome,
    PeerHandshakeResult,
    Stimulus,
    ThreatWarning,
)
from .stability import StabilityBand, classify_stability, turbulence
from .state import AuditEntry, LifecycleState, PeerRef, ProcessState

LOGGER = logging.getLogger(__name__)


class EntitySealedError(RuntimeError):
    """Mutating request sent to an entity under emergency containment."""


class EntityNotRunningError(RuntimeError):
    pass


@dataclass(frozen=True)
class EntitySnapshot:
    id: str
    lifecycle: LifecycleState
    stability_score: float
    band: StabilityBand
    containment_ratio: float
    turbulence: float
    audit_size: int
    neighbors: Tuple[str, ...]
    emergency: bool


@dataclass
class _Envelope:
    kind: str
    payload: Any = None
    reply: Optional["asyncio.Future[Any]"] = None


# served even after emergency containment
_READ_KINDS = frozenset({"get_stability", "snapshot", "audit"})


class GovernedEntity:
    def __init__(
        self,
        cfg: Optional[EntityCfg] = None,
        *,
        field: Optional[np.ndarray] = None,
        neighbors: Optional[List[PeerRef]] = None,
        coupling: Optional[ExternalCoupling] = None,
        connector: Optional[PeerConnector] = None,
    ) -> None:
        self.cfg = (cfg or EntityCfg()).validate()
        self._state = ProcessState.create(self.cfg, field=field, neighbors=neighbors)
        self.controller = ContainmentController(self.cfg)
        self.coupling: ExternalCoupling = coupling or CouplingRegister()
        self.emergency = EmergencyLatch()
        self._connector = connector
        self._queue: Optional["asyncio.Queue[_Envelope]"] = None
        self._worker: Optional["asyncio.Task[None]"] = None
        self._tick_handle: Optional[asyncio.TimerHandle] = None
        self._handshakes: Set["asyncio.Task[Any]"] = set()
        self._running = False
        self._handlers: Dict[str, Callable[[Any], Any]] = {
            "stimulus": self._on_stimulus,
            "tick": self._on_tick,
            "transition": self._on_transition,
            "handshake_result": self._on_handshake_result,
            "peer_message": self._on_peer_message,
            "fatal": self._on_fatal,
            "measurement": self._on_measurement,
            "get_stability": lambda _payload: self._state.stability_score,
            "snapshot": lambda _payload: self._snapshot(),
            "audit": lambda _payload: self._state.audit_log.entries(),
        }

    @property
    def id(self) -> str:
        return self._state.id

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------- lifecycle
    async def start(self) -> "GovernedEntity":
        if self._running:
            return self
        self._queue = asyncio.Queue()
        self._running = True
        self._worker = asyncio.create_task(self._run(self._queue), name=f"sasc-entity-{self.id[:8]}")
        if not self.emergency.engaged:
            self._arm_tick()
        LOGGER.info("entity %s started (%s)", self.id, self._state.lifecycle.value)
        return self

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._cancel_tick()
        self._cancel_handshakes()
        if self._handshakes:
            await asyncio.gather(*self._handshakes, return_exceptions=True)
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None
        self._fail_backlog(EntityNotRunningError("entity stopped"))
        LOGGER.info("entity %s stopped", self.id)

    async def __aenter__(self) -> "GovernedEntity":
        return await self.start()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    async def join(self) -> None:
        """Wait until every envelope queued so far has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def drain(self) -> None:
        """Wait for the queue and for detached handshakes (and what they deliver)."""
        while True:
            await self.join()
            pending = list(self._handshakes)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------ public API
    def send_stimulus(self, stimulus: Stimulus) -> None:
        self._post(_Envelope("stimulus", stimulus))

    def deliver(self, message: Any) -> None:
        """Fire-and-forget delivery of an inbound message."""
        if isinstance(message, Stimulus):
            kind = "stimulus"
        elif isinstance(message, PeerHandshakeResult):
            kind = "handshake_result"
        elif isinstance(message, FatalCondition):
            kind = "fatal"
        elif isinstance(message, (Greeting, ThreatWarning)):
            kind = "peer_message"
        else:
            raise TypeError(f"cannot deliver {type(message).__name__}")
        if not self._running or self._rejects(kind):
            LOGGER.debug("entity %s not accepting %s; dropped", self.id, kind)
            return
        self._post(_Envelope(kind, message))

    async def request_transition(self, request: TransitionRequest) -> TransitionResult:
        return await self._call("transition", request)

    async def get_stability(self) -> float:
        return await self._call("get_stability")

    async def snapshot(self) -> EntitySnapshot:
        return await self._call("snapshot")

    async def audit_entries(self) -> Tuple[AuditEntry, ...]:
        return await self._call("audit")

    async def tick_now(self) -> RegulationOutcome:
        """Run one regulation step out of schedule; the timer is left as is."""
        return await self._call("tick", False)

    async def trigger_emergency(self, reason: str) -> bool:
        return await self._call("fatal", FatalCondition(reason=reason))

    async def submit_measurement(self, source: PhaseSource) -> float:
        return await self._call("measurement", source)

    async def receive_peer_message(self, message: Greeting | ThreatWarning) -> Optional[str]:
        return await self._call("peer_message", message)

    # ------------------------------------------------------------- plumbing
    def _post(self, envelope: _Envelope) -> None:
        if not self._running or self._queue is None:
            raise EntityNotRunningError(f"entity {self.id} is not running")
        if self._rejects(envelope.kind):
            raise EntitySealedError(f"entity {self.id} is sealed: {self.emergency.reason}")
        self._queue.put_nowait(envelope)

    async def _call(self, kind: str, payload: Any = None) -> Any:
        future: "asyncio.Future[Any]" = asyncio.get_running_loop().create_future()
        self._post(_Envelope(kind, payload, future))
        return await future

    def _rejects(self, kind: str) -> bool:
        return self.emergency.engaged and kind not in _READ_KINDS and kind != "fatal"

    async def _run(self, queue: "asyncio.Queue[_Envelope]") -> None:
        while True:
            envelope = await queue.get()
            try:
                self._dispatch(envelope)
            finally:
                queue.task_done()

    def _dispatch(self, envelope: _Envelope) -> None:
        reply = envelope.reply
        if reply is not None and reply.done():
            return
        if self._rejects(envelope.kind):
            # queued before the latch engaged; backlog is discarded
            LOGGER.debug("entity %s sealed; discarding queued %s", self.id, envelope.kind)
            if reply is not None:
                reply.set_exception(EntitySealedError(f"entity {self.id} is sealed"))
            return
        try:
            result = self._handlers[envelope.kind](envelope.payload)
        except Exception as exc:  # noqa: BLE001
            if reply is not None:
                reply.set_exception(exc)
            else:
                LOGGER.exception("entity %s failed handling %s", self.id, envelope.kind)
            return
        if reply is not None:
            reply.set_result(result)

    def _fail_backlog(self, exc: Exception) -> None:
        if self._queue is None:
            return
        while not self._queue.empty():
            envelope = self._queue.get_nowait()
            self._queue.task_done()
            if envelope.reply is not None and not envelope.reply.done():
                envelope.reply.set_exception(exc)

    # ---------------------------------------------------------------- ticks
    def _arm_tick(self) -> None:
        loop = asyncio.get_running_loop()
        self._tick_handle = loop.call_later(self.cfg.tick_interval_s, self._on_tick_timer)

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _on_tick_timer(self) -> None:
        self._tick_handle = None
        if not self._running or self._queue is None or self.emergency.engaged:
            return
        self._queue.put_nowait(_Envelope("tick", True))

    # ------------------------------------------------------------- handlers
    def _on_stimulus(self, stimulus: Stimulus) -> None:
        state = self._state
        state.replace_field(evolve_field(state.field, stimulus.vorticity, state.containment_ratio))
        if (
            stimulus.vorticity > self.cfg.handshake.vorticity_threshold
            and state.stability_score >= self.cfg.critical_threshold
        ):
            self._spawn_handshake(stimulus.source_id)

    def _on_tick(self, rearm: bool) -> RegulationOutcome:
        try:
            return self._regulate()
        finally:
            if rearm and self._running and not self.emergency.engaged:
                self._arm_tick()

    def _regulate(self) -> RegulationOutcome:
        state = self._state
        outcome = self.controller.regulate(state.field, state.containment_ratio, state.lifecycle)
        state.set_containment(outcome.containment_ratio)
        state.stability_score = outcome.stability_score
        if outcome.escalate:
            state.lifecycle = LifecycleState.SEALED_GENTLE
            state.set_containment(self.cfg.controller.ratio_ceiling)
            state.log("gentle containment engaged")
            LOGGER.warning(
                "entity %s sealed gently: stability %.4f below %.2f",
                self.id,
                outcome.stability_score,
                self.cfg.secondary_floor,
            )
        return outcome

    def _on_transition(self, request: TransitionRequest) -> TransitionResult:
        state = self._state
        try:
            approved = authorize_transition(request, state.containment_ratio)
        except TransitionDenied as exc:
            state.log(f"blocked: {exc.reason.value}")
            LOGGER.warning("entity %s transition to %s blocked: %s", self.id, request.target.value, exc.reason.value)
            return TransitionResult.error(exc.reason)
        previous = state.lifecycle
        state.set_containment(approved.containment_ratio)
        state.lifecycle = approved.target
        state.log(f"transition {approved.target.value} authorized")
        LOGGER.info(
            "entity %s transition %s -> %s (containment %.3f)",
            self.id,
            previous.value,
            approved.target.value,
            state.containment_ratio,
        )
        return TransitionResult.success(state.stability_score)

    def _on_handshake_result(self, result: PeerHandshakeResult) -> None:
        if result.outcome is HandshakeOutcome.COMPLETED:
            self._state.log(f"peer handshake completed with {result.peer_id}")
            return
        if self._state.neighbors.pop(result.peer_id, None) is not None:
            LOGGER.warning("entity %s rejected peer %s: ByzantineAttack", self.id, result.peer_id)

    def _on_peer_message(self, message: Greeting | ThreatWarning) -> Optional[str]:
        note = decode_peer_message(message, critical_threshold=self.cfg.critical_threshold)
        if note is not None:
            self._state.log(note)
        return note

    def _on_fatal(self, condition: FatalCondition) -> bool:
        return self._engage_emergency(condition.reason)

    def _on_measurement(self, source: PhaseSource) -> float:
        try:
            return read_spin(source)
        except DecoherenceFailure as exc:
            self._engage_emergency(f"decoherence failure ({exc.pattern:.4f})")
            raise

    def _engage_emergency(self, reason: str) -> bool:
        if not self.emergency.engage(reason, self.coupling):
            return False
        self._state.lifecycle = LifecycleState.SEALED_EMERGENCY
        self._state.log(f"emergency containment engaged: {reason}")
        self._cancel_tick()
        self._cancel_handshakes()
        return True

    # ------------------------------------------------------------ handshake
    def _spawn_handshake(self, source_id: str) -> None:
        peer = self._state.neighbors.get(source_id)
        if peer is None or self._connector is None:
            LOGGER.debug("entity %s: no handshake route to %s", self.id, source_id)
            return
        try:
            client = self._connector(peer)
        except Exception as exc:  # noqa: BLE001
            LOGGER.info("peer %s untrusted: connect failed (%s)", peer.peer_id, exc)
            return
        snapshot = HandshakeSnapshot(
            entity_id=self.id,
            stability_score=self._state.stability_score,
            audit_size=len(self._state.audit_log),
        )
        task = asyncio.create_task(
            run_handshake(
                snapshot,
                peer,
                client,
                self.deliver,
                critical_threshold=self.cfg.critical_threshold,
                timeout=self.cfg.handshake.peer_timeout_s,
                protocol_version=self.cfg.handshake.protocol_version,
            )
        )
        self._handshakes.add(task)
        task.add_done_callback(self._handshakes.discard)

    def _cancel_handshakes(self) -> None:
        for task in list(self._handshakes):
            task.cancel()

    def _snapshot(self) -> EntitySnapshot:
        state = self._state
        return EntitySnapshot(
            id=state.id,
            lifecycle=state.lifecycle,
            stability_score=state.stability_score,
            band=classify_stability(state.stability_score),
            containment_ratio=state.containment_ratio,
            turbulence=turbulence(state.field),
            audit_size=len(state.audit_log),
            neighbors=tuple(sorted(state.neighbors)),
            emergency=self.emergency.engaged,
        )


__all__ = ["EntityNotRunningError", "EntitySealedError", "EntitySnapshot", "GovernedEntity"]
