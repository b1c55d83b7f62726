"""WebSocket transport for the peer-facing RPC.

One JSON message per frame, encoded with :mod:`sasc.messages`. Every request
frame gets exactly one reply frame; failures come back as ``RpcError``.
"""

from __future__ import annotations

import logging
from typing import Any

from websockets import connect, serve

from .entity import EntityNotRunningError, EntitySealedError, GovernedEntity
from .gate import TransitionRequest
from .messages import (
    Ack,
    GetStability,
    Greeting,
    RpcError,
    StabilityReply,
    Stimulus,
    ThreatWarning,
    TransitionReply,
    decode_message,
    encode_message,
)
from .state import PeerRef


class PeerRpcError(RuntimeError):
    pass


class PeerRpcServer:
    def __init__(self, entity: GovernedEntity) -> None:
        self.entity = entity
        self.logger = logging.getLogger("sasc.peer_rpc")

    async def handle_message(self, message: Any) -> Any:
        if isinstance(message, GetStability):
            return StabilityReply(value=await self.entity.get_stability())
        if isinstance(message, (Greeting, ThreatWarning)):
            await self.entity.receive_peer_message(message)
            return Ack()
        if isinstance(message, Stimulus):
            self.entity.send_stimulus(message)
            return Ack()
        if isinstance(message, TransitionRequest):
            result = await self.entity.request_transition(message)
            return TransitionReply(
                ok=result.ok,
                stability_score=result.stability_score,
                reason=result.reason.value if result.reason is not None else None,
            )
        return RpcError(detail=f"unsupported request {type(message).__name__}")

    async def connection_handler(self, websocket: Any) -> None:
        async for raw in websocket:
            try:
                message = decode_message(raw)
            except ValueError as exc:
                self.logger.warning("Discarding malformed peer frame: %s", exc)
                reply: Any = RpcError(detail=str(exc))
            else:
                try:
                    reply = await self.handle_message(message)
                except (EntitySealedError, EntityNotRunningError) as exc:
                    reply = RpcError(detail=str(exc))
                except Exception as exc:  # noqa: BLE001
                    self.logger.exception("Peer request %s failed", type(message).__name__)
                    reply = RpcError(detail=f"{type(exc).__name__}: {exc}")
            await websocket.send(encode_message(reply))


def serve_peer_rpc(entity: GovernedEntity, host: str = "127.0.0.1", port: int = 0):
    """Return a websockets server (use with ``async with``) answering for ``entity``."""
    server = PeerRpcServer(entity)
    return serve(server.connection_handler, host, port)


class WebSocketPeerClient:
    def __init__(self, url: str) -> None:
        self.url = url

    async def request(self, message: Any) -> Any:
        async with connect(self.url) as ws:
            await ws.send(encode_message(message))
            raw = await ws.recv()
        reply = decode_message(raw)
        if isinstance(reply, RpcError):
            raise PeerRpcError(reply.detail)
        return reply

    async def get_stability(self) -> float:
        reply = await self.request(GetStability())
        if not isinstance(reply, StabilityReply):
            raise PeerRpcError(f"expected StabilityReply, got {type(reply).__name__}")
        return reply.value

    async def exchange(self, greeting: Greeting) -> None:
        reply = await self.request(greeting)
        if not isinstance(reply, Ack):
            raise PeerRpcError(f"expected Ack, got {type(reply).__name__}")


def websocket_connector(ref: PeerRef) -> WebSocketPeerClient:
    return WebSocketPeerClient(ref.address)


__all__ = [
    "PeerRpcError",
    "PeerRpcServer",
    "WebSocketPeerClient",
    "serve_peer_rpc",
    "websocket_connector",
]
