"""Channel establishment and teardown for duplex sockets and push streams."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from fastapi import status
from starlette.requests import HTTPConnection
from starlette.websockets import WebSocket, WebSocketState

from ..subscribers.channel import Channel, ChannelClosedError, ChannelOverflowError
from ..subscribers.fsm import ChannelKind, ChannelState
from ..subscribers.registry import SubscriptionRegistry
from .framing import KEEPALIVE_EVENT, KEEPALIVE_KEY, encode_event, frame_for, keepalive_event, retry_frame

logger = logging.getLogger(__name__)


class ChannelRejected(PermissionError):
    """Raised when the authorization check refuses a new channel."""


@dataclass(frozen=True)
class ConnectionContext:
    kind: ChannelKind
    topics: tuple[str, ...] = ()
    origin: str | None = None
    client: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)


AuthorizationCheck = Callable[[ConnectionContext], Any]


def context_from_connection(kind: ChannelKind, connection: HTTPConnection) -> ConnectionContext:
    client = connection.client
    return ConnectionContext(
        kind=kind,
        topics=tuple(topic for topic in connection.query_params.getlist("topic") if topic),
        origin=connection.headers.get("origin"),
        client=f"{client.host}:{client.port}" if client else None,
        headers=dict(connection.headers),
    )


def allow_all(context: ConnectionContext) -> bool:
    return True


def origin_allow_list(origins: Iterable[str]) -> AuthorizationCheck:
    allowed = {origin.rstrip("/") for origin in origins if origin}

    def check(context: ConnectionContext) -> bool:
        if not allowed or context.origin is None:
            return True
        return context.origin.rstrip("/") in allowed

    return check


class TransportServer:
    def __init__(
        self,
        registry: SubscriptionRegistry,
        *,
        authorize: AuthorizationCheck | None = None,
        keepalive_seconds: float = 25.0,
        max_pending: int = 32,
        retry_ms: int = 3000,
        on_open: Callable[[Channel], Any] | None = None,
    ) -> None:
        self._registry = registry
        self._authorize = authorize or allow_all
        self._keepalive_seconds = keepalive_seconds
        self._max_pending = max_pending
        self._retry_ms = retry_ms
        self._on_open = on_open

    async def authorize(self, context: ConnectionContext) -> None:
        allowed = self._authorize(context)
        if inspect.isawaitable(allowed):
            allowed = await allowed
        if not allowed:
            raise ChannelRejected(f"{context.kind.value} channel refused for {context.client or 'unknown client'}")

    def establish(self, kind: ChannelKind, topics: Iterable[str] = ()) -> Channel:
        channel = Channel(kind, topics, max_pending=self._max_pending)
        channel.on_close(lambda closed: self._registry.unregister(closed.id))
        channel.open()
        self._registry.register(channel)
        logger.info(
            "subscriber %s opened (%s) topics=%s total=%d",
            channel.id,
            kind.value,
            sorted(channel.topics) if channel.topics is not None else "all",
            len(self._registry),
        )
        if self._on_open is not None:
            self._on_open(channel)
        return channel

    def teardown(self, channel: Channel) -> None:
        """Unregister then close; safe to call from every disconnect path."""
        self._registry.unregister(channel.id)
        if channel.state is not ChannelState.CLOSED:
            channel.close()
            logger.info("subscriber %s closed (%s) total=%d", channel.id, channel.kind.value, len(self._registry))

    def close_all(self) -> None:
        for channel in self._registry.all():
            self.teardown(channel)

    # Duplex sockets ---------------------------------------------------------

    async def serve_socket(self, websocket: WebSocket, context: ConnectionContext) -> None:
        try:
            await self.authorize(context)
        except ChannelRejected as exc:
            logger.info("%s", exc)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket.accept()
        channel = self.establish(ChannelKind.DUPLEX_SOCKET, context.topics)
        reader = asyncio.create_task(self._read_socket(websocket, channel))
        writer = asyncio.create_task(self._write_socket(websocket, channel))
        try:
            await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._registry.unregister(channel.id)
            channel.begin_close()
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)
            await self._close_socket(websocket)
            self.teardown(channel)

    async def _read_socket(self, websocket: WebSocket, channel: Channel) -> None:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            logger.debug(
                "ignoring inbound message on %s: %.80s",
                channel.id,
                message.get("text") or message.get("bytes"),
            )

    async def _write_socket(self, websocket: WebSocket, channel: Channel) -> None:
        try:
            async for frame in channel.drain():
                await websocket.send_text(frame)
        except Exception as exc:
            logger.warning("write to subscriber %s failed: %s", channel.id, exc)

    async def _close_socket(self, websocket: WebSocket) -> None:
        if (
            websocket.application_state is WebSocketState.CONNECTED
            and websocket.client_state is WebSocketState.CONNECTED
        ):
            with contextlib.suppress(RuntimeError, OSError):
                await websocket.close()

    # Push streams -----------------------------------------------------------

    async def open_stream(self, context: ConnectionContext) -> AsyncIterator[str]:
        """Authorize, then return the frame iterator backing a push-stream response."""
        await self.authorize(context)
        return self._stream(context.topics)

    async def _stream(self, topics: Iterable[str]) -> AsyncIterator[str]:
        channel = self.establish(ChannelKind.PUSH_STREAM, topics)
        keepalive = asyncio.create_task(self._keepalive(channel))
        try:
            yield retry_frame(self._retry_ms)
            async for frame in channel.drain():
                yield frame
        finally:
            keepalive.cancel()
            self.teardown(channel)

    async def _keepalive(self, channel: Channel) -> None:
        while channel.is_open:
            await asyncio.sleep(self._keepalive_seconds)
            frame = frame_for(channel.kind, KEEPALIVE_EVENT, encode_event(keepalive_event()))
            try:
                channel.offer(KEEPALIVE_KEY, frame)
            except ChannelClosedError:
                return
            except ChannelOverflowError as exc:
                logger.warning("dropping stalled subscriber %s: %s", channel.id, exc)
                self.teardown(channel)
                return
