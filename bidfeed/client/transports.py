"""Concrete client transports: a websocket and a ``text/event-stream`` reader."""

from __future__ import annotations

import logging
from typing import Any, Iterable
from urllib.parse import urlencode

import httpx
import websockets

from ..subscribers.fsm import ChannelKind
from ..transport.canonical_json import loads
from ..transport.framing import KEEPALIVE_EVENT, EventStreamDecoder
from .reconnector import ClientTransport, EventHandler, TransportFactory

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised when a transport cannot be established."""


def _decode(raw: str | bytes) -> dict[str, Any] | None:
    try:
        event = loads(raw)
    except ValueError:
        logger.warning("skipping malformed frame: %.80r", raw)
        return None
    return event if isinstance(event, dict) else None


class SocketTransport:
    kind = ChannelKind.DUPLEX_SOCKET

    def __init__(self, url: str, *, open_timeout: float = 10.0, ping_interval: float | None = 20.0) -> None:
        self.url = url
        self._open_timeout = open_timeout
        self._ping_interval = ping_interval
        self._connection: Any = None

    async def connect(self) -> None:
        self._connection = await websockets.connect(
            self.url,
            open_timeout=self._open_timeout,
            ping_interval=self._ping_interval,
        )

    async def listen(self, on_message: EventHandler) -> None:
        if self._connection is None:
            raise TransportError("socket is not connected")
        # a clean close ends the loop, an abnormal one raises ConnectionClosedError
        async for raw in self._connection:
            event = _decode(raw)
            if event is not None:
                on_message(event)

    async def close(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.close()


class StreamTransport:
    kind = ChannelKind.PUSH_STREAM

    def __init__(
        self,
        url: str,
        *,
        read_timeout: float = 60.0,
        connect_timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        # no bytes for longer than read_timeout (keep-alives included) means a dead stream
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(connect_timeout, read=read_timeout)
        )
        self._response: httpx.Response | None = None

    async def connect(self) -> None:
        request = self._client.build_request(
            "GET",
            self.url,
            headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
        )
        response = await self._client.send(request, stream=True)
        if response.status_code != 200:
            await response.aclose()
            raise TransportError(f"stream refused with HTTP {response.status_code}")
        self._response = response

    async def listen(self, on_message: EventHandler) -> None:
        if self._response is None:
            raise TransportError("stream is not connected")
        decoder = EventStreamDecoder()
        async for line in self._response.aiter_lines():
            frame = decoder.feed(line)
            if frame is None:
                continue
            event_type, data = frame
            if event_type == KEEPALIVE_EVENT:
                continue
            event = _decode(data)
            if event is not None:
                on_message(event)

    async def close(self) -> None:
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()
        if self._owns_client:
            await self._client.aclose()


def transport_factory(
    base_url: str,
    topics: Iterable[str] = (),
    *,
    read_timeout: float = 60.0,
) -> TransportFactory:
    """Build transports for a server at ``base_url`` (``http://`` or ``https://``)."""
    http_base = base_url.rstrip("/")
    if http_base.startswith("https://"):
        ws_base = "wss://" + http_base[len("https://"):]
    elif http_base.startswith("http://"):
        ws_base = "ws://" + http_base[len("http://"):]
    else:
        raise ValueError(f"unsupported base url {base_url}")
    query = urlencode([("topic", topic) for topic in topics])
    suffix = f"?{query}" if query else ""

    def build(kind: ChannelKind) -> ClientTransport:
        if kind is ChannelKind.DUPLEX_SOCKET:
            return SocketTransport(f"{ws_base}/ws{suffix}")
        return StreamTransport(f"{http_base}/stream{suffix}", read_timeout=read_timeout)

    return build
