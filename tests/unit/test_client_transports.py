"""Unit tests for the concrete client transports."""

from __future__ import annotations

import httpx
import pytest

from bidfeed.client.transports import SocketTransport, StreamTransport, TransportError, transport_factory
from bidfeed.subscribers.fsm import ChannelKind

STREAM_BODY = (
    "retry: 3000\n\n"
    'event: keepalive\ndata: {"timestamp":"2026-01-01T00:00:00Z","type":"keepalive"}\n\n'
    'event: leader\ndata: {"currentBid":90.0,"leadingBidder":"Mike","topic":"t1","type":"leader"}\n\n'
    "event: leader\ndata: not-json\n\n"
)


class TestStreamTransport:
    """Event-stream reader over httpx."""

    @pytest.mark.asyncio
    async def test_reads_leader_events(self):
        """Test that keep-alives and malformed frames never reach the handler."""
        seen_headers = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen_headers["accept"] = request.headers.get("accept")
            return httpx.Response(200, text=STREAM_BODY, headers={"content-type": "text/event-stream"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = StreamTransport("http://feed.test/stream?topic=t1", client=client)
        received = []
        await transport.connect()
        await transport.listen(received.append)
        await transport.close()
        await client.aclose()

        assert seen_headers["accept"] == "text/event-stream"
        assert received == [{"currentBid": 90.0, "leadingBidder": "Mike", "topic": "t1", "type": "leader"}]

    @pytest.mark.asyncio
    async def test_refused(self):
        """Test that a non-200 response is a connect failure."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(403)))
        transport = StreamTransport("http://feed.test/stream", client=client)
        with pytest.raises(TransportError):
            await transport.connect()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_listen_requires_connect(self):
        """Test that listening before connecting fails loudly."""
        transport = StreamTransport("http://feed.test/stream")
        with pytest.raises(TransportError):
            await transport.listen(lambda event: None)
        await transport.close()


class TestTransportFactory:
    """URL building for both kinds."""

    def test_urls(self):
        """Test scheme mapping and topic query strings."""
        build = transport_factory("https://feed.test/", ["t1", "t2"])
        socket = build(ChannelKind.DUPLEX_SOCKET)
        stream = build(ChannelKind.PUSH_STREAM)
        assert isinstance(socket, SocketTransport)
        assert socket.url == "wss://feed.test/ws?topic=t1&topic=t2"
        assert isinstance(stream, StreamTransport)
        assert stream.url == "https://feed.test/stream?topic=t1&topic=t2"

    def test_plain_http(self):
        """Test the insecure scheme and an empty topic list."""
        build = transport_factory("http://localhost:4000")
        assert build(ChannelKind.DUPLEX_SOCKET).url == "ws://localhost:4000/ws"

    def test_bad_scheme(self):
        """Test that non-http base urls are rejected."""
        with pytest.raises(ValueError):
            transport_factory("ftp://feed.test")
