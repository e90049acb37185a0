"""Event payloads and their framing on the two channel kinds.

Duplex channels carry the JSON text of an event as one message. Push-stream
channels use ``text/event-stream`` framing::

    event: leader
    data: {"currentBid":90.0,"leadingBidder":"Mike",...}

with a blank line terminating every frame.
"""

from __future__ import annotations

from typing import Any, Mapping

from ..auction.models import AuctionLeader
from ..subscribers.fsm import ChannelKind
from .canonical_json import canonical_text
from .timestamps import utc_timestamp

LEADER_EVENT = "leader"
KEEPALIVE_EVENT = "keepalive"
KEEPALIVE_KEY = "__keepalive__"


def leader_event(topic: str, leader: AuctionLeader, timestamp: str | None = None) -> dict[str, Any]:
    return {
        "type": LEADER_EVENT,
        "topic": topic,
        **leader.as_payload(),
        "timestamp": timestamp or utc_timestamp(),
    }


def keepalive_event(timestamp: str | None = None) -> dict[str, Any]:
    return {"type": KEEPALIVE_EVENT, "timestamp": timestamp or utc_timestamp()}


def encode_event(event: Mapping[str, Any]) -> str:
    return canonical_text(dict(event))


def frame_for(kind: ChannelKind, event_type: str, data: str) -> str:
    if kind is ChannelKind.PUSH_STREAM:
        return f"event: {event_type}\ndata: {data}\n\n"
    return data


def retry_frame(retry_ms: int) -> str:
    return f"retry: {int(retry_ms)}\n\n"


class EventStreamDecoder:
    """Incremental ``text/event-stream`` parser fed one line at a time."""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self.retry_ms: int | None = None

    def feed(self, line: str) -> tuple[str, str] | None:
        """Consume ``line``; return ``(event_type, data)`` when a frame completes."""
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "retry" and value.isdigit():
            self.retry_ms = int(value)
        return None

    def _dispatch(self) -> tuple[str, str] | None:
        if not self._data:
            self._event = ""
            return None
        frame = (self._event or "message", "\n".join(self._data))
        self._event = ""
        self._data = []
        return frame
