"""Subscriber channel finite state machine."""

from __future__ import annotations

from enum import Enum


class ChannelKind(str, Enum):
    DUPLEX_SOCKET = "duplex-socket"
    PUSH_STREAM = "push-stream"

    @property
    def alternate(self) -> "ChannelKind":
        if self is ChannelKind.DUPLEX_SOCKET:
            return ChannelKind.PUSH_STREAM
        return ChannelKind.DUPLEX_SOCKET


class ChannelState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ChannelEvent(str, Enum):
    ESTABLISHED = "established"
    CLOSE_REQUESTED = "close_requested"
    CLOSED = "closed"


_TRANSITIONS = {
    (ChannelState.CONNECTING, ChannelEvent.ESTABLISHED): ChannelState.OPEN,
    (ChannelState.CONNECTING, ChannelEvent.CLOSED): ChannelState.CLOSED,
    (ChannelState.OPEN, ChannelEvent.CLOSE_REQUESTED): ChannelState.CLOSING,
    (ChannelState.OPEN, ChannelEvent.CLOSED): ChannelState.CLOSED,
    (ChannelState.CLOSING, ChannelEvent.CLOSED): ChannelState.CLOSED,
}


def transition(current: ChannelState, event: ChannelEvent) -> ChannelState:
    try:
        return _TRANSITIONS[(current, event)]
    except KeyError as exc:
        raise ValueError(f"invalid transition from {current} via {event}") from exc
