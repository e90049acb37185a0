"""Best-effort broadcast of auction events to subscriber channels."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..subscribers.channel import Channel
from ..subscribers.fsm import ChannelKind
from ..subscribers.registry import SubscriptionRegistry
from ..transport.framing import encode_event, frame_for

logger = logging.getLogger(__name__)


class _Frames:
    """Encodes an event once and frames it at most once per channel kind."""

    def __init__(self, event: Mapping[str, Any]) -> None:
        self.event_type = str(event.get("type", "message"))
        self.data = encode_event(event)
        self._framed: dict[ChannelKind, str] = {}

    def for_kind(self, kind: ChannelKind) -> str:
        frame = self._framed.get(kind)
        if frame is None:
            frame = self._framed[kind] = frame_for(kind, self.event_type, self.data)
        return frame


class BroadcastDispatcher:
    def __init__(self, registry: SubscriptionRegistry) -> None:
        self._registry = registry

    def publish(self, topic: str, event: Mapping[str, Any]) -> int:
        """Queue ``event`` on every open channel that wants ``topic``.

        Never raises. A channel that cannot take the frame is closed and
        unregistered; the remaining channels still receive it. Returns the number
        of channels the frame was queued on.
        """
        try:
            frames = _Frames(event)
        except (TypeError, ValueError):
            logger.exception("could not encode event for topic=%s", topic)
            return 0
        delivered = 0

        def deliver(channel: Channel) -> None:
            nonlocal delivered
            if self._offer(channel, topic, frames.for_kind(channel.kind)):
                delivered += 1

        self._registry.for_each_open(topic, deliver)
        return delivered

    def send_to(self, channel: Channel, topic: str, event: Mapping[str, Any]) -> bool:
        try:
            frames = _Frames(event)
        except (TypeError, ValueError):
            logger.exception("could not encode event for topic=%s", topic)
            return False
        return self._offer(channel, topic, frames.for_kind(channel.kind))

    def _offer(self, channel: Channel, key: str, frame: str) -> bool:
        try:
            channel.offer(key, frame)
            return True
        except Exception as exc:
            logger.warning("dropping subscriber %s (%s): %s", channel.id, channel.kind.value, exc)
            self._drop(channel)
            return False

    def _drop(self, channel: Channel) -> None:
        self._registry.unregister(channel.id)
        try:
            channel.close()
        except Exception:  # pragma: no cover - close callbacks are ours
            logger.exception("error closing subscriber %s", channel.id)
