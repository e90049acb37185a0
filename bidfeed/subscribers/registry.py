"""Registry of live subscriber channels."""

from __future__ import annotations

from collections import Counter
from typing import Callable

from .channel import Channel
from .fsm import ChannelKind


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._channels: dict[str, Channel] = {}

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, handle: object) -> bool:
        return handle in self._channels

    def register(self, channel: Channel) -> str:
        self._channels.setdefault(channel.id, channel)
        return channel.id

    def unregister(self, handle: str) -> None:
        self._channels.pop(handle, None)

    def get(self, handle: str) -> Channel | None:
        return self._channels.get(handle)

    def all(self) -> list[Channel]:
        return list(self._channels.values())

    def for_each_open(self, topic: str, fn: Callable[[Channel], None]) -> int:
        """Call ``fn`` for every open channel that wants ``topic``.

        Iterates over a snapshot, so ``fn`` may close or unregister channels.
        """
        visited = 0
        for channel in list(self._channels.values()):
            if channel.is_open and channel.wants(topic):
                fn(channel)
                visited += 1
        return visited

    def counts_by_kind(self) -> dict[str, int]:
        counts: Counter[str] = Counter(channel.kind.value for channel in self._channels.values())
        return {kind.value: counts.get(kind.value, 0) for kind in ChannelKind}
