"""Outbound subscriber channel with a coalescing per-topic outbox."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import AsyncIterator, Callable, Iterable
from uuid import uuid4

from .fsm import ChannelEvent, ChannelKind, ChannelState, transition

logger = logging.getLogger(__name__)

ALL_TOPICS = "*"


class ChannelError(RuntimeError):
    """Raised when a frame cannot be queued on a channel."""


class ChannelClosedError(ChannelError):
    """Raised when offering a frame to a channel that is no longer open."""


class ChannelOverflowError(ChannelError):
    """Raised when a slow channel accumulates too many pending frames."""


class Channel:
    """One live client connection.

    Frames are queued under a key (the auction topic, or the keep-alive key). A
    newer frame for a key replaces the one still waiting and moves to the back of
    the queue, so a slow reader skips superseded snapshots but still sees frames in
    publish order. More than ``max_pending`` distinct keys waiting counts as
    backpressure overflow.
    """

    def __init__(
        self,
        kind: ChannelKind,
        topics: Iterable[str] | None = None,
        *,
        max_pending: int = 32,
        channel_id: str | None = None,
    ) -> None:
        self.id = channel_id or uuid4().hex
        self.kind = kind
        wanted = frozenset(topics or ())
        self.topics: frozenset[str] | None = None if not wanted or ALL_TOPICS in wanted else wanted
        self.state = ChannelState.CONNECTING
        self._max_pending = max_pending
        self._pending: OrderedDict[str, str] = OrderedDict()
        self._ready = asyncio.Event()
        self._close_callbacks: list[Callable[[Channel], None]] = []

    def __repr__(self) -> str:
        return f"Channel(id={self.id!r}, kind={self.kind.value}, state={self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state is ChannelState.OPEN

    @property
    def pending(self) -> int:
        return len(self._pending)

    def wants(self, topic: str) -> bool:
        return self.topics is None or topic == ALL_TOPICS or topic in self.topics

    def on_close(self, callback: Callable[["Channel"], None]) -> None:
        self._close_callbacks.append(callback)

    def open(self) -> None:
        self.state = transition(self.state, ChannelEvent.ESTABLISHED)

    def begin_close(self) -> None:
        if self.state is ChannelState.OPEN:
            self.state = transition(self.state, ChannelEvent.CLOSE_REQUESTED)
            self._ready.set()

    def close(self) -> None:
        if self.state is ChannelState.CLOSED:
            return
        self.state = transition(self.state, ChannelEvent.CLOSED)
        self._pending.clear()
        self._ready.set()
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)

    def offer(self, key: str, frame: str) -> None:
        if self.state is not ChannelState.OPEN:
            raise ChannelClosedError(f"channel {self.id} is {self.state.value}")
        if key in self._pending:
            self._pending.move_to_end(key)
        elif len(self._pending) >= self._max_pending:
            raise ChannelOverflowError(f"channel {self.id} has {len(self._pending)} frames pending")
        self._pending[key] = frame
        self._ready.set()

    async def drain(self) -> AsyncIterator[str]:
        """Yield queued frames in order until the channel stops being open."""
        while True:
            if self._pending:
                _, frame = self._pending.popitem(last=False)
                yield frame
                continue
            if self.state is not ChannelState.OPEN:
                return
            self._ready.clear()
            await self._ready.wait()
