"""Periodic polling of tracked auction posts."""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..auction.models import AuctionLeader
from ..auction.runner import AuctionRunner
from . import CommentSource

logger = logging.getLogger(__name__)


class CommentPoller:
    def __init__(self, runner: AuctionRunner, source: CommentSource, *, interval_seconds: float) -> None:
        self._runner = runner
        self._source = source
        self._interval = interval_seconds
        self._topics: dict[str, None] = {}
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def track(self, topic: str) -> None:
        self._topics.setdefault(topic, None)

    def untrack(self, topic: str) -> None:
        self._topics.pop(topic, None)

    def tracked(self) -> list[str]:
        return list(self._topics)

    async def run_once(self) -> dict[str, AuctionLeader]:
        leaders: dict[str, AuctionLeader] = {}
        for topic in list(self._topics):
            leaders[topic] = await self._runner.refresh(self._source, topic)
        return leaders

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("comment poll pass failed")
            await asyncio.sleep(self._interval)
