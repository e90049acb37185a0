"""Glue between comment sources, the auction store and the broadcast fanout."""

from __future__ import annotations

import logging
from typing import Iterable

from ..sources import CommentSource, CommentSourceError
from ..storage import AuctionStore
from ..subscribers.channel import Channel
from ..transport.framing import leader_event
from .fanout import BroadcastDispatcher
from .models import AuctionLeader, Comment

logger = logging.getLogger(__name__)


class AuctionRunner:
    def __init__(self, store: AuctionStore, dispatcher: BroadcastDispatcher) -> None:
        self._store = store
        self._dispatcher = dispatcher

    def ingest(self, topic: str, comments: Iterable[Comment]) -> AuctionLeader:
        leader, changed = self._store.apply(topic, comments)
        if changed:
            delivered = self._dispatcher.publish(topic, leader_event(topic, leader))
            logger.info(
                "topic=%s leader=%s bid=%s delivered=%d",
                topic,
                leader.leading_bidder,
                leader.current_bid,
                delivered,
            )
        return leader

    async def refresh(self, source: CommentSource, topic: str) -> AuctionLeader:
        """Poll ``source`` for ``topic``; a failed poll leaves the leader as it was."""
        try:
            comments = await source.poll(topic)
        except CommentSourceError as exc:
            logger.warning("comment source failed for topic=%s: %s", topic, exc)
            return self._store.ensure(topic)
        return self.ingest(topic, comments)

    def prime(self, channel: Channel) -> int:
        """Send the current leader of every known topic the channel wants."""
        sent = 0
        for topic, leader in self._store.items():
            if channel.wants(topic) and self._dispatcher.send_to(channel, topic, leader_event(topic, leader)):
                sent += 1
        return sent
