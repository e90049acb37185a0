"""In-memory auction store holding one leader per tracked topic."""

from __future__ import annotations

from typing import Iterable

from ..auction.aggregation import fold
from ..auction.models import AuctionLeader, Comment


class InMemoryAuctionStore:
    """Process-local leaders, owned by the event loop that serves the app.

    ``apply`` runs to completion without awaiting, so a fold is never observed
    half-done. Sharding topics across workers would need one writer per topic.
    """

    def __init__(self, starting_price: float = 0.0) -> None:
        self._starting_price = starting_price
        self._leaders: dict[str, AuctionLeader] = {}
        self._seen: dict[str, set[str]] = {}

    def get(self, topic: str) -> AuctionLeader | None:
        return self._leaders.get(topic)

    def ensure(self, topic: str, starting_price: float | None = None) -> AuctionLeader:
        leader = self._leaders.get(topic)
        if leader is None:
            price = self._starting_price if starting_price is None else float(starting_price)
            leader = AuctionLeader(current_bid=price)
            self._leaders[topic] = leader
            self._seen[topic] = set()
        return leader

    def apply(self, topic: str, comments: Iterable[Comment]) -> tuple[AuctionLeader, bool]:
        previous = self.ensure(topic)
        seen = self._seen[topic]
        fresh: list[Comment] = []
        for comment in comments:
            if comment.comment_id:
                # a comment that was already folded can never beat the leader it produced
                if comment.comment_id in seen:
                    continue
                seen.add(comment.comment_id)
            fresh.append(comment)
        leader = fold(previous, fresh)
        self._leaders[topic] = leader
        return leader, leader != previous

    def items(self) -> list[tuple[str, AuctionLeader]]:
        return list(self._leaders.items())

    def topics(self) -> list[str]:
        return list(self._leaders)
