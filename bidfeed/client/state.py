"""Client-local view of auction leaders built from received events."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from ..auction.models import AuctionLeader
from ..transport.framing import LEADER_EVENT
from ..transport.timestamps import TimestampError, parse_timestamp


class LeaderBoard:
    """Every leader event is a full snapshot, so applying the newest one per topic
    is enough to resync after missed events or a reconnect."""

    def __init__(self) -> None:
        self._leaders: dict[str, AuctionLeader] = {}
        self._stamps: dict[str, datetime] = {}

    def __len__(self) -> int:
        return len(self._leaders)

    def apply(self, event: Mapping[str, Any]) -> bool:
        if event.get("type") != LEADER_EVENT:
            return False
        topic = event.get("topic")
        if not isinstance(topic, str) or not topic:
            return False
        try:
            stamp = parse_timestamp(str(event.get("timestamp") or ""))
            current_bid = float(event.get("currentBid", 0))
        except (TimestampError, TypeError, ValueError):
            return False
        previous = self._stamps.get(topic)
        if previous is not None and stamp < previous:
            return False
        self._stamps[topic] = stamp
        self._leaders[topic] = AuctionLeader(
            current_bid=current_bid,
            leading_bidder=str(event.get("leadingBidder") or ""),
        )
        return True

    def get(self, topic: str) -> AuctionLeader | None:
        return self._leaders.get(topic)

    def snapshot(self) -> dict[str, AuctionLeader]:
        return dict(self._leaders)
