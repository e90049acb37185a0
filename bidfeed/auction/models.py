"""Shared auction data structures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

UNKNOWN_BIDDER = "Unknown Bidder"


@dataclass(frozen=True)
class Comment:
    text: str
    author_name: str | None = None
    comment_id: str | None = None

    @property
    def bidder(self) -> str:
        name = self.author_name
        if isinstance(name, str) and name.strip():
            return name
        return UNKNOWN_BIDDER

    @classmethod
    def from_graph(cls, payload: Mapping[str, Any]) -> "Comment":
        """Build a comment from a Graph API comment object or webhook value."""
        author = payload.get("from")
        name = author.get("name") if isinstance(author, Mapping) else None
        message = payload.get("message")
        comment_id = payload.get("id") or payload.get("comment_id")
        return cls(
            text=message if isinstance(message, str) else "",
            author_name=name if isinstance(name, str) else None,
            comment_id=str(comment_id) if comment_id else None,
        )


@dataclass(frozen=True)
class BidCandidate:
    amount: float
    source: Comment


@dataclass(frozen=True)
class AuctionLeader:
    current_bid: float = 0.0
    leading_bidder: str = ""

    def as_payload(self) -> dict[str, Any]:
        return {"currentBid": self.current_bid, "leadingBidder": self.leading_bidder}
