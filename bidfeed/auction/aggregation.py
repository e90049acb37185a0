"""Fold comment batches into the current auction leader."""

from __future__ import annotations

from typing import Iterable

from .extraction import extract_candidate
from .models import AuctionLeader, Comment


def fold(leader: AuctionLeader, comments: Iterable[Comment]) -> AuctionLeader:
    """Apply ``comments`` in order on top of ``leader``.

    A candidate only takes the lead when it is strictly greater than the running
    bid, so an equal bid never overtakes the incumbent. Folding the full history in
    one pass or in consecutive batches gives the same leader.
    """
    current_bid = leader.current_bid
    leading_bidder = leader.leading_bidder
    for comment in comments:
        candidate = extract_candidate(comment)
        if candidate is not None and candidate.amount > current_bid:
            current_bid = candidate.amount
            leading_bidder = comment.bidder
    if current_bid == leader.current_bid and leading_bidder == leader.leading_bidder:
        return leader
    return AuctionLeader(current_bid=current_bid, leading_bidder=leading_bidder)


def process_bids(comments: Iterable[Comment], starting_price: float = 0.0) -> AuctionLeader:
    return fold(AuctionLeader(current_bid=starting_price), comments)
