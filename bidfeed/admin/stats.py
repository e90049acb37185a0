"""Operational stats endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..storage import AuctionStore
from ..subscribers.registry import SubscriptionRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_store(request: Request) -> AuctionStore:
    return request.app.state.store


def _get_registry(request: Request) -> SubscriptionRegistry:
    return request.app.state.subscription_registry


@router.get("/stats")
async def stats(
    request: Request,
    store: AuctionStore = Depends(_get_store),
    registry: SubscriptionRegistry = Depends(_get_registry),
) -> dict[str, Any]:
    leaders = store.items()
    with_bids = [leader for _, leader in leaders if leader.leading_bidder]
    highest = max(with_bids, key=lambda leader: leader.current_bid, default=None)
    poller = getattr(request.app.state, "poller", None)
    return {
        "total_auctions": len(leaders),
        "auctions_with_bids": len(with_bids),
        "highest_bid": highest.current_bid if highest else 0.0,
        "subscribers_by_kind": registry.counts_by_kind(),
        "pending_frames": sum(channel.pending for channel in registry.all()),
        "tracked_topics": poller.tracked() if poller else [],
    }
