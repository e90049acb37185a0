"""Expose live subscriber channels."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ..subscribers.registry import SubscriptionRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_registry(request: Request) -> SubscriptionRegistry:
    return request.app.state.subscription_registry


@router.get("/subscribers")
async def subscribers(registry: SubscriptionRegistry = Depends(_get_registry)) -> list[dict[str, Any]]:
    inventory = []
    for channel in registry.all():
        inventory.append(
            {
                "id": channel.id,
                "kind": channel.kind.value,
                "state": channel.state.value,
                "topics": sorted(channel.topics) if channel.topics is not None else ["*"],
                "pending": channel.pending,
            }
        )
    return inventory
