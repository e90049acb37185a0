"""Auction store factory."""

from __future__ import annotations

from typing import Iterable, Protocol

from ..auction.models import AuctionLeader, Comment
from ..config import ServerConfig
from .in_memory import InMemoryAuctionStore


class AuctionStore(Protocol):
    def get(self, topic: str) -> AuctionLeader | None: ...

    def ensure(self, topic: str, starting_price: float | None = None) -> AuctionLeader: ...

    def apply(self, topic: str, comments: Iterable[Comment]) -> tuple[AuctionLeader, bool]: ...

    def items(self) -> list[tuple[str, AuctionLeader]]: ...

    def topics(self) -> list[str]: ...


def build_store(config: ServerConfig) -> AuctionStore:
    backend = config.auction.store
    if backend == "in_memory":
        return InMemoryAuctionStore(starting_price=config.auction.starting_price)
    raise ValueError(f"unknown auction store {backend}")
