"""Comment sources feeding the auction runner."""

from __future__ import annotations

from typing import Protocol

from ..auction.models import Comment


class CommentSourceError(RuntimeError):
    """Raised when an upstream comment source cannot deliver a batch."""


class CommentSource(Protocol):
    async def poll(self, topic: str) -> list[Comment]: ...
