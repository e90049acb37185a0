"""Push-style comment source fed by Facebook page feed webhooks."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from ..auction.models import Comment
from ..validation.validator import SchemaRegistry

logger = logging.getLogger(__name__)

PushHandler = Callable[[str, list[Comment]], Any]


def comments_from_webhook(payload: Mapping[str, Any]) -> dict[str, list[Comment]]:
    """Group newly added comments by post id, keeping delivery order."""
    batches: dict[str, list[Comment]] = {}
    for entry in payload.get("entry") or []:
        if not isinstance(entry, Mapping):
            continue
        for change in entry.get("changes") or []:
            if not isinstance(change, Mapping) or change.get("field") != "feed":
                continue
            value = change.get("value")
            if not isinstance(value, Mapping):
                continue
            # edits and removals never create a new bid
            if value.get("item") != "comment" or value.get("verb") != "add":
                continue
            post_id = value.get("post_id")
            if not post_id:
                continue
            batches.setdefault(str(post_id), []).append(Comment.from_graph(value))
    return batches


class WebhookCommentSource:
    def __init__(self, *, verify_token: str | None, schemas: SchemaRegistry) -> None:
        self._verify_token = verify_token
        self._schemas = schemas
        self._handlers: list[PushHandler] = []

    def on_push(self, handler: PushHandler) -> None:
        self._handlers.append(handler)

    def verify_subscription(self, params: Mapping[str, str]) -> str | None:
        """Return the ``hub.challenge`` to echo back, or ``None`` to refuse."""
        if not self._verify_token:
            return None
        if params.get("hub.mode") != "subscribe":
            return None
        if params.get("hub.verify_token") != self._verify_token:
            return None
        return params.get("hub.challenge") or ""

    def deliver(self, payload: Any) -> dict[str, int]:
        self._schemas.validate("facebook_webhook", payload)
        batches = comments_from_webhook(payload)
        for topic, comments in batches.items():
            for handler in self._handlers:
                handler(topic, comments)
        if batches:
            logger.info("webhook delivered %d comment batch(es)", len(batches))
        return {topic: len(comments) for topic, comments in batches.items()}
