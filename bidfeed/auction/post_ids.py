"""Resolve Facebook post URLs to Graph API object ids."""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import parse_qs, urlsplit

_POST_ID = re.compile(r"^\d+(_\d+)?$")
_NUMERIC = re.compile(r"^\d+$")


def is_valid_post_id(value: str | None) -> bool:
    return bool(value) and _POST_ID.match(value) is not None


def extract_post_id(value: str | None) -> str | None:
    """Return the Graph object id for a post URL or bare id, or ``None``.

    Group posts resolve to ``{group}_{post}``, which is how the Graph API addresses
    them; user and page posts resolve to the post id alone.
    """
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    if is_valid_post_id(value):
        return value
    try:
        url = urlsplit(value)
    except ValueError:
        return None
    if not url.scheme or not url.netloc:
        return None

    parts = [part for part in url.path.split("/") if part]
    if "groups" in parts and "posts" in parts:
        group = _segment_after(parts, "groups")
        post = _segment_after(parts, "posts")
        if group and post and _NUMERIC.match(group) and _NUMERIC.match(post):
            return f"{group}_{post}"
    for marker in ("posts", "permalink"):
        post = _segment_after(parts, marker)
        if post and _NUMERIC.match(post):
            return post

    query = parse_qs(url.query)
    story = _first(query, "story_fbid")
    if story and _NUMERIC.match(story):
        owner = _first(query, "id")
        if owner and _NUMERIC.match(owner):
            return f"{owner}_{story}"
        return story
    fbid = _first(query, "fbid")
    if fbid and _NUMERIC.match(fbid):
        return fbid
    return None


def owner_scoped_topic(post_id: str, known_topics: Iterable[str]) -> str | None:
    """Find the ``{owner}_{post}`` topic already in use for a bare post id.

    Page webhooks key their changes by the owner-scoped id while page post URLs
    only carry the post part. Returns ``None`` unless exactly one topic matches.
    """
    if "_" in post_id:
        return None
    suffix = f"_{post_id}"
    matches = [topic for topic in known_topics if topic.endswith(suffix) and is_valid_post_id(topic)]
    if len(matches) == 1:
        return matches[0]
    return None


def _segment_after(parts: list[str], marker: str) -> str | None:
    try:
        index = parts.index(marker)
    except ValueError:
        return None
    if index + 1 < len(parts):
        return parts[index + 1]
    return None


def _first(query: dict[str, list[str]], key: str) -> str | None:
    values = query.get(key)
    return values[0] if values else None
