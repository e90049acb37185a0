"""Helpers for canonical JSON serialization of outbound events."""

from __future__ import annotations

from typing import Any

import orjson

_ORJSON_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NAIVE_UTC


def canonical_dumps(payload: Any) -> bytes:
    """Return canonical JSON bytes with sorted keys and stable formatting."""
    return orjson.dumps(payload, option=_ORJSON_OPTIONS)


def canonical_text(payload: Any) -> str:
    return canonical_dumps(payload).decode("utf-8")


def loads(data: str | bytes) -> Any:
    return orjson.loads(data)
