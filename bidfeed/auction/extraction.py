"""Bid extraction from free-form comment text."""

from __future__ import annotations

import math
import re
from typing import Any

from .models import BidCandidate, Comment

# First number in the text that is not glued to a word, a sign or another number.
# Accepts an optional leading "$", comma thousands separators and 1-2 decimals.
_BID_PATTERN = re.compile(
    r"(?<![\w$.,\-])"
    r"\$?"
    r"(?P<whole>[0-9]{1,3}(?:,[0-9]{3})+|[0-9]+)"
    r"(?P<fraction>\.[0-9]{1,2})?"
    r"(?!\w|[.,][0-9])"
)


def extract_bid(text: Any) -> float | None:
    """Return the first boundary-delimited amount in ``text``, or ``None``.

    Later numbers in the same comment are ignored, so "50 or 100" yields 50.
    Zero and non-finite values are not bids.
    """
    if not isinstance(text, str) or not text:
        return None
    match = _BID_PATTERN.search(text)
    if match is None:
        return None
    literal = match.group("whole").replace(",", "") + (match.group("fraction") or "")
    try:
        amount = float(literal)
    except ValueError:
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def extract_candidate(comment: Comment) -> BidCandidate | None:
    amount = extract_bid(comment.text)
    if amount is None:
        return None
    return BidCandidate(amount=amount, source=comment)
