# policy_utils.py

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Optional


def normalize(text: Any) -> str:
    """
    Normalize any incoming value to a safe lowercase string.

    - Avoid `text or ""` because pandas.NA raises on boolean evaluation.
    - Treat None and NaN as empty.
    """
    if text is None:
        return ""
    # Handle float NaN safely
    if isinstance(text, float) and math.isnan(text):
        return ""
    s = str(text)
    # Common pandas-ish missing markers
    if s.strip().lower() in {"nan", "<na>", "none", "nat"}:
        return ""
    return s.strip().lower()


def has_word_boundary(haystack: str, needle: str) -> bool:
    """
    True if `needle` appears in `haystack` with word boundaries.
    """
    hay = normalize(haystack)
    ndl = normalize(needle)
    if not hay or not ndl:
        return False
    pattern = rf"\b{re.escape(ndl)}\b"
    return bool(re.search(pattern, hay, re.IGNORECASE))


def matches_term(text: str, term: str) -> bool:
    """
    Boundary-safe match for clinical terms.

    - For single tokens: strict word boundary match.
    - For multi-word phrases: allow flexible separators between words (space, hyphen, slash, punctuation),
      while still enforcing boundaries at the ends.
      Example: "type 2 diabetes" matches "type-2 diabetes" and "type 2 diabetes".
    """
    t = normalize(text)
    q = normalize(term)
    if not t or not q:
        return False

    # Single token => strict boundary
    if " " not in q and "/" not in q and "-" not in q:
        return has_word_boundary(t, q)

    # Multi-token => allow non-word separators between tokens
    tokens = [tok for tok in re.split(r"[\s/-]+", q) if tok]
    if not tokens:
        return False

    inner = r"(?:[\W_]+)".join(re.escape(tok) for tok in tokens)
    pattern = rf"\b{inner}\b"
    return bool(re.search(pattern, t, re.IGNORECASE))


# -----------------------------------------------------------------------------
# Dates
# -----------------------------------------------------------------------------
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a date/time value into an aware UTC datetime.

    Accepts datetime/date objects, ISO-8601 strings (with "Z" or an offset),
    plain "YYYY-MM-DD" and "MM/DD/YYYY". Naive values are read as UTC.
    Returns None when the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    else:
        raw = normalize(value)
        if not raw:
            return None
        m = _US_DATE.match(raw)
        try:
            if m:
                dt = datetime(int(m.group(3)), int(m.group(1)), int(m.group(2)))
            else:
                raw = raw.upper()
                if raw.endswith("Z"):
                    raw = raw[:-1] + "+00:00"
                dt = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_date(value: Any) -> Optional[date]:
    dt = parse_timestamp(value)
    return dt.date() if dt else None


def days_between(start: Any, end: Any) -> int:
    """
    Whole UTC calendar days from start to end (negative if end precedes start).
    Both values must already be parseable; raises ValueError otherwise.
    """
    s = to_utc_date(start)
    e = to_utc_date(end)
    if s is None or e is None:
        raise ValueError(f"Unparseable date in days_between: {start!r}, {end!r}")
    return (e - s).days


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
