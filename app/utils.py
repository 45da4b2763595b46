"""Utility helpers for the CineMatch service."""

from __future__ import annotations

import re

BULLET_RE = re.compile(r"^(?:\d+[.)]\s+|[-*•]\s*)")
QUOTE_CHARS = "\"'`*“” "


def extract_year(date_value: object) -> int | None:
    """Return the year of an ISO ``YYYY-MM-DD`` date, or ``None`` when unusable."""

    if not isinstance(date_value, str) or len(date_value) < 4:
        return None
    try:
        year = int(date_value[:4])
    except ValueError:
        return None
    return year or None


def parse_title_list(content: str, *, limit: int | None = None) -> list[str]:
    """Split a comma-separated model answer into clean title candidates.

    Surrounding quotes, list bullets and numbering are stripped; blank and
    repeated entries are dropped while preserving the model's order.
    """

    titles: list[str] = []
    seen: set[str] = set()
    for raw in re.split(r"[,\n]", content or ""):
        cleaned = BULLET_RE.sub("", raw.strip()).strip(QUOTE_CHARS)
        if not cleaned:
            continue
        key = cleaned.casefold()
        if key in seen:
            continue
        seen.add(key)
        titles.append(cleaned)
        if limit is not None and len(titles) >= limit:
            break
    return titles
