"""Server payload parsing and timestamp helpers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from miniflux_offline.models import (
    ENTRY_STATUSES,
    STATUS_UNREAD,
    CategoryRef,
    EntriesPage,
    Entry,
    FeedRef,
)

logger = logging.getLogger(__name__)


def iso8601_to_unix(value: str | None) -> int | None:
    """Convert an ISO-8601 timestamp to unix seconds.

    Accepts a ``Z`` suffix or ``±HH:MM`` offset and optional fractional
    seconds. Timestamps without an offset are read as UTC. Returns None for
    anything unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


def _positive_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def parse_feed_ref(data: Any) -> FeedRef | None:
    if not isinstance(data, dict):
        return None
    feed_id = _positive_int(data.get("id"))
    if feed_id is None:
        return None
    return FeedRef(id=feed_id, title=str(data.get("title") or ""))


def parse_category_ref(data: Any) -> CategoryRef | None:
    if not isinstance(data, dict):
        return None
    category_id = _positive_int(data.get("id"))
    if category_id is None:
        return None
    return CategoryRef(id=category_id, title=str(data.get("title") or ""))


def parse_entry(data: Any) -> Entry | None:
    """Parse an entry object. Returns None if the id is missing or invalid."""
    if not isinstance(data, dict):
        return None
    entry_id = _positive_int(data.get("id"))
    if entry_id is None:
        return None

    status = data.get("status")
    if status not in ENTRY_STATUSES:
        status = STATUS_UNREAD

    # Category is nested under the feed in server payloads
    feed_data = data.get("feed")
    category = None
    if isinstance(feed_data, dict):
        category = parse_category_ref(feed_data.get("category"))
    if category is None:
        category = parse_category_ref(data.get("category"))

    return Entry(
        id=entry_id,
        title=str(data.get("title") or ""),
        url=str(data.get("url") or ""),
        content=str(data.get("content") or ""),
        published_at=str(data.get("published_at") or ""),
        status=status,
        starred=bool(data.get("starred", False)),
        feed=parse_feed_ref(feed_data),
        category=category,
    )


def parse_entries_page(data: Any) -> EntriesPage | None:
    """Parse a ``{"total": n, "entries": [...]}`` listing payload."""
    if not isinstance(data, dict):
        return None
    raw_entries = data.get("entries")
    if raw_entries is None:
        raw_entries = []
    if not isinstance(raw_entries, list):
        return None
    entries = []
    for raw in raw_entries:
        entry = parse_entry(raw)
        if entry is None:
            logger.debug("Skipping malformed entry payload")
            continue
        entries.append(entry)
    total = data.get("total")
    if isinstance(total, bool) or not isinstance(total, int):
        total = len(entries)
    return EntriesPage(total=total, entries=entries)


__all__ = [
    "iso8601_to_unix",
    "parse_category_ref",
    "parse_entries_page",
    "parse_entry",
    "parse_feed_ref",
]
