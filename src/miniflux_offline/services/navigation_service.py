"""Previous/next entry resolution, online with an offline fallback."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from miniflux_offline.action_messages import build_no_adjacent_entry_message
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.models import (
    STATUS_READ,
    STATUS_UNREAD,
    Entry,
    EntryQuery,
    LocalEntryRecord,
    NavigationContext,
    ScopeKind,
    UserConfig,
)
from miniflux_offline.parsing import iso8601_to_unix

if TYPE_CHECKING:
    from miniflux_offline.services.download_service import DownloadResult, EntryDownloader
    from miniflux_offline.services.interfaces import ContentViewer, Gateway

logger = logging.getLogger(__name__)


class Direction(StrEnum):
    PREVIOUS = "previous"
    NEXT = "next"


class NavigationSource(StrEnum):
    SERVER = "server"
    LOCAL_SCAN = "local_scan"
    LOCAL_LIST = "local_list"


@dataclass(slots=True)
class NavigationResult:
    """Adjacent entry, where it was found, or why there is none."""

    source: NavigationSource
    entry_id: int | None = None
    entry: Entry | None = None
    message: str | None = None

    @property
    def found(self) -> bool:
        return self.entry_id is not None


def build_navigation_query(
    published_unix: int,
    direction: Direction,
    config: UserConfig,
    context: NavigationContext,
    record: LocalEntryRecord | None = None,
) -> EntryQuery:
    """One-result listing query for the neighbor of an entry published at ``published_unix``.

    Previous looks forward in time (ascending, ``published_after``); next
    looks backward (descending, ``published_before``), matching a
    newest-first list.
    """
    if config.hide_read_entries or context.kind is ScopeKind.UNREAD:
        statuses: tuple[str, ...] = (STATUS_UNREAD,)
    else:
        statuses = (STATUS_UNREAD, STATUS_READ)
    query = EntryQuery(status=statuses, order=config.order, limit=1)

    if context.kind is ScopeKind.FEED:
        query.feed_id = context.id or (record.feed.id if record and record.feed else None)
    elif context.kind is ScopeKind.CATEGORY:
        query.category_id = context.id or (
            record.category.id if record and record.category else None
        )
    elif context.kind is ScopeKind.STARRED:
        query.starred = True

    if direction is Direction.PREVIOUS:
        query.direction = "asc"
        query.published_after = published_unix
    else:
        query.direction = "desc"
        query.published_before = published_unix
    return query


def find_adjacent_local_id(
    entry_ids: list[int], current_id: int, direction: Direction
) -> int | None:
    """Closest stored id above (next) or below (previous) the current one."""
    if direction is Direction.NEXT:
        candidates = [entry_id for entry_id in entry_ids if entry_id > current_id]
        return min(candidates) if candidates else None
    candidates = [entry_id for entry_id in entry_ids if entry_id < current_id]
    return max(candidates) if candidates else None


def step_local_entries(
    ordered_ids: list[int], current_id: int, direction: Direction
) -> int | None:
    """Neighbor by position in an explicit ordered list."""
    try:
        index = ordered_ids.index(current_id)
    except ValueError:
        return None
    index += 1 if direction is Direction.NEXT else -1
    if 0 <= index < len(ordered_ids):
        return ordered_ids[index]
    return None


class NavigationCursor:
    """Resolves adjacent entries for the viewer's previous/next callbacks."""

    def __init__(self, gateway: Gateway, store: LocalEntryStore, config: UserConfig) -> None:
        self.gateway = gateway
        self.store = store
        self.config = config

    def reference_timestamp(self, entry_id: int) -> int | None:
        """Publish time of an entry: cache first, then the metadata file."""
        cached = self.store.cache.get(entry_id)
        if cached is not None:
            timestamp = iso8601_to_unix(cached.published_at)
            if timestamp is not None:
                return timestamp
        record = self.store.load_metadata(entry_id)
        if record is None:
            return None
        return iso8601_to_unix(record.published_at)

    def _local_fallback(self, entry_id: int, direction: Direction) -> NavigationResult:
        target = find_adjacent_local_id(self.store.list_entry_ids(), entry_id, direction)
        if target is None:
            return NavigationResult(
                source=NavigationSource.LOCAL_SCAN,
                message=build_no_adjacent_entry_message(direction, offline=True),
            )
        return NavigationResult(source=NavigationSource.LOCAL_SCAN, entry_id=target)

    def find_adjacent(
        self,
        entry_id: int,
        direction: Direction,
        context: NavigationContext | None = None,
    ) -> NavigationResult:
        context = context or NavigationContext()
        if context.kind is ScopeKind.LOCAL:
            ordered = context.ordered_ids or [
                record.id for record in self.store.list_local_entries()
            ]
            target = step_local_entries(ordered, entry_id, direction)
            if target is None:
                return NavigationResult(
                    source=NavigationSource.LOCAL_LIST,
                    message=build_no_adjacent_entry_message(direction, offline=True),
                )
            return NavigationResult(source=NavigationSource.LOCAL_LIST, entry_id=target)

        published = self.reference_timestamp(entry_id)
        if published is None:
            logger.info("No publish time for entry %d; scanning local files", entry_id)
            return self._local_fallback(entry_id, direction)

        record = self.store.get_record(entry_id)
        query = build_navigation_query(published, direction, self.config, context, record)
        page, error = self.gateway.get_entries(query)
        if error is not None or page is None:
            logger.info("Navigation query failed, scanning local files: %s", error)
            return self._local_fallback(entry_id, direction)
        if not page.entries:
            return NavigationResult(
                source=NavigationSource.SERVER,
                message=build_no_adjacent_entry_message(direction, offline=False),
            )
        entry = page.entries[0]
        return NavigationResult(source=NavigationSource.SERVER, entry_id=entry.id, entry=entry)

    def navigate(
        self,
        entry_id: int,
        direction: Direction,
        context: NavigationContext | None,
        downloader: EntryDownloader,
        viewer: ContentViewer,
    ) -> tuple[NavigationResult, DownloadResult | None]:
        """Resolve the neighbor and open it, preferring an existing local copy."""
        context = context or NavigationContext()
        result = self.find_adjacent(entry_id, direction, context)
        if result.entry_id is None:
            return result, None
        if self.store.is_downloaded(result.entry_id):
            viewer.open(self.store.html_path(result.entry_id), context)
            return result, None
        if result.entry is None:
            result.message = build_no_adjacent_entry_message(direction, offline=True)
            return result, None
        return result, downloader.download_and_open(result.entry, viewer, context)


__all__ = [
    "Direction",
    "NavigationCursor",
    "NavigationResult",
    "NavigationSource",
    "build_navigation_query",
    "find_adjacent_local_id",
    "step_local_entries",
]
