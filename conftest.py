"""Shared test fixtures for the Miniflux offline engine tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from miniflux_offline.cache import EntryInfoCache
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.gateway import GatewayError
from miniflux_offline.models import (
    STATUS_UNREAD,
    CategoryRef,
    EntriesPage,
    Entry,
    EntryQuery,
    FeedRef,
    UserConfig,
)
from miniflux_offline.queue_store import MutationQueueStore

# ── Factories ────────────────────────────────────────────────────────────────


@pytest.fixture
def make_entry():
    """Factory fixture for creating Entry instances with sensible defaults."""

    def _make(
        entry_id: int = 101,
        title: str = "Test Entry",
        url: str = "https://example.com/articles/test",
        content: str = "<p>Hello offline world.</p>",
        published_at: str = "2024-01-15T10:00:00Z",
        status: str = STATUS_UNREAD,
        starred: bool = False,
        feed: FeedRef | None = None,
        category: CategoryRef | None = None,
    ) -> Entry:
        return Entry(
            id=entry_id,
            title=title,
            url=url,
            content=content,
            published_at=published_at,
            status=status,
            starred=starred,
            feed=feed if feed is not None else FeedRef(id=7, title="Example Feed"),
            category=category if category is not None else CategoryRef(id=3, title="News"),
        )

    return _make


@pytest.fixture
def make_config():
    """Factory fixture for UserConfig pointing at a fake server."""

    def _make(**overrides: Any) -> UserConfig:
        values: dict[str, Any] = {
            "server_address": "https://reader.example.com",
            "api_token": "secret-token",
        }
        values.update(overrides)
        return UserConfig(**values)

    return _make


@pytest.fixture
def store(tmp_path: Path) -> LocalEntryStore:
    return LocalEntryStore(tmp_path / "entries", EntryInfoCache().acquire())


@pytest.fixture
def queue(tmp_path: Path) -> MutationQueueStore:
    return MutationQueueStore(tmp_path / "queue")


@pytest.fixture
def mock_client():
    """Build an httpx.Client whose requests are answered by ``handler``."""
    clients: list[httpx.Client] = []

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


# ── Fake gateway ─────────────────────────────────────────────────────────────

OFFLINE = GatewayError("List entries failed: connection refused", transport=True)


class FakeGateway:
    """In-memory gateway recording every call.

    ``offline`` makes every call fail with a transport error;
    ``failing_statuses`` fails bulk updates for those target statuses only.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.offline = False
        self.failing_statuses: set[str] = set()
        self.entries: dict[int, Entry] = {}
        self.listing: list[Entry] = []
        self.starred: dict[int, bool] = {}

    def _fail(self) -> GatewayError | None:
        return OFFLINE if self.offline else None

    def get_entries(
        self, query: EntryQuery | None = None
    ) -> tuple[EntriesPage | None, GatewayError | None]:
        self.calls.append(("get_entries", query))
        if self.offline:
            return None, OFFLINE
        return EntriesPage(total=len(self.listing), entries=list(self.listing)), None

    def get_entry(self, entry_id: int) -> tuple[Entry | None, GatewayError | None]:
        self.calls.append(("get_entry", entry_id))
        if self.offline:
            return None, OFFLINE
        entry = self.entries.get(entry_id)
        if entry is None:
            return None, GatewayError(f"Entry {entry_id} returned HTTP 404", status_code=404)
        if entry_id in self.starred:
            entry.starred = self.starred[entry_id]
        return entry, None

    def update_entries(
        self, entry_ids: int | list[int], status: str, extra: dict[str, Any] | None = None
    ) -> tuple[bool, GatewayError | None]:
        ids = [entry_ids] if isinstance(entry_ids, int) else list(entry_ids)
        self.calls.append(("update_entries", (tuple(ids), status)))
        if self.offline or status in self.failing_statuses:
            return False, OFFLINE
        return True, None

    def toggle_bookmark(self, entry_id: int) -> tuple[bool, GatewayError | None]:
        self.calls.append(("toggle_bookmark", entry_id))
        if self.offline:
            return False, OFFLINE
        self.starred[entry_id] = not self.starred.get(entry_id, False)
        return True, None

    def mark_collection_as_read(
        self, kind: str, collection_id: int
    ) -> tuple[bool, GatewayError | None]:
        self.calls.append(("mark_collection_as_read", (kind, collection_id)))
        if self.offline:
            return False, OFFLINE
        return True, None

    def calls_named(self, name: str) -> list[Any]:
        return [args for call, args in self.calls if call == name]


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()
