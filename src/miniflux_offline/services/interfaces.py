"""Service interfaces + the default service container."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import httpx

from miniflux_offline.cache import EntryInfoCache
from miniflux_offline.config import get_download_root, get_queue_dir
from miniflux_offline.content import HtmlContentPipeline, PreparedContent, RenderedContent
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.gateway import GatewayError, MinifluxGateway
from miniflux_offline.images import ImageFetcher
from miniflux_offline.models import (
    EntriesPage,
    Entry,
    EntryQuery,
    ImageDescriptor,
    NavigationContext,
    PendingStatusMutation,
    QueueCounts,
    UserConfig,
)
from miniflux_offline.queue_store import MutationQueueStore
from miniflux_offline.services.cancellation import (
    BatchState,
    CancelChoice,
    CancellationToken,
    DownloadPhase,
)


@runtime_checkable
class MutationQueue(Protocol):
    """Durable pending-mutation storage."""

    def load_status_queue(self) -> dict[int, PendingStatusMutation]: ...

    def enqueue_status(
        self, entry_id: int, new_status: str, original_status: str | None = None
    ) -> bool: ...

    def remove_status(self, entry_id: int, expected_status: str | None = None) -> bool: ...

    def remove_statuses(self, entry_ids: Any, expected_status: str | None = None) -> bool: ...

    def load_bookmark_queue(self) -> dict[int, bool]: ...

    def enqueue_bookmark(self, entry_id: int, starred: bool) -> bool: ...

    def remove_bookmark(self, entry_id: int) -> bool: ...

    def load_collection_queue(self, kind: str) -> dict[int, str]: ...

    def enqueue_collection(self, kind: str, collection_id: int, operation: str = ...) -> bool: ...

    def remove_collection(self, kind: str, collection_id: int) -> bool: ...

    def get_total_queue_count(self) -> QueueCounts: ...

    def clear_all_queues(self) -> bool: ...


@runtime_checkable
class Gateway(Protocol):
    """Server operations the engine depends on; all return (result, error)."""

    def get_entries(
        self, query: EntryQuery | None = None
    ) -> tuple[EntriesPage | None, GatewayError | None]: ...

    def get_entry(self, entry_id: int) -> tuple[Entry | None, GatewayError | None]: ...

    def update_entries(
        self, entry_ids: int | list[int], status: str, extra: dict[str, Any] | None = None
    ) -> tuple[bool, GatewayError | None]: ...

    def toggle_bookmark(self, entry_id: int) -> tuple[bool, GatewayError | None]: ...

    def mark_collection_as_read(
        self, kind: str, collection_id: int
    ) -> tuple[bool, GatewayError | None]: ...


@runtime_checkable
class ContentPipeline(Protocol):
    """Turns raw entry HTML into a self-contained offline document."""

    def prepare(self, raw_html: str, base_url: str = "") -> PreparedContent: ...

    def render(
        self, prepared: PreparedContent, entry: Entry, entry_dir: Path | None
    ) -> tuple[RenderedContent | None, str | None]: ...


@runtime_checkable
class ImageDownloader(Protocol):
    def fetch(self, descriptor: ImageDescriptor, target_dir: Path, entry_url: str = "") -> bool: ...

    def fetch_url(self, url: str, dest: Path, entry_url: str = "") -> tuple[bool, str | None]: ...


@runtime_checkable
class DownloadPrompter(Protocol):
    """UI side of the download workflow: progress text and checkpoint answers."""

    def report(self, message: str) -> None: ...

    def choose(
        self,
        phase: DownloadPhase,
        choices: tuple[CancelChoice, ...],
        batch: BatchState | None,
    ) -> CancelChoice: ...


@runtime_checkable
class ContentViewer(Protocol):
    """External renderer that displays a finished local document."""

    def open(self, path: Path, context: NavigationContext) -> None: ...


@runtime_checkable
class OpenEntryView(Protocol):
    """In-memory view of the entry currently shown by the viewer."""

    entry_id: int

    def apply_status(self, status: str) -> None: ...


@dataclass(slots=True)
class AppServices:
    """Long-lived collaborators shared by every workflow.

    Owns one reference on the entry info cache; ``close`` releases it along
    with the HTTP clients.
    """

    config: UserConfig
    gateway: MinifluxGateway
    queue: MutationQueueStore
    store: LocalEntryStore
    cache: EntryInfoCache
    pipeline: HtmlContentPipeline
    fetcher: ImageFetcher
    token: CancellationToken
    queue_dir: Path

    def close(self) -> None:
        self.gateway.close()
        self.fetcher.close()
        self.cache.release()


def build_default_app_services(
    config: UserConfig,
    *,
    client: httpx.Client | None = None,
    queue_dir: Path | None = None,
    download_root: Path | None = None,
) -> AppServices:
    """Build services from settings, sharing one HTTP client when given."""
    cache = EntryInfoCache().acquire()
    resolved_queue_dir = queue_dir or get_queue_dir()
    return AppServices(
        config=config,
        gateway=MinifluxGateway.from_config(config, client=client),
        queue=MutationQueueStore(resolved_queue_dir),
        store=LocalEntryStore(download_root or get_download_root(config), cache),
        cache=cache,
        pipeline=HtmlContentPipeline(),
        fetcher=ImageFetcher(client=client, config=config),
        token=CancellationToken(),
        queue_dir=resolved_queue_dir,
    )


__all__ = [
    "AppServices",
    "ContentPipeline",
    "ContentViewer",
    "DownloadPrompter",
    "Gateway",
    "ImageDownloader",
    "MutationQueue",
    "OpenEntryView",
    "build_default_app_services",
]
