"""Data models and constants for the Miniflux offline engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

# Application identity used for platformdirs paths
CONFIG_APP_NAME = "miniflux-offline"

# Entry status values as the server spells them
STATUS_UNREAD = "unread"
STATUS_READ = "read"
STATUS_REMOVED = "removed"
ENTRY_STATUSES = (STATUS_UNREAD, STATUS_READ, STATUS_REMOVED)
# Statuses the offline queue can hold; the reconciler sends one bulk call each
QUEUED_STATUSES = (STATUS_UNREAD, STATUS_READ)

# Listing options accepted by GET /v1/entries
SORT_ORDERS = ("published_at", "id", "status", "category_title", "category_id")
SORT_DIRECTIONS = ("asc", "desc")
DEFAULT_ENTRY_LIMIT = 100
MAX_ENTRY_LIMIT = 1000
MAX_PREFETCH_COUNT = 100

# Local entry store layout
ENTRY_HTML_FILENAME = "entry.html"
ENTRY_METADATA_FILENAME = "metadata.json"
LAST_UPDATED_FORMAT = "%Y-%m-%d %H:%M:%S"

# Image pipeline limits
IMAGE_MIN_BYTES = 10
IMAGE_MAX_BYTES = 50 * 1024 * 1024
IMAGE_BLOCK_TIMEOUT_SECONDS = 15.0
IMAGE_TOTAL_TIMEOUT_SECONDS = 60.0
IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "svg"})
DEFAULT_IMAGE_EXTENSION = "jpg"

# Elements that cannot work in an offline document
UNSAFE_ELEMENTS = ("script", "iframe", "video", "object", "embed", "form", "style")

# Date-range purge presets (days)
PURGE_AGE_OPTIONS = (7, 30, 90, 180)

# Collection kinds for "mark all as read"
COLLECTION_FEED = "feed"
COLLECTION_CATEGORY = "category"
COLLECTION_KINDS = (COLLECTION_FEED, COLLECTION_CATEGORY)
COLLECTION_MARK_ALL_READ = "mark_all_read"


def opposite_status(status: str) -> str:
    """Return the status a read/unread toggle would leave behind."""
    return STATUS_UNREAD if status == STATUS_READ else STATUS_READ


@dataclass(slots=True, frozen=True)
class FeedRef:
    """Feed attribution for an entry."""

    id: int
    title: str = ""


@dataclass(slots=True, frozen=True)
class CategoryRef:
    """Category attribution for an entry."""

    id: int
    title: str = ""


@dataclass(slots=True)
class Entry:
    """An entry as returned by the server."""

    id: int
    title: str
    url: str = ""
    content: str = ""
    published_at: str = ""
    status: str = STATUS_UNREAD
    starred: bool = False
    feed: FeedRef | None = None
    category: CategoryRef | None = None


@dataclass(slots=True)
class EntriesPage:
    """One page of GET /v1/entries results."""

    total: int
    entries: list[Entry] = field(default_factory=list)


@dataclass(slots=True)
class LocalEntryRecord:
    """Metadata side-record persisted next to a downloaded entry."""

    id: int
    title: str = ""
    url: str = ""
    status: str = STATUS_UNREAD
    starred: bool = False
    published_at: str = ""
    feed: FeedRef | None = None
    category: CategoryRef | None = None
    images: dict[str, str] = field(default_factory=dict)
    last_updated: str = ""


@dataclass(slots=True)
class PendingStatusMutation:
    """Desired entry status not yet confirmed by the server."""

    new_status: str
    original_status: str


@dataclass(slots=True)
class QueueCounts:
    """Pending mutation counts split by kind."""

    status: int = 0
    bookmark: int = 0
    feed: int = 0
    category: int = 0

    @property
    def total(self) -> int:
        return self.status + self.bookmark + self.feed + self.category


@dataclass(slots=True)
class ImageDescriptor:
    """One discovered image for a single pipeline run."""

    url: str
    filename: str
    url2x: str | None = None
    width: int | None = None
    height: int | None = None
    downloaded: bool = False
    error: str | None = None

    @property
    def fetch_url(self) -> str:
        return self.url2x or self.url


@dataclass(slots=True)
class EntryQuery:
    """Filter parameters for entry listings."""

    status: tuple[str, ...] = ()
    feed_id: int | None = None
    category_id: int | None = None
    search: str | None = None
    starred: bool | None = None
    order: str | None = None
    direction: str | None = None
    limit: int | None = None
    offset: int | None = None
    published_before: int | None = None
    published_after: int | None = None


class ScopeKind(StrEnum):
    """Navigation scope for previous/next lookups."""

    GLOBAL = "global"
    UNREAD = "unread"
    STARRED = "starred"
    FEED = "feed"
    CATEGORY = "category"
    LOCAL = "local"


@dataclass(slots=True)
class NavigationContext:
    """Scope the viewer was opened from."""

    kind: ScopeKind = ScopeKind.GLOBAL
    id: int | None = None
    ordered_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class UserConfig:
    """User settings read by the engine."""

    server_address: str = ""
    api_token: str = ""
    limit: int = DEFAULT_ENTRY_LIMIT
    order: str = "published_at"
    direction: str = "desc"
    hide_read_entries: bool = True
    include_images: bool = True
    mark_as_read_on_open: bool = True
    auto_delete_read_on_close: bool = False
    prefetch_count: int = 0
    download_dir: str = ""
    proxy_image_downloader_enabled: bool = False
    proxy_image_downloader_url: str = ""
    proxy_image_downloader_token: str = ""
    request_timeout_seconds: int = 30
    version: int = 1

    @property
    def is_configured(self) -> bool:
        return bool(self.server_address.strip() and self.api_token.strip())


__all__ = [
    "COLLECTION_CATEGORY",
    "COLLECTION_FEED",
    "COLLECTION_KINDS",
    "COLLECTION_MARK_ALL_READ",
    "CONFIG_APP_NAME",
    "DEFAULT_ENTRY_LIMIT",
    "DEFAULT_IMAGE_EXTENSION",
    "ENTRY_HTML_FILENAME",
    "ENTRY_METADATA_FILENAME",
    "ENTRY_STATUSES",
    "QUEUED_STATUSES",
    "IMAGE_BLOCK_TIMEOUT_SECONDS",
    "IMAGE_EXTENSIONS",
    "IMAGE_MAX_BYTES",
    "IMAGE_MIN_BYTES",
    "IMAGE_TOTAL_TIMEOUT_SECONDS",
    "LAST_UPDATED_FORMAT",
    "MAX_ENTRY_LIMIT",
    "MAX_PREFETCH_COUNT",
    "PURGE_AGE_OPTIONS",
    "SORT_DIRECTIONS",
    "SORT_ORDERS",
    "STATUS_READ",
    "STATUS_REMOVED",
    "STATUS_UNREAD",
    "UNSAFE_ELEMENTS",
    "CategoryRef",
    "EntriesPage",
    "Entry",
    "EntryQuery",
    "FeedRef",
    "ImageDescriptor",
    "LocalEntryRecord",
    "NavigationContext",
    "PendingStatusMutation",
    "QueueCounts",
    "ScopeKind",
    "UserConfig",
    "opposite_status",
]
