"""On-disk store of downloaded entries.

Layout: ``<root>/<entry id>/`` holds ``entry.html``, ``metadata.json`` and the
entry's image files. An entry counts as downloaded once ``entry.html`` exists;
the HTML is written last and atomically, so readers never see a half-written
document.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from rapidfuzz import fuzz

from miniflux_offline.cache import EntryInfoCache
from miniflux_offline.fileio import read_json_object, write_json_atomic, write_text_atomic
from miniflux_offline.models import (
    ENTRY_HTML_FILENAME,
    ENTRY_METADATA_FILENAME,
    ENTRY_STATUSES,
    IMAGE_EXTENSIONS,
    LAST_UPDATED_FORMAT,
    STATUS_UNREAD,
    Entry,
    LocalEntryRecord,
)
from miniflux_offline.parsing import parse_category_ref, parse_feed_ref

logger = logging.getLogger(__name__)

LOCAL_SORT_KEYS = ("published", "title", "id")
FUZZY_SCORE_CUTOFF = 60  # Minimum score (0-100) to include in results
FUZZY_LIMIT = 100  # Maximum number of results to return


@dataclass(slots=True)
class StorageStats:
    """Disk usage of the local entry store."""

    entry_count: int = 0
    total_bytes: int = 0
    image_count: int = 0
    image_bytes: int = 0


def format_size(num_bytes: int) -> str:
    """Human-readable size: ``512 B``, ``1.5 KB``, ``2.0 MB``, ``1.1 GB``."""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    if num_bytes < 1024 * 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):.1f} MB"
    return f"{num_bytes / (1024 * 1024 * 1024):.1f} GB"


def is_image_file(path: Path) -> bool:
    if path.name.startswith(".") or not path.is_file():
        return False
    return path.suffix.lower().lstrip(".") in IMAGE_EXTENSIONS


def record_to_dict(record: LocalEntryRecord) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": record.id,
        "title": record.title,
        "url": record.url,
        "status": record.status,
        "starred": record.starred,
        "published_at": record.published_at,
        "images": dict(record.images),
        "last_updated": record.last_updated,
    }
    if record.feed is not None:
        data["feed"] = {"id": record.feed.id, "title": record.feed.title}
    if record.category is not None:
        data["category"] = {"id": record.category.id, "title": record.category.title}
    return data


def record_from_dict(data: dict[str, Any], entry_id: int) -> LocalEntryRecord:
    """Build a record from a metadata document, tolerating missing fields."""
    status = data.get("status")
    if status not in ENTRY_STATUSES:
        status = STATUS_UNREAD
    images_raw = data.get("images")
    images: dict[str, str] = {}
    if isinstance(images_raw, dict):
        images = {str(k): str(v) for k, v in images_raw.items() if isinstance(v, str)}
    return LocalEntryRecord(
        id=entry_id,
        title=str(data.get("title") or ""),
        url=str(data.get("url") or ""),
        status=status,
        starred=bool(data.get("starred", False)),
        published_at=str(data.get("published_at") or ""),
        feed=parse_feed_ref(data.get("feed")),
        category=parse_category_ref(data.get("category")),
        images=images,
        last_updated=str(data.get("last_updated") or ""),
    )


def record_from_entry(entry: Entry, images: dict[str, str] | None = None) -> LocalEntryRecord:
    return LocalEntryRecord(
        id=entry.id,
        title=entry.title,
        url=entry.url,
        status=entry.status,
        starred=entry.starred,
        published_at=entry.published_at,
        feed=entry.feed,
        category=entry.category,
        images=dict(images or {}),
    )


def _published_date(record: LocalEntryRecord | None) -> datetime | None:
    """Publish date at local noon, so day-granular purges are stable."""
    if record is None or len(record.published_at) < 10:
        return None
    try:
        day = datetime.strptime(record.published_at[:10], "%Y-%m-%d")
    except ValueError:
        return None
    return day.replace(hour=12)


class LocalEntryStore:
    """Directory-per-entry storage with a write-through metadata cache."""

    def __init__(
        self,
        root: Path,
        cache: EntryInfoCache | None = None,
        *,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.root = root
        self.cache = cache if cache is not None else EntryInfoCache()
        self._now = now

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def entry_dir(self, entry_id: int) -> Path:
        """Directory for an entry. Raises ValueError for ids that are not positive ints."""
        if isinstance(entry_id, bool) or not isinstance(entry_id, int) or entry_id <= 0:
            raise ValueError(f"Invalid entry id: {entry_id!r}")
        return self.root / str(entry_id)

    def html_path(self, entry_id: int) -> Path:
        return self.entry_dir(entry_id) / ENTRY_HTML_FILENAME

    def metadata_path(self, entry_id: int) -> Path:
        return self.entry_dir(entry_id) / ENTRY_METADATA_FILENAME

    def is_downloaded(self, entry_id: int) -> bool:
        try:
            return self.html_path(entry_id).is_file()
        except ValueError:
            return False

    def extract_entry_id_from_path(self, path: Path | str) -> int | None:
        """Return the entry id for a document inside this store, else None."""
        candidate = Path(path)
        if candidate.name == ENTRY_HTML_FILENAME:
            candidate = candidate.parent
        try:
            if candidate.resolve().parent != self.root.resolve():
                return None
        except OSError:
            return None
        if not candidate.name.isdigit():
            return None
        entry_id = int(candidate.name)
        return entry_id if entry_id > 0 else None

    def is_entry_path(self, path: Path | str) -> bool:
        return self.extract_entry_id_from_path(path) is not None

    def list_entry_ids(self) -> list[int]:
        """Ids of every completed local entry, ascending."""
        if not self.root.is_dir():
            return []
        ids = []
        for child in self.root.iterdir():
            if child.is_dir() and child.name.isdigit() and (child / ENTRY_HTML_FILENAME).is_file():
                ids.append(int(child.name))
        ids.sort()
        return ids

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def load_metadata(self, entry_id: int) -> LocalEntryRecord | None:
        """Read the metadata side-record from disk, bypassing the cache."""
        try:
            path = self.metadata_path(entry_id)
        except ValueError:
            return None
        data = read_json_object(path)
        if data is None:
            return None
        return record_from_dict(data, entry_id)

    def get_record(self, entry_id: int) -> LocalEntryRecord | None:
        """Cached metadata lookup, loading from disk on a miss."""
        return self.cache.get_or_load(entry_id, self.load_metadata)

    def save_metadata(self, record: LocalEntryRecord) -> bool:
        """Persist a record, then mirror it into the cache."""
        record.last_updated = self._now().strftime(LAST_UPDATED_FORMAT)
        try:
            path = self.metadata_path(record.id)
        except ValueError as e:
            logger.error("Cannot save metadata: %s", e)
            return False
        if not write_json_atomic(path, record_to_dict(record)):
            return False
        self.cache.set(record)
        return True

    def update_metadata(self, entry_id: int, **updates: Any) -> LocalEntryRecord | None:
        """Apply field updates to a stored record. Returns None if nothing is stored."""
        record = self.load_metadata(entry_id)
        if record is None:
            return None
        for key, value in updates.items():
            if key in ("id", "last_updated") or not hasattr(record, key):
                logger.warning("Ignoring unknown metadata field %r", key)
                continue
            setattr(record, key, value)
        if not self.save_metadata(record):
            return None
        return record

    def update_status(self, entry_id: int, status: str) -> bool:
        return self.update_metadata(entry_id, status=status) is not None

    def set_starred(self, entry_id: int, starred: bool) -> bool:
        return self.update_metadata(entry_id, starred=starred) is not None

    def write_html(self, entry_id: int, html: str) -> tuple[Path | None, str | None]:
        """Atomically publish the entry document. Returns (path, error)."""
        try:
            path = self.html_path(entry_id)
            write_text_atomic(path, html)
        except (OSError, ValueError) as e:
            logger.error("Failed to write HTML for entry %s: %s", entry_id, e)
            return None, f"Could not write entry file: {e}"
        return path, None

    # ------------------------------------------------------------------
    # Listing and search
    # ------------------------------------------------------------------

    def list_local_entries(self, sort: str = "published") -> list[LocalEntryRecord]:
        """Records of every downloaded entry in the given sort order.

        Entries without readable metadata still appear, with an empty title.
        """
        records = [
            self.get_record(entry_id) or LocalEntryRecord(id=entry_id)
            for entry_id in self.list_entry_ids()
        ]
        if sort == "title":
            records.sort(key=lambda r: (r.title.casefold(), r.id))
        elif sort == "id":
            records.sort(key=lambda r: r.id)
        else:
            records.sort(key=lambda r: (r.published_at, r.id), reverse=True)
        return records

    def search_local_entries(self, query: str) -> list[LocalEntryRecord]:
        """Fuzzy title/feed search over downloaded entries, best match first."""
        query_lower = query.strip().lower()
        if not query_lower:
            return []
        scored = []
        for record in self.list_local_entries():
            feed_title = record.feed.title if record.feed else ""
            score = fuzz.WRatio(query_lower, f"{record.title} {feed_title}".lower())
            if score >= FUZZY_SCORE_CUTOFF:
                scored.append((record, score))
        scored.sort(key=lambda item: item[1], reverse=True)
        return [record for record, _ in scored[:FUZZY_LIMIT]]

    def list_entries_with_dates(self) -> list[tuple[int, datetime]]:
        """(entry id, date) pairs using the publish date, else the HTML mtime."""
        result = []
        for entry_id in self.list_entry_ids():
            when = _published_date(self.get_record(entry_id))
            if when is None:
                try:
                    when = datetime.fromtimestamp(self.html_path(entry_id).stat().st_mtime)
                except OSError:
                    continue
            result.append((entry_id, when))
        return result

    def entries_older_than(self, days: int) -> list[int]:
        cutoff = self._now() - timedelta(days=days)
        return [entry_id for entry_id, when in self.list_entries_with_dates() if when < cutoff]

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_entry(self, entry_id: int) -> bool:
        """Remove an entry directory and drop it from the cache."""
        try:
            path = self.entry_dir(entry_id)
        except ValueError:
            return False
        self.cache.invalidate(entry_id)
        if not path.exists():
            return True
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.error("Failed to delete entry %d: %s", entry_id, e)
            return False
        logger.debug("Deleted local entry %d", entry_id)
        return True

    def purge_older_than(self, days: int) -> tuple[int, int]:
        """Delete entries older than ``days``. Returns (deleted, failed)."""
        deleted = failed = 0
        for entry_id in self.entries_older_than(days):
            if self.delete_entry(entry_id):
                deleted += 1
            else:
                failed += 1
        return deleted, failed

    def delete_images(self, entry_id: int) -> int:
        """Remove image files but keep the document and metadata. Returns count removed."""
        try:
            path = self.entry_dir(entry_id)
        except ValueError:
            return 0
        if not path.is_dir():
            return 0
        removed = 0
        for child in path.iterdir():
            if not is_image_file(child):
                continue
            try:
                child.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not delete %s: %s", child, e)
        return removed

    def clear_all(self) -> int:
        """Delete every stored entry. Returns the number removed."""
        removed = 0
        if not self.root.is_dir():
            return 0
        for child in self.root.iterdir():
            if child.is_dir() and child.name.isdigit() and self.delete_entry(int(child.name)):
                removed += 1
        self.cache.clear()
        return removed

    # ------------------------------------------------------------------
    # Storage accounting
    # ------------------------------------------------------------------

    def storage_stats(self) -> StorageStats:
        stats = StorageStats()
        if not self.root.is_dir():
            return stats
        for child in self.root.iterdir():
            if not (child.is_dir() and child.name.isdigit()):
                continue
            stats.entry_count += 1
            for item in child.iterdir():
                try:
                    size = item.stat().st_size if item.is_file() else 0
                except OSError:
                    continue
                stats.total_bytes += size
                if is_image_file(item):
                    stats.image_count += 1
                    stats.image_bytes += size
        return stats

    def missing_images(self, entry_id: int) -> dict[str, str]:
        """Filename → source URL for images recorded in metadata but absent on disk."""
        record = self.load_metadata(entry_id)
        if record is None:
            return {}
        entry_path = self.entry_dir(entry_id)
        return {
            filename: url
            for filename, url in record.images.items()
            if Path(filename).name == filename and not (entry_path / filename).is_file()
        }


__all__ = [
    "FUZZY_LIMIT",
    "FUZZY_SCORE_CUTOFF",
    "LOCAL_SORT_KEYS",
    "LocalEntryStore",
    "StorageStats",
    "format_size",
    "is_image_file",
    "record_from_dict",
    "record_from_entry",
    "record_to_dict",
]
