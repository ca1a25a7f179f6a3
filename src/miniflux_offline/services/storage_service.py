"""Local storage maintenance: image recovery and age-based purging."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.models import PURGE_AGE_OPTIONS

if TYPE_CHECKING:
    from miniflux_offline.services.interfaces import ImageDownloader

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecoveryResult:
    recovered: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def attempted(self) -> int:
        return self.recovered + self.failed


def recover_images(
    store: LocalEntryStore, fetcher: ImageDownloader, entry_id: int
) -> RecoveryResult:
    """Re-download images listed in an entry's metadata but missing on disk.

    The document already references the local filenames, so only the files
    themselves are written; metadata is touched to record the recovery.
    """
    record = store.load_metadata(entry_id)
    if record is None or not store.is_downloaded(entry_id):
        return RecoveryResult(error=f"Entry {entry_id} is not downloaded")
    missing = store.missing_images(entry_id)
    result = RecoveryResult()
    if not missing:
        return result
    entry_dir = store.entry_dir(entry_id)
    for filename, url in sorted(missing.items()):
        ok, _reason = fetcher.fetch_url(url, entry_dir / filename, record.url)
        if ok:
            result.recovered += 1
        else:
            result.failed += 1
    if result.recovered:
        store.update_metadata(entry_id)
    logger.info(
        "Image recovery for entry %d: %d recovered, %d failed",
        entry_id,
        result.recovered,
        result.failed,
    )
    return result


def purge_entries_older_than(store: LocalEntryStore, days: int) -> tuple[int, int, str | None]:
    """Delete entries older than one of the supported age presets.

    Returns (deleted, failed, error).
    """
    if days not in PURGE_AGE_OPTIONS:
        options = ", ".join(str(option) for option in PURGE_AGE_OPTIONS)
        return 0, 0, f"Age must be one of {options} days"
    deleted, failed = store.purge_older_than(days)
    logger.info("Purged %d entries older than %d days (%d failed)", deleted, days, failed)
    return deleted, failed, None


__all__ = [
    "RecoveryResult",
    "purge_entries_older_than",
    "recover_images",
]
