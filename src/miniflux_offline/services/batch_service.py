"""Batch downloads and prefetching on top of the single-entry workflow."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from miniflux_offline.action_messages import build_batch_summary
from miniflux_offline.models import STATUS_UNREAD, Entry, EntryQuery, UserConfig
from miniflux_offline.services.cancellation import BATCH_CHOICES, BatchState, DownloadPhase
from miniflux_offline.services.download_service import (
    DownloadOutcome,
    DownloadResult,
    EntryDownloader,
)

if TYPE_CHECKING:
    from miniflux_offline.services.interfaces import Gateway

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResult:
    """Aggregate outcome of a batch run."""

    total: int
    successful: int = 0
    failed: int = 0
    cancelled: bool = False
    results: list[DownloadResult] = field(default_factory=list)
    message: str = ""


class BatchDownloader:
    """Downloads many entries in sequence, sharing one set of user decisions.

    When a gateway is given, each entry's full content is fetched right
    before its download; entries already stored locally are never fetched.
    """

    def __init__(self, downloader: EntryDownloader, gateway: Gateway | None = None) -> None:
        self.downloader = downloader
        self.gateway = gateway

    def _full_entry(self, entry: Entry) -> tuple[Entry | None, str | None]:
        if self.gateway is None:
            return entry, None
        full, error = self.gateway.get_entry(entry.id)
        if error is None and full is not None:
            return full, None
        if entry.content:
            logger.info("Using listed content for entry %d: %s", entry.id, error)
            return entry, None
        return None, error.message if error else "Entry not found"

    def run(self, entries: list[Entry], *, include_images: bool | None = None) -> BatchResult:
        batch = BatchState(total=len(entries))
        result = BatchResult(total=len(entries))
        downloader = self.downloader

        for index, entry in enumerate(entries, start=1):
            batch.index = index
            batch.title = entry.title
            if downloader.token.requested:
                choice = downloader.prompter.choose(DownloadPhase.IDLE, BATCH_CHOICES, batch)
                downloader.token.clear()
                batch.apply(choice)
            if batch.cancel_all:
                break

            if downloader.store.is_downloaded(entry.id):
                outcome = downloader.download(entry, batch=batch)
            else:
                full, error = self._full_entry(entry)
                if full is None:
                    logger.warning("Skipping entry %d: %s", entry.id, error)
                    outcome = DownloadResult(
                        entry_id=entry.id, outcome=DownloadOutcome.FAILED, error=error
                    )
                else:
                    outcome = downloader.download(full, include_images=include_images, batch=batch)

            result.results.append(outcome)
            if outcome.succeeded:
                result.successful += 1
            elif not (outcome.outcome is DownloadOutcome.CANCELLED and batch.cancel_all):
                # cancelled on its own rather than through cancel-all
                result.failed += 1
            if batch.cancel_all:
                break

        result.cancelled = batch.cancel_all
        result.message = build_batch_summary(
            result.successful, result.failed, result.total, cancelled=result.cancelled
        )
        logger.info("%s", result.message)
        return result


def prefetch_entries(
    gateway: Gateway,
    batch: BatchDownloader,
    config: UserConfig,
    *,
    count: int | None = None,
    starred: bool = False,
) -> tuple[BatchResult | None, str | None]:
    """Download the newest unread (or starred) entries not yet stored locally."""
    wanted = config.prefetch_count if count is None else count
    if wanted <= 0:
        return None, "Prefetch count is zero"
    query = EntryQuery(
        status=() if starred else (STATUS_UNREAD,),
        starred=True if starred else None,
        order=config.order,
        direction=config.direction,
        limit=max(config.limit, wanted),
    )
    page, error = gateway.get_entries(query)
    if error is not None or page is None:
        return None, error.message if error else "No entries returned"
    store = batch.downloader.store
    pending = [entry for entry in page.entries if not store.is_downloaded(entry.id)][:wanted]
    if not pending:
        return BatchResult(total=0, message="Nothing new to prefetch"), None
    return batch.run(pending), None


__all__ = [
    "BatchDownloader",
    "BatchResult",
    "prefetch_entries",
]
