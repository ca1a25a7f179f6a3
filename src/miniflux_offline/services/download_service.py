"""Single-entry download workflow.

Preparing -> Downloading (images) -> Processing (HTML + metadata) -> Completing.
Cancellation requests are observed between phases and between images; the
HTML file is published last so a half-processed entry never looks downloaded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from miniflux_offline.action_messages import (
    build_download_preparing_message,
    build_image_progress_message,
    build_image_summary,
    build_processing_message,
)
from miniflux_offline.entry_store import LocalEntryStore, record_from_entry
from miniflux_offline.models import Entry, NavigationContext, UserConfig
from miniflux_offline.services.cancellation import (
    IMAGE_CHOICES,
    PHASE_CHOICES,
    BatchState,
    CancelChoice,
    CancellationToken,
    DownloadPhase,
    ProgressThrottle,
    SilentPrompter,
)

if TYPE_CHECKING:
    from miniflux_offline.services.interfaces import (
        ContentPipeline,
        ContentViewer,
        DownloadPrompter,
        ImageDownloader,
    )

logger = logging.getLogger(__name__)


class DownloadOutcome(StrEnum):
    COMPLETED = "completed"
    ALREADY_DOWNLOADED = "already_downloaded"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True)
class DownloadResult:
    """Outcome of one entry's workflow run."""

    entry_id: int
    outcome: DownloadOutcome
    path: Path | None = None
    images_total: int = 0
    images_downloaded: int = 0
    images_skipped: bool = False
    error: str | None = None
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome in (DownloadOutcome.COMPLETED, DownloadOutcome.ALREADY_DOWNLOADED)


class EntryDownloader:
    """Runs the download workflow for one entry at a time."""

    def __init__(
        self,
        *,
        store: LocalEntryStore,
        pipeline: ContentPipeline,
        fetcher: ImageDownloader,
        config: UserConfig,
        prompter: DownloadPrompter | None = None,
        token: CancellationToken | None = None,
        clock: Callable[[], float] = time.monotonic,
        progress_interval: float = 1.0,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.fetcher = fetcher
        self.config = config
        self.prompter = prompter or SilentPrompter()
        self.token = token or CancellationToken()
        self._clock = clock
        self._progress_interval = progress_interval
        self.phase = DownloadPhase.IDLE

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def _checkpoint(
        self, choices: tuple[CancelChoice, ...], batch: BatchState | None
    ) -> CancelChoice | None:
        """Ask the user what to do if cancellation was requested since the last check."""
        if not self.token.requested:
            return None
        choice = self.prompter.choose(self.phase, choices, batch)
        self.token.clear()
        logger.debug("Checkpoint in %s answered with %s", self.phase, choice)
        if batch is not None:
            batch.apply(choice)
        return choice

    def _abandon(self, entry: Entry, reason: str) -> DownloadResult:
        """Delete everything written for the entry so far."""
        self.store.delete_entry(entry.id)
        logger.info("Download of entry %d cancelled during %s", entry.id, self.phase)
        return DownloadResult(
            entry_id=entry.id,
            outcome=DownloadOutcome.CANCELLED,
            message=reason,
        )

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def download(
        self,
        entry: Entry,
        *,
        include_images: bool | None = None,
        batch: BatchState | None = None,
    ) -> DownloadResult:
        """Download one entry. Already-downloaded entries return without network access."""
        if self.store.is_downloaded(entry.id):
            return DownloadResult(
                entry_id=entry.id,
                outcome=DownloadOutcome.ALREADY_DOWNLOADED,
                path=self.store.html_path(entry.id),
                message="Entry already downloaded",
            )
        try:
            return self._run(entry, include_images=include_images, batch=batch)
        finally:
            self.phase = DownloadPhase.IDLE

    def _run(
        self, entry: Entry, *, include_images: bool | None, batch: BatchState | None
    ) -> DownloadResult:
        # Preparing
        self.phase = DownloadPhase.PREPARING
        if entry.id <= 0:
            return DownloadResult(
                entry_id=entry.id,
                outcome=DownloadOutcome.FAILED,
                error=f"Invalid entry id: {entry.id}",
            )
        title = entry.title or f"Entry {entry.id}"
        self.prompter.report(build_download_preparing_message(title))
        entry_dir = self.store.entry_dir(entry.id)
        try:
            entry_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create directory for entry %d: %s", entry.id, e)
            return DownloadResult(
                entry_id=entry.id,
                outcome=DownloadOutcome.FAILED,
                error=f"Could not create entry directory: {e}",
            )
        choice = self._checkpoint(PHASE_CHOICES, batch)
        if choice is CancelChoice.CANCEL_ENTRY or (batch is not None and batch.cancel_all):
            return self._abandon(entry, "Download cancelled")

        prepared = self.pipeline.prepare(entry.content, entry.url)
        images = prepared.images

        # Downloading
        self.phase = DownloadPhase.DOWNLOADING
        want_images = self.config.include_images if include_images is None else include_images
        if batch is not None:
            if batch.skip_images_for_all:
                want_images = False
            elif batch.include_images_for_all:
                want_images = True
        skipped = not want_images
        throttle = ProgressThrottle(self._progress_interval, self._clock)
        image_choices = IMAGE_CHOICES
        if batch is not None:
            image_choices = (*IMAGE_CHOICES, CancelChoice.CANCEL_ALL)

        if want_images:
            for index, descriptor in enumerate(images, start=1):
                choice = self._checkpoint(image_choices, batch)
                if choice in (CancelChoice.CANCEL_ENTRY, CancelChoice.CANCEL_ALL):
                    return self._abandon(entry, "Download cancelled")
                if choice in (CancelChoice.SKIP_IMAGES, CancelChoice.SKIP_IMAGES_ALL):
                    skipped = True
                    break
                if throttle.ready():
                    self.prompter.report(build_image_progress_message(title, index, len(images)))
                self.fetcher.fetch(descriptor, entry_dir, entry.url)

        downloaded = sum(1 for descriptor in images if descriptor.downloaded)
        failed = [descriptor for descriptor in images if descriptor.error]
        if failed:
            logger.warning(
                "Entry %d: %d of %d images failed to download",
                entry.id,
                len(failed),
                len(images),
            )

        # Processing
        self.phase = DownloadPhase.PROCESSING
        self.prompter.report(build_processing_message(title))
        choice = self._checkpoint(PHASE_CHOICES, batch)
        if choice is CancelChoice.CANCEL_ENTRY or (batch is not None and batch.cancel_all):
            return self._abandon(entry, "Download cancelled")

        rendered, error = self.pipeline.render(prepared, entry, entry_dir)
        if error is not None or rendered is None:
            logger.error("Processing entry %d failed: %s", entry.id, error)
            return DownloadResult(
                entry_id=entry.id,
                outcome=DownloadOutcome.FAILED,
                images_total=len(images),
                images_downloaded=downloaded,
                error=error or "Processing failed",
            )
        if not self.store.save_metadata(record_from_entry(entry, rendered.images)):
            return DownloadResult(
                entry_id=entry.id,
                outcome=DownloadOutcome.FAILED,
                images_total=len(images),
                images_downloaded=downloaded,
                error="Could not save entry metadata",
            )
        path, error = self.store.write_html(entry.id, rendered.html)
        if error is not None:
            return DownloadResult(
                entry_id=entry.id,
                outcome=DownloadOutcome.FAILED,
                images_total=len(images),
                images_downloaded=downloaded,
                error=error,
            )

        # Completing
        self.phase = DownloadPhase.COMPLETING
        summary = build_image_summary(downloaded, len(images), include_images=want_images)
        logger.info("Downloaded entry %d (%s)", entry.id, summary)
        return DownloadResult(
            entry_id=entry.id,
            outcome=DownloadOutcome.COMPLETED,
            path=path,
            images_total=len(images),
            images_downloaded=downloaded,
            images_skipped=skipped,
            message=f"Download completed!\n\n{summary}",
        )

    def download_and_open(
        self,
        entry: Entry,
        viewer: ContentViewer,
        context: NavigationContext | None = None,
    ) -> DownloadResult:
        """Download if needed, then hand the local document to the viewer."""
        result = self.download(entry)
        if result.succeeded and result.path is not None:
            viewer.open(result.path, context or NavigationContext())
        return result


__all__ = [
    "DownloadOutcome",
    "DownloadResult",
    "EntryDownloader",
]
