"""Pending-mutation reconciliation against the server.

Idle -> Confirm -> Draining -> Reporting -> Idle. Status mutations are sent
as one bulk call per target status; an id leaves the queue only after the
call covering it succeeded. Failures stay queued silently, the queue being
the retry mechanism.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from miniflux_offline.action_messages import NOTHING_TO_SYNC, build_sync_summary
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.models import (
    COLLECTION_KINDS,
    QUEUED_STATUSES,
    QueueCounts,
)

if TYPE_CHECKING:
    from miniflux_offline.services.interfaces import Gateway, MutationQueue, OpenEntryView

logger = logging.getLogger(__name__)


class SyncState(StrEnum):
    IDLE = "idle"
    CONFIRM = "confirm"
    DRAINING = "draining"
    REPORTING = "reporting"


class SyncDecision(StrEnum):
    LATER = "later"
    SYNC_NOW = "sync_now"
    DISCARD = "discard"


@dataclass(slots=True)
class SyncReport:
    """Counts from one reconciliation pass."""

    status_synced: int = 0
    status_failed: int = 0
    bookmark_synced: int = 0
    bookmark_failed: int = 0
    collection_synced: int = 0
    collection_failed: int = 0
    network_calls: int = 0
    decision: SyncDecision | None = None
    message: str = ""

    @property
    def synced(self) -> int:
        return self.status_synced + self.bookmark_synced + self.collection_synced

    @property
    def failed(self) -> int:
        return self.status_failed + self.bookmark_failed + self.collection_failed


class SyncReconciler:
    """Drains the mutation queue, applying confirmed changes locally."""

    def __init__(
        self,
        gateway: Gateway,
        queue: MutationQueue,
        store: LocalEntryStore,
        *,
        open_entry: Callable[[], OpenEntryView | None] | None = None,
    ) -> None:
        self.gateway = gateway
        self.queue = queue
        self.store = store
        self._open_entry = open_entry
        self.state = SyncState.IDLE

    def sync(
        self,
        *,
        confirm: Callable[[QueueCounts], SyncDecision] | None = None,
        auto_confirm: bool = False,
    ) -> SyncReport:
        """Run one full pass.

        Args:
            confirm: Asked with the pending counts before anything is sent.
                Without it (or with ``auto_confirm``) the queue is drained.
            auto_confirm: Skip the confirmation step.

        Returns:
            A SyncReport whose ``message`` is ready to show the user.
        """
        counts = self.queue.get_total_queue_count()
        if counts.total == 0:
            self.state = SyncState.IDLE
            return SyncReport(message=NOTHING_TO_SYNC)

        self.state = SyncState.CONFIRM
        decision = SyncDecision.SYNC_NOW
        if confirm is not None and not auto_confirm:
            decision = confirm(counts)

        if decision is SyncDecision.LATER:
            self.state = SyncState.IDLE
            return SyncReport(decision=decision, message="Sync postponed")
        if decision is SyncDecision.DISCARD:
            self.queue.clear_all_queues()
            self.state = SyncState.IDLE
            logger.info("Discarded %d pending changes", counts.total)
            return SyncReport(decision=decision, message="Pending changes discarded")

        report = self.drain()
        report.decision = decision
        return report

    def drain(self) -> SyncReport:
        report = SyncReport()
        self.state = SyncState.DRAINING
        try:
            self.drain_status_queue(report)
            self.drain_bookmark_queue(report)
            for kind in COLLECTION_KINDS:
                self.drain_collection_queue(kind, report)
        finally:
            self.state = SyncState.REPORTING
        report.message = build_sync_summary(report.synced, report.failed)
        logger.info("%s", report.message)
        self.state = SyncState.IDLE
        return report

    # ------------------------------------------------------------------
    # Per-kind draining
    # ------------------------------------------------------------------

    def _apply_open_status(self, entry_ids: list[int], status: str) -> None:
        if self._open_entry is None:
            return
        view = self._open_entry()
        if view is not None and view.entry_id in entry_ids:
            view.apply_status(status)

    def drain_status_queue(self, report: SyncReport) -> None:
        pending = self.queue.load_status_queue()
        groups: dict[str, list[int]] = {}
        for entry_id, mutation in sorted(pending.items()):
            groups.setdefault(mutation.new_status, []).append(entry_id)

        for status in QUEUED_STATUSES:
            entry_ids = groups.get(status)
            if not entry_ids:
                continue
            report.network_calls += 1
            ok, error = self.gateway.update_entries(entry_ids, status)
            if not ok:
                report.status_failed += len(entry_ids)
                logger.info(
                    "Keeping %d %s changes queued: %s",
                    len(entry_ids),
                    status,
                    error.message if error else "unknown error",
                )
                continue
            self.queue.remove_statuses(entry_ids, expected_status=status)
            for entry_id in entry_ids:
                self.store.update_status(entry_id, status)
            self._apply_open_status(entry_ids, status)
            report.status_synced += len(entry_ids)

    def drain_bookmark_queue(self, report: SyncReport) -> None:
        """Bring the server's starred flag to the queued value.

        The bookmark endpoint toggles, so the current server value is read
        first and the toggle is only sent when it differs.
        """
        for entry_id, starred in sorted(self.queue.load_bookmark_queue().items()):
            report.network_calls += 1
            entry, error = self.gateway.get_entry(entry_id)
            if error is not None or entry is None:
                report.bookmark_failed += 1
                continue
            if entry.starred != starred:
                report.network_calls += 1
                ok, error = self.gateway.toggle_bookmark(entry_id)
                if not ok:
                    report.bookmark_failed += 1
                    continue
            self.queue.remove_bookmark(entry_id)
            self.store.set_starred(entry_id, starred)
            report.bookmark_synced += 1

    def drain_collection_queue(self, kind: str, report: SyncReport) -> None:
        for collection_id in sorted(self.queue.load_collection_queue(kind)):
            report.network_calls += 1
            ok, error = self.gateway.mark_collection_as_read(kind, collection_id)
            if not ok:
                report.collection_failed += 1
                logger.info(
                    "Keeping %s %d queued: %s",
                    kind,
                    collection_id,
                    error.message if error else "unknown error",
                )
                continue
            self.queue.remove_collection(kind, collection_id)
            report.collection_synced += 1


__all__ = [
    "SyncDecision",
    "SyncReconciler",
    "SyncReport",
    "SyncState",
]
