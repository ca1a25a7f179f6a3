"""User-driven status, bookmark and collection actions with offline fallback."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from miniflux_offline.action_messages import (
    build_queued_bookmark_notice,
    build_queued_collection_notice,
    build_queued_status_notice,
)
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.gateway import GatewayError, MinifluxGateway
from miniflux_offline.models import (
    COLLECTION_KINDS,
    ENTRY_STATUSES,
    QUEUED_STATUSES,
    STATUS_READ,
    LocalEntryRecord,
    UserConfig,
    opposite_status,
)
from miniflux_offline.queue_store import MutationQueueStore

if TYPE_CHECKING:
    from miniflux_offline.services.interfaces import Gateway, MutationQueue, OpenEntryView

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionResult:
    """Outcome of one user action.

    ``queued`` means the server call failed and the change was applied
    locally and recorded for the next sync.
    """

    ok: bool
    queued: bool = False
    message: str = ""
    error: str | None = None


def is_retryable(error: GatewayError | None) -> bool:
    """Every failed server call is retried through the queue.

    Input validation happens before the call, so any error that reaches this
    point came from the request itself.
    """
    return error is not None


def should_auto_delete(record: LocalEntryRecord | None, config: UserConfig) -> bool:
    """Close-time policy: only read, unstarred entries are removed."""
    if record is None or not config.auto_delete_read_on_close:
        return False
    if record.starred:
        return False
    return record.status == STATUS_READ


def run_status_update_worker(
    server_address: str,
    api_token: str,
    queue_dir: Path,
    entry_id: int,
    new_status: str,
    timeout_seconds: float = 30.0,
) -> bool:
    """Send one status change from a background worker.

    Builds its own gateway and queue store from the passed values; nothing is
    shared with the caller except files on disk. The queue item is removed
    only if it still asks for ``new_status``.
    """
    gateway = MinifluxGateway(server_address, api_token, timeout_seconds=timeout_seconds)
    try:
        ok, error = gateway.update_entries([entry_id], new_status)
    finally:
        gateway.close()
    if not ok:
        logger.info("Background update of entry %d left queued: %s", entry_id, error)
        return False
    MutationQueueStore(queue_dir).remove_status(entry_id, expected_status=new_status)
    return True


def start_background_worker(target: Callable[..., Any], *args: Any) -> threading.Thread:
    thread = threading.Thread(target=target, args=args, name="miniflux-status-sync", daemon=True)
    thread.start()
    return thread


class EntryService:
    """Status and bookmark changes that degrade to the pending queue offline."""

    def __init__(
        self,
        gateway: Gateway,
        queue: MutationQueue,
        store: LocalEntryStore,
        config: UserConfig,
        *,
        queue_dir: Path | None = None,
        spawn: Callable[..., Any] = start_background_worker,
    ) -> None:
        self.gateway = gateway
        self.queue = queue
        self.store = store
        self.config = config
        self.queue_dir = queue_dir
        self._spawn = spawn
        self.workers: list[threading.Thread] = []

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _apply_local_status(
        self, entry_ids: list[int], new_status: str, open_view: OpenEntryView | None
    ) -> None:
        for entry_id in entry_ids:
            self.store.update_status(entry_id, new_status)
        if open_view is not None and open_view.entry_id in entry_ids:
            open_view.apply_status(new_status)

    def change_entry_status(
        self,
        entry_id: int,
        new_status: str,
        *,
        open_view: OpenEntryView | None = None,
    ) -> ActionResult:
        return self.change_entries_status([entry_id], new_status, open_view=open_view)

    def change_entries_status(
        self,
        entry_ids: list[int],
        new_status: str,
        *,
        open_view: OpenEntryView | None = None,
    ) -> ActionResult:
        """Set status for one or many entries with a single request.

        On a failed request the change is applied locally, queued, and
        reported as informational.
        """
        if new_status not in ENTRY_STATUSES:
            return ActionResult(ok=False, error=f"Invalid status: {new_status!r}")
        ids = list(dict.fromkeys(entry_ids))
        if not ids or any(entry_id <= 0 for entry_id in ids):
            return ActionResult(ok=False, error=f"Invalid entry ids: {entry_ids!r}")

        ok, error = self.gateway.update_entries(ids, new_status)
        if ok:
            self._apply_local_status(ids, new_status, open_view)
            self.queue.remove_statuses(ids)
            return ActionResult(ok=True, message=f"Marked as {new_status}")
        if not is_retryable(error) or new_status not in QUEUED_STATUSES:
            return ActionResult(ok=False, error=error.message if error else "Update failed")

        for entry_id in ids:
            record = self.store.get_record(entry_id)
            original = record.status if record else opposite_status(new_status)
            self.queue.enqueue_status(entry_id, new_status, original)
        self._apply_local_status(ids, new_status, open_view)
        logger.info("Queued %s for %d entries: %s", new_status, len(ids), error)
        return ActionResult(ok=True, queued=True, message=build_queued_status_notice(new_status))

    def mark_read_on_open(self, entry_id: int) -> bool:
        """Auto-mark an opened entry as read.

        The local record and the queue are updated first, then a background
        worker tries the server; the queue item survives if it fails.
        Returns True when a change was made.
        """
        if not self.config.mark_as_read_on_open:
            return False
        record = self.store.get_record(entry_id)
        if record is not None and record.status == STATUS_READ:
            return False
        original = record.status if record else opposite_status(STATUS_READ)
        self.store.update_status(entry_id, STATUS_READ)
        if not self.queue.enqueue_status(entry_id, STATUS_READ, original):
            return False
        if self.queue_dir is None:
            logger.debug("No queue directory; entry %d stays queued for the next sync", entry_id)
            return True
        worker = self._spawn(
            run_status_update_worker,
            self.config.server_address,
            self.config.api_token,
            self.queue_dir,
            entry_id,
            STATUS_READ,
            float(self.config.request_timeout_seconds),
        )
        if worker is not None:
            self.workers.append(worker)
        return True

    def wait_for_workers(self, timeout: float | None = None) -> int:
        """Join spawned background workers. Returns how many are still running."""
        pending = self.workers
        self.workers = []
        for worker in pending:
            worker.join(timeout)
        still_running = [worker for worker in pending if worker.is_alive()]
        self.workers.extend(still_running)
        return len(still_running)

    # ------------------------------------------------------------------
    # Bookmark
    # ------------------------------------------------------------------

    def toggle_bookmark(
        self, entry_id: int, *, current_starred: bool | None = None
    ) -> ActionResult:
        if entry_id <= 0:
            return ActionResult(ok=False, error=f"Invalid entry id: {entry_id!r}")
        if current_starred is None:
            record = self.store.get_record(entry_id)
            current_starred = record.starred if record else None

        ok, error = self.gateway.toggle_bookmark(entry_id)
        if ok:
            if current_starred is not None:
                self.store.set_starred(entry_id, not current_starred)
            self.queue.remove_bookmark(entry_id)
            starred = current_starred is None or not current_starred
            return ActionResult(ok=True, message="Entry starred" if starred else "Entry unstarred")
        if not is_retryable(error) or current_starred is None:
            return ActionResult(ok=False, error=error.message if error else "Bookmark failed")

        desired = not current_starred
        self.queue.enqueue_bookmark(entry_id, desired)
        self.store.set_starred(entry_id, desired)
        return ActionResult(ok=True, queued=True, message=build_queued_bookmark_notice(desired))

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def mark_collection_read(self, kind: str, collection_id: int) -> ActionResult:
        if kind not in COLLECTION_KINDS or collection_id <= 0:
            return ActionResult(ok=False, error=f"Invalid {kind} id: {collection_id!r}")
        ok, error = self.gateway.mark_collection_as_read(kind, collection_id)
        if ok:
            self.queue.remove_collection(kind, collection_id)
            return ActionResult(ok=True, message=f"{kind.capitalize()} marked as read")
        if not is_retryable(error):
            return ActionResult(ok=False, error=error.message if error else "Request failed")
        self.queue.enqueue_collection(kind, collection_id)
        return ActionResult(ok=True, queued=True, message=build_queued_collection_notice(kind))

    # ------------------------------------------------------------------
    # Close-time policy
    # ------------------------------------------------------------------

    def on_entry_closed(self, entry_id: int) -> bool:
        """Apply auto-delete on close. Returns True if the local copy was removed."""
        record = self.store.load_metadata(entry_id)
        if not should_auto_delete(record, self.config):
            return False
        logger.info("Auto-deleting read entry %d on close", entry_id)
        return self.store.delete_entry(entry_id)


__all__ = [
    "ActionResult",
    "EntryService",
    "is_retryable",
    "run_status_update_worker",
    "should_auto_delete",
    "start_background_worker",
]
