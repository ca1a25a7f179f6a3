"""Durable pending-mutation queues.

Each queue is one JSON document keyed by entry (or collection) id. Every
mutation is a whole-document read-modify-write followed by an atomic replace,
so a crash leaves either the previous map or the new one on disk. A later
enqueue for the same id overwrites the earlier one (last write wins).
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from miniflux_offline.fileio import read_json_object, write_json_atomic
from miniflux_offline.models import (
    COLLECTION_CATEGORY,
    COLLECTION_FEED,
    COLLECTION_KINDS,
    COLLECTION_MARK_ALL_READ,
    ENTRY_STATUSES,
    QUEUED_STATUSES,
    PendingStatusMutation,
    QueueCounts,
    opposite_status,
)

logger = logging.getLogger(__name__)

STATUS_QUEUE_FILENAME = "entry_status.json"
BOOKMARK_QUEUE_FILENAME = "entry_bookmark.json"
COLLECTION_QUEUE_FILENAMES = {
    COLLECTION_FEED: "feed.json",
    COLLECTION_CATEGORY: "category.json",
}

# Serializes read-modify-write cycles between the caller and background workers
_QUEUE_LOCK = threading.RLock()


def _parse_id(raw: str) -> int | None:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


class MutationQueueStore:
    """Status, bookmark and collection queues under one directory."""

    def __init__(self, queue_dir: Path, *, clock: Callable[[], float] = time.time) -> None:
        self.queue_dir = queue_dir
        self._clock = clock

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def _load_document(self, filename: str) -> dict[str, Any]:
        return read_json_object(self.queue_dir / filename) or {}

    def _save_document(self, filename: str, data: dict[str, Any]) -> bool:
        return write_json_atomic(self.queue_dir / filename, data)

    def _mutate(self, filename: str, change: Callable[[dict[str, Any]], None]) -> bool:
        with _QUEUE_LOCK:
            data = self._load_document(filename)
            change(data)
            return self._save_document(filename, data)

    # ------------------------------------------------------------------
    # Entry status
    # ------------------------------------------------------------------

    def load_status_queue(self) -> dict[int, PendingStatusMutation]:
        queue: dict[int, PendingStatusMutation] = {}
        for raw_id, raw in self._load_document(STATUS_QUEUE_FILENAME).items():
            entry_id = _parse_id(raw_id)
            if entry_id is None or not isinstance(raw, dict):
                logger.warning("Dropping malformed status queue item %r", raw_id)
                continue
            new_status = raw.get("new_status")
            if new_status not in QUEUED_STATUSES:
                logger.warning("Dropping status queue item %d with status %r", entry_id, new_status)
                continue
            original = raw.get("original_status")
            if original not in ENTRY_STATUSES:
                original = opposite_status(new_status)
            queue[entry_id] = PendingStatusMutation(new_status=new_status, original_status=original)
        return queue

    def save_status_queue(self, queue: dict[int, PendingStatusMutation]) -> bool:
        now = int(self._clock())
        data = {
            str(entry_id): {
                "new_status": item.new_status,
                "original_status": item.original_status,
                "timestamp": now,
            }
            for entry_id, item in queue.items()
        }
        with _QUEUE_LOCK:
            return self._save_document(STATUS_QUEUE_FILENAME, data)

    def enqueue_status(
        self, entry_id: int, new_status: str, original_status: str | None = None
    ) -> bool:
        """Record the desired status for an entry, replacing any earlier one."""
        if entry_id <= 0 or new_status not in QUEUED_STATUSES:
            logger.warning("Refusing to queue status %r for entry %r", new_status, entry_id)
            return False
        original = original_status if original_status in ENTRY_STATUSES else None

        def change(data: dict[str, Any]) -> None:
            data[str(entry_id)] = {
                "new_status": new_status,
                "original_status": original or opposite_status(new_status),
                "timestamp": int(self._clock()),
            }

        ok = self._mutate(STATUS_QUEUE_FILENAME, change)
        if ok:
            logger.debug("Queued status %s for entry %d", new_status, entry_id)
        return ok

    def remove_status(self, entry_id: int, expected_status: str | None = None) -> bool:
        return self.remove_statuses([entry_id], expected_status)

    def remove_statuses(
        self, entry_ids: Iterable[int], expected_status: str | None = None
    ) -> bool:
        """Drop queued items for the given ids.

        With ``expected_status``, an item is only dropped while it still asks
        for that status, so a newer enqueue made during the network call
        survives.
        """
        keys = {str(entry_id) for entry_id in entry_ids}

        def change(data: dict[str, Any]) -> None:
            for key in keys:
                item = data.get(key)
                if expected_status is not None and (
                    isinstance(item, dict) and item.get("new_status") != expected_status
                ):
                    continue
                data.pop(key, None)

        return self._mutate(STATUS_QUEUE_FILENAME, change)

    def clear_status_queue(self) -> bool:
        with _QUEUE_LOCK:
            return self._save_document(STATUS_QUEUE_FILENAME, {})

    # ------------------------------------------------------------------
    # Entry bookmark
    # ------------------------------------------------------------------

    def load_bookmark_queue(self) -> dict[int, bool]:
        queue: dict[int, bool] = {}
        for raw_id, raw in self._load_document(BOOKMARK_QUEUE_FILENAME).items():
            entry_id = _parse_id(raw_id)
            if entry_id is None or not isinstance(raw, dict):
                continue
            starred = raw.get("starred")
            if isinstance(starred, bool):
                queue[entry_id] = starred
        return queue

    def enqueue_bookmark(self, entry_id: int, starred: bool) -> bool:
        """Record the desired starred flag for an entry."""
        if entry_id <= 0:
            return False

        def change(data: dict[str, Any]) -> None:
            data[str(entry_id)] = {"starred": starred, "timestamp": int(self._clock())}

        return self._mutate(BOOKMARK_QUEUE_FILENAME, change)

    def remove_bookmark(self, entry_id: int) -> bool:
        return self._mutate(BOOKMARK_QUEUE_FILENAME, lambda data: data.pop(str(entry_id), None))

    def clear_bookmark_queue(self) -> bool:
        with _QUEUE_LOCK:
            return self._save_document(BOOKMARK_QUEUE_FILENAME, {})

    # ------------------------------------------------------------------
    # Feed / category "mark all as read"
    # ------------------------------------------------------------------

    @staticmethod
    def _collection_file(kind: str) -> str:
        try:
            return COLLECTION_QUEUE_FILENAMES[kind]
        except KeyError:
            raise ValueError(f"Unknown collection kind: {kind!r}") from None

    def load_collection_queue(self, kind: str) -> dict[int, str]:
        queue: dict[int, str] = {}
        for raw_id, raw in self._load_document(self._collection_file(kind)).items():
            collection_id = _parse_id(raw_id)
            if collection_id is None or not isinstance(raw, dict):
                continue
            if raw.get("operation") == COLLECTION_MARK_ALL_READ:
                queue[collection_id] = COLLECTION_MARK_ALL_READ
        return queue

    def enqueue_collection(
        self, kind: str, collection_id: int, operation: str = COLLECTION_MARK_ALL_READ
    ) -> bool:
        if kind not in COLLECTION_KINDS or collection_id <= 0:
            return False
        if operation != COLLECTION_MARK_ALL_READ:
            return False

        def change(data: dict[str, Any]) -> None:
            data[str(collection_id)] = {"operation": operation, "timestamp": int(self._clock())}

        return self._mutate(self._collection_file(kind), change)

    def remove_collection(self, kind: str, collection_id: int) -> bool:
        return self._mutate(
            self._collection_file(kind), lambda data: data.pop(str(collection_id), None)
        )

    def clear_collection_queue(self, kind: str) -> bool:
        with _QUEUE_LOCK:
            return self._save_document(self._collection_file(kind), {})

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def get_total_queue_count(self) -> QueueCounts:
        return QueueCounts(
            status=len(self.load_status_queue()),
            bookmark=len(self.load_bookmark_queue()),
            feed=len(self.load_collection_queue(COLLECTION_FEED)),
            category=len(self.load_collection_queue(COLLECTION_CATEGORY)),
        )

    def clear_all_queues(self) -> bool:
        results = [
            self.clear_status_queue(),
            self.clear_bookmark_queue(),
            self.clear_collection_queue(COLLECTION_FEED),
            self.clear_collection_queue(COLLECTION_CATEGORY),
        ]
        return all(results)


__all__ = [
    "BOOKMARK_QUEUE_FILENAME",
    "COLLECTION_QUEUE_FILENAMES",
    "STATUS_QUEUE_FILENAME",
    "MutationQueueStore",
]
