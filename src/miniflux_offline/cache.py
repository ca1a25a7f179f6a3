"""In-memory mirror of local entry metadata."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable

from miniflux_offline.models import LocalEntryRecord

logger = logging.getLogger(__name__)


class EntryInfoCache:
    """Reference-counted cache of LocalEntryRecord keyed by entry id.

    Writers must persist the metadata file before calling ``set`` so the
    mirror is never ahead of disk. The cache empties itself when the last
    holder releases it.
    """

    def __init__(self) -> None:
        self._records: dict[int, LocalEntryRecord] = {}
        self._holders = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._records

    @property
    def holders(self) -> int:
        return self._holders

    def acquire(self) -> EntryInfoCache:
        with self._lock:
            self._holders += 1
        return self

    def release(self) -> None:
        with self._lock:
            if self._holders == 0:
                return
            self._holders -= 1
            if self._holders == 0:
                self._records.clear()
                logger.debug("Entry info cache released and cleared")

    def get(self, entry_id: int) -> LocalEntryRecord | None:
        return self._records.get(entry_id)

    def set(self, record: LocalEntryRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def invalidate(self, entry_id: int) -> None:
        with self._lock:
            self._records.pop(entry_id, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def get_or_load(
        self, entry_id: int, loader: Callable[[int], LocalEntryRecord | None]
    ) -> LocalEntryRecord | None:
        """Return the cached record, loading and caching it on a miss."""
        record = self._records.get(entry_id)
        if record is not None:
            return record
        record = loader(entry_id)
        if record is not None:
            self.set(record)
        return record

    def populate(self, records: Iterable[LocalEntryRecord]) -> int:
        count = 0
        with self._lock:
            for record in records:
                self._records[record.id] = record
                count += 1
        return count


__all__ = ["EntryInfoCache"]
