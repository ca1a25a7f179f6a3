"""Tests for pending-mutation reconciliation."""

from __future__ import annotations

import json
from types import SimpleNamespace

from miniflux_offline.action_messages import NOTHING_TO_SYNC
from miniflux_offline.models import LocalEntryRecord, QueueCounts
from miniflux_offline.queue_store import STATUS_QUEUE_FILENAME
from miniflux_offline.services.sync_service import SyncDecision, SyncReconciler, SyncState


class OpenView:
    def __init__(self, entry_id: int) -> None:
        self.entry_id = entry_id
        self.applied: list[str] = []

    def apply_status(self, status: str) -> None:
        self.applied.append(status)


def _seed(store, *entry_ids: int, status: str = "unread") -> None:
    for entry_id in entry_ids:
        store.save_metadata(LocalEntryRecord(id=entry_id, status=status))
        store.write_html(entry_id, "<html></html>")


class TestSync:
    def test_empty_queue_makes_no_calls(self, gateway, queue, store):
        report = SyncReconciler(gateway, queue, store).sync()
        assert report.message == NOTHING_TO_SYNC
        assert gateway.calls == []

    def test_failed_group_stays_queued(self, gateway, queue, store):
        queue.enqueue_status(101, "unread")
        queue.enqueue_status(102, "read")
        queue.enqueue_status(103, "read")
        gateway.failing_statuses = {"unread"}

        report = SyncReconciler(gateway, queue, store).sync(auto_confirm=True)

        assert set(queue.load_status_queue()) == {101}
        assert queue.load_status_queue()[101].new_status == "unread"
        assert report.message == "2 changes synced, 1 failed"
        assert (report.status_synced, report.status_failed) == (2, 1)

    def test_one_call_per_target_status(self, gateway, queue, store):
        for entry_id in range(1, 21):
            queue.enqueue_status(entry_id, "read" if entry_id % 2 else "unread")

        report = SyncReconciler(gateway, queue, store).sync(auto_confirm=True)

        calls = gateway.calls_named("update_entries")
        assert len(calls) == 2
        assert report.network_calls == 2
        assert calls[0] == (tuple(range(2, 21, 2)), "unread")
        assert calls[1] == (tuple(range(1, 21, 2)), "read")
        assert queue.load_status_queue() == {}

    def test_unsupported_queued_status_is_dropped(self, gateway, queue, store):
        queue.queue_dir.mkdir(parents=True, exist_ok=True)
        (queue.queue_dir / STATUS_QUEUE_FILENAME).write_text(
            json.dumps(
                {
                    "1": {"new_status": "read"},
                    "2": {"new_status": "unread"},
                    "3": {"new_status": "removed"},
                }
            ),
            encoding="utf-8",
        )

        report = SyncReconciler(gateway, queue, store).sync(auto_confirm=True)

        assert report.network_calls == 2
        assert [status for _, status in gateway.calls_named("update_entries")] == [
            "unread",
            "read",
        ]

    def test_synced_status_is_applied_locally(self, gateway, queue, store):
        _seed(store, 7)
        queue.enqueue_status(7, "read", "unread")
        view = OpenView(7)

        SyncReconciler(gateway, queue, store, open_entry=lambda: view).sync()

        assert store.load_metadata(7).status == "read"
        assert store.get_record(7).status == "read"
        assert view.applied == ["read"]

    def test_newer_enqueue_during_sync_survives(self, gateway, queue, store):
        queue.enqueue_status(5, "read")
        original_update = gateway.update_entries

        def racing_update(entry_ids, status, extra=None):
            # A worker flips the entry back while the bulk call is in flight
            queue.enqueue_status(5, "unread")
            return original_update(entry_ids, status, extra)

        gateway.update_entries = racing_update
        SyncReconciler(gateway, queue, store).drain()
        assert queue.load_status_queue()[5].new_status == "unread"

    def test_offline_keeps_everything(self, gateway, queue, store):
        queue.enqueue_status(1, "read")
        queue.enqueue_bookmark(2, True)
        queue.enqueue_collection("feed", 3)
        gateway.offline = True

        report = SyncReconciler(gateway, queue, store).sync()

        assert queue.get_total_queue_count().total == 3
        assert report.message == "3 changes failed to sync"


class TestConfirmation:
    def test_later_leaves_queue_untouched(self, gateway, queue, store):
        queue.enqueue_status(1, "read")
        seen: list[QueueCounts] = []

        def confirm(counts):
            seen.append(counts)
            return SyncDecision.LATER

        reconciler = SyncReconciler(gateway, queue, store)
        report = reconciler.sync(confirm=confirm)

        assert seen[0].total == 1
        assert report.decision is SyncDecision.LATER
        assert gateway.calls == []
        assert len(queue.load_status_queue()) == 1
        assert reconciler.state is SyncState.IDLE

    def test_discard_clears_every_queue(self, gateway, queue, store):
        queue.enqueue_status(1, "read")
        queue.enqueue_bookmark(2, False)
        report = SyncReconciler(gateway, queue, store).sync(
            confirm=lambda counts: SyncDecision.DISCARD
        )
        assert report.message == "Pending changes discarded"
        assert queue.get_total_queue_count().total == 0
        assert gateway.calls == []

    def test_auto_confirm_skips_prompt(self, gateway, queue, store):
        queue.enqueue_status(1, "read")

        def confirm(counts):
            raise AssertionError("should not be asked")

        report = SyncReconciler(gateway, queue, store).sync(confirm=confirm, auto_confirm=True)
        assert report.synced == 1


class TestBookmarksAndCollections:
    def test_bookmark_toggled_only_when_server_differs(self, gateway, queue, store, make_entry):
        gateway.entries = {1: make_entry(entry_id=1, starred=False), 2: make_entry(entry_id=2)}
        gateway.starred = {2: True}
        _seed(store, 1)
        queue.enqueue_bookmark(1, True)
        queue.enqueue_bookmark(2, True)

        report = SyncReconciler(gateway, queue, store).drain()

        assert gateway.calls_named("toggle_bookmark") == [1]
        assert report.bookmark_synced == 2
        assert queue.load_bookmark_queue() == {}
        assert store.load_metadata(1).starred is True

    def test_collections_drained(self, gateway, queue, store):
        queue.enqueue_collection("feed", 4)
        queue.enqueue_collection("category", 9)

        report = SyncReconciler(gateway, queue, store).drain()

        assert gateway.calls_named("mark_collection_as_read") == [("feed", 4), ("category", 9)]
        assert report.collection_synced == 2
        assert queue.get_total_queue_count().total == 0

    def test_open_view_for_other_entry_is_untouched(self, gateway, queue, store):
        queue.enqueue_status(1, "read")
        view = SimpleNamespace(entry_id=99, apply_status=lambda status: None)
        report = SyncReconciler(gateway, queue, store, open_entry=lambda: view).drain()
        assert report.status_synced == 1
