"""Tests for the command-line front end."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from miniflux_offline.cli import ConsolePrompter, main
from miniflux_offline.entry_store import LocalEntryStore
from miniflux_offline.models import LocalEntryRecord, UserConfig
from miniflux_offline.queue_store import MutationQueueStore
from miniflux_offline.services import entry_service
from miniflux_offline.services.cancellation import BatchState, CancelChoice, DownloadPhase
from miniflux_offline.services.interfaces import build_default_app_services

ENTRY_PAYLOAD = {
    "id": 5,
    "title": "Offline article",
    "url": "https://blog.example.com/a",
    "content": '<p>Text</p><img src="https://img.example.com/a.png">',
    "published_at": "2024-01-15T10:00:00Z",
    "status": "unread",
    "feed": {"id": 7, "title": "Blog"},
}


def _offline(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("network unreachable", request=request)


@pytest.fixture
def run_cli(tmp_path, mock_client, make_config):
    """Run main() against temp directories and a mocked HTTP transport."""

    def _run(argv, handler=_offline, config: UserConfig | None = None, **kwargs) -> int:
        resolved = config or make_config()
        client = mock_client(handler)

        def build(cfg: UserConfig):
            return build_default_app_services(
                cfg,
                client=client,
                queue_dir=tmp_path / "queue",
                download_root=tmp_path / "entries",
            )

        return main(
            argv,
            load_config_fn=lambda _path: resolved,
            build_services_fn=build,
            configure_logging_fn=lambda _debug: None,
            interactive=False,
            **kwargs,
        )

    return _run


def _seed(tmp_path, entry_id: int, **fields) -> None:
    store = LocalEntryStore(tmp_path / "entries")
    store.save_metadata(LocalEntryRecord(id=entry_id, **fields))
    store.write_html(entry_id, "<html></html>")


class TestQueueCommands:
    def test_queue_counts(self, run_cli, tmp_path, capsys):
        queue = MutationQueueStore(tmp_path / "queue")
        queue.enqueue_status(1, "read")
        queue.enqueue_status(2, "unread")
        queue.enqueue_bookmark(3, True)

        assert run_cli(["queue"]) == 0
        assert capsys.readouterr().out.strip() == (
            "3 pending changes (2 status, 1 bookmark, 0 feed, 0 category)"
        )

    def test_sync_yes(self, run_cli, tmp_path, capsys):
        MutationQueueStore(tmp_path / "queue").enqueue_status(1, "read")
        assert run_cli(["sync", "--yes"], handler=lambda r: httpx.Response(204)) == 0
        assert capsys.readouterr().out.strip() == "1 change synced"
        assert MutationQueueStore(tmp_path / "queue").load_status_queue() == {}

    def test_sync_discard(self, run_cli, tmp_path, capsys):
        MutationQueueStore(tmp_path / "queue").enqueue_status(1, "read")
        assert run_cli(["sync", "--discard"]) == 0
        assert "discarded" in capsys.readouterr().out
        assert MutationQueueStore(tmp_path / "queue").get_total_queue_count().total == 0

    def test_sync_interactive_later(self, tmp_path, capsys, make_config):
        MutationQueueStore(tmp_path / "queue").enqueue_status(1, "read")
        config = make_config()
        code = main(
            ["sync"],
            load_config_fn=lambda _path: config,
            build_services_fn=lambda cfg: build_default_app_services(
                cfg, queue_dir=tmp_path / "queue", download_root=tmp_path / "entries"
            ),
            configure_logging_fn=lambda _debug: None,
            input_fn=lambda prompt: "l",
            interactive=True,
        )
        assert code == 0
        assert capsys.readouterr().out.strip() == "Sync postponed"

    def test_mark_read_offline_is_queued(self, run_cli, tmp_path, capsys):
        assert run_cli(["mark-read", "8", "9"]) == 0
        assert "will sync when online" in capsys.readouterr().out
        assert set(MutationQueueStore(tmp_path / "queue").load_status_queue()) == {8, 9}

    def test_mark_feed_read_offline(self, run_cli, tmp_path):
        assert run_cli(["mark-feed-read", "4"]) == 0
        assert MutationQueueStore(tmp_path / "queue").load_collection_queue("feed") == {
            4: "mark_all_read"
        }


class TestOnlineCommands:
    def test_check_requires_configuration(self, run_cli, capsys):
        assert run_cli(["check"], config=UserConfig()) == 1
        err = capsys.readouterr().err
        assert "server address or API token is not set" in err
        assert "Next step:" in err

    def test_check_success(self, run_cli, capsys):
        code = run_cli(["check"], handler=lambda r: httpx.Response(200, json={"username": "ana"}))
        assert code == 0
        assert capsys.readouterr().out.strip() == "Connected as ana."

    def test_download_without_images(self, run_cli, tmp_path, capsys):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/entries/5"
            return httpx.Response(200, json=ENTRY_PAYLOAD)

        assert run_cli(["download", "5", "--no-images"], handler=handler) == 0
        out = capsys.readouterr().out
        assert "All 1 entries downloaded successfully!" in out
        assert (tmp_path / "entries" / "5" / "entry.html").is_file()
        metadata = json.loads((tmp_path / "entries" / "5" / "metadata.json").read_text())
        assert metadata["images"] == {"image_001.png": "https://img.example.com/a.png"}

    def test_download_unknown_entry(self, run_cli, capsys):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error_message": "entry not found"})

        assert run_cli(["download", "77"], handler=handler) == 1
        assert "entry not found" in capsys.readouterr().err


class TestLocalCommands:
    def test_list_and_search(self, run_cli, tmp_path, capsys):
        _seed(tmp_path, 1, title="Rust ownership explained", starred=True)
        _seed(tmp_path, 2, title="Baking sourdough bread")

        assert run_cli(["list", "--sort", "id"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 2
        assert "*" in lines[0] and "Rust ownership" in lines[0]

        assert run_cli(["search", "sourdough"]) == 0
        assert "Baking sourdough bread" in capsys.readouterr().out

    def test_open_prints_path(self, run_cli, tmp_path, capsys, make_config):
        _seed(tmp_path, 3, status="read")
        assert run_cli(["open", "3"], config=make_config(mark_as_read_on_open=False)) == 0
        assert capsys.readouterr().out.strip().endswith("entry.html")

    def test_open_sends_read_status_before_exit(self, run_cli, tmp_path):
        _seed(tmp_path, 3, status="unread")
        gateway = MagicMock()
        gateway.update_entries.return_value = (True, None)

        with patch.object(entry_service, "MinifluxGateway", return_value=gateway):
            assert run_cli(["open", "3"]) == 0

        gateway.update_entries.assert_called_once_with([3], "read")
        assert MutationQueueStore(tmp_path / "queue").load_status_queue() == {}

    def test_open_missing_entry(self, run_cli, capsys):
        assert run_cli(["open", "3"]) == 1
        assert "has not been downloaded" in capsys.readouterr().err

    def test_next_offline_uses_local_files(self, run_cli, tmp_path, capsys):
        for entry_id in (10, 20, 30):
            _seed(tmp_path, entry_id, published_at="2024-01-15T10:00:00Z")
        assert run_cli(["next", "20"]) == 0
        assert capsys.readouterr().out.strip().endswith("30/entry.html")

    def test_purge_rejects_unsupported_age(self, run_cli):
        with pytest.raises(SystemExit):
            run_cli(["purge", "--older-than", "14"])

    def test_clear_downloads_requires_yes(self, run_cli, tmp_path):
        _seed(tmp_path, 1)
        assert run_cli(["clear-downloads"]) == 1
        assert run_cli(["clear-downloads", "--yes"]) == 0
        assert not (tmp_path / "entries" / "1").exists()

    def test_stats(self, run_cli, tmp_path, capsys):
        _seed(tmp_path, 1)
        assert run_cli(["stats"]) == 0
        assert "Entries: 1" in capsys.readouterr().out

    def test_config_set_persists(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        code = main(
            ["--config", str(path), "config", "set", "limit", "25"],
            build_services_fn=lambda cfg: build_default_app_services(
                cfg, queue_dir=tmp_path / "queue", download_root=tmp_path / "entries"
            ),
            configure_logging_fn=lambda _debug: None,
            interactive=False,
        )
        assert code == 0
        assert json.loads(path.read_text(encoding="utf-8"))["limit"] == 25
        assert "limit = 25" in capsys.readouterr().out

    def test_config_set_unknown_key(self, run_cli, capsys):
        assert run_cli(["config", "set", "colour", "blue"]) == 1
        assert "Unknown setting: colour" in capsys.readouterr().err


class TestConsolePrompter:
    def test_non_interactive_takes_first_choice(self):
        prompter = ConsolePrompter(input_fn=lambda _p: "2", interactive=False)
        choices = (CancelChoice.CANCEL_ENTRY, CancelChoice.RESUME)
        choice = prompter.choose(DownloadPhase.DOWNLOADING, choices, None)
        assert choice is CancelChoice.CANCEL_ENTRY

    def test_numbered_answer(self, capsys):
        prompter = ConsolePrompter(input_fn=lambda _p: "2", interactive=True)
        choices = (CancelChoice.CANCEL_ALL, CancelChoice.SKIP_IMAGES_ALL, CancelChoice.RESUME)
        batch = BatchState(total=3, index=2)
        assert prompter.choose(DownloadPhase.IDLE, choices, batch) is CancelChoice.SKIP_IMAGES_ALL
        assert "(entry 2/3)" in capsys.readouterr().err

    def test_unrecognized_answer_resumes(self):
        prompter = ConsolePrompter(input_fn=lambda _p: "what", interactive=True)
        choices = (CancelChoice.CANCEL_ENTRY, CancelChoice.RESUME)
        assert prompter.choose(DownloadPhase.PROCESSING, choices, None) is CancelChoice.RESUME
