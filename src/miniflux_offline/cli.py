"""Command-line front end for the offline engine."""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import signal
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from miniflux_offline.action_messages import (
    build_actionable_error,
    build_actionable_success,
    build_sync_confirmation_prompt,
)
from miniflux_offline.config import (
    apply_config_value,
    get_config_dir,
    get_config_path,
    load_config,
    save_config,
)
from miniflux_offline.entry_store import LOCAL_SORT_KEYS, format_size
from miniflux_offline.models import (
    COLLECTION_CATEGORY,
    COLLECTION_FEED,
    PURGE_AGE_OPTIONS,
    STATUS_READ,
    STATUS_UNREAD,
    Entry,
    NavigationContext,
    QueueCounts,
    ScopeKind,
    UserConfig,
)
from miniflux_offline.services.batch_service import BatchDownloader, prefetch_entries
from miniflux_offline.services.cancellation import BatchState, CancelChoice, DownloadPhase
from miniflux_offline.services.download_service import EntryDownloader
from miniflux_offline.services.entry_service import EntryService
from miniflux_offline.services.interfaces import AppServices, build_default_app_services
from miniflux_offline.services.navigation_service import Direction, NavigationCursor
from miniflux_offline.services.storage_service import purge_entries_older_than, recover_images
from miniflux_offline.services.sync_service import SyncDecision, SyncReconciler

logger = logging.getLogger(__name__)

_CHOICE_LABELS = {
    CancelChoice.CANCEL_ENTRY: "Cancel this entry",
    CancelChoice.SKIP_IMAGES: "Skip remaining images for this entry",
    CancelChoice.SKIP_IMAGES_ALL: "Skip images for all remaining entries",
    CancelChoice.INCLUDE_IMAGES_ALL: "Include images for all remaining entries",
    CancelChoice.CANCEL_ALL: "Cancel all remaining entries",
    CancelChoice.RESUME: "Continue",
}


def _configure_logging(debug: bool) -> None:
    """Configure logging. When debug=True, logs to file at DEBUG level."""
    if not debug:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(message)s")
        return

    log_dir = get_config_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "debug.log"

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(logging.DEBUG)


# ============================================================================
# Console collaborators
# ============================================================================


class ConsolePrompter:
    """Download prompter that prints progress and asks on stdin."""

    def __init__(self, input_fn: Callable[[str], str], interactive: bool) -> None:
        self._input = input_fn
        self._interactive = interactive

    def report(self, message: str) -> None:
        print(message.replace("\n\n", " - ").replace("\n", " "), file=sys.stderr)

    def choose(
        self,
        phase: DownloadPhase,
        choices: tuple[CancelChoice, ...],
        batch: BatchState | None,
    ) -> CancelChoice:
        if not self._interactive:
            return choices[0]
        header = f"Interrupted while {phase.value}"
        if batch is not None and batch.total > 1:
            header += f" (entry {batch.index}/{batch.total})"
        print(header, file=sys.stderr)
        for number, choice in enumerate(choices, start=1):
            print(f"  {number}. {_CHOICE_LABELS[choice]}", file=sys.stderr)
        try:
            answer = self._input("Choice: ").strip()
        except EOFError:
            return choices[0]
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1]
        return CancelChoice.RESUME if CancelChoice.RESUME in choices else choices[0]


class PrintViewer:
    """Viewer stand-in that prints the document path."""

    def open(self, path: Path, context: NavigationContext) -> None:
        print(path)


@dataclass(slots=True)
class CliContext:
    services: AppServices
    input_fn: Callable[[str], str]
    interactive: bool

    @property
    def config(self) -> UserConfig:
        return self.services.config

    def downloader(self) -> EntryDownloader:
        services = self.services
        return EntryDownloader(
            store=services.store,
            pipeline=services.pipeline,
            fetcher=services.fetcher,
            config=services.config,
            prompter=ConsolePrompter(self.input_fn, self.interactive),
            token=services.token,
        )

    def entry_service(self) -> EntryService:
        services = self.services
        return EntryService(
            services.gateway,
            services.queue,
            services.store,
            services.config,
            queue_dir=services.queue_dir,
        )


@contextmanager
def _interrupts_request_cancel(ctx: CliContext) -> Iterator[None]:
    """Turn Ctrl-C into a cancellation request observed at the next checkpoint."""
    previous = signal.getsignal(signal.SIGINT)

    def _handler(_signum: int, _frame: Any) -> None:
        ctx.services.token.request()

    try:
        signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # Not on the main thread
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _error(action: str, why: str | None, next_step: str) -> int:
    print(build_actionable_error(action, why=why, next_step=next_step), file=sys.stderr)
    return 1


# ============================================================================
# Commands
# ============================================================================


def _cmd_check(args: argparse.Namespace, ctx: CliContext) -> int:
    user, error = ctx.services.gateway.get_me()
    if error is not None or user is None:
        return _error(
            "reach the server",
            error.message if error else None,
            "check server_address and api_token with 'config show'",
        )
    print(build_actionable_success(f"Connected as {user.get('username', 'unknown user')}"))
    return 0


def _format_counts(counts: QueueCounts) -> str:
    return (
        f"{counts.status} status, {counts.bookmark} bookmark, "
        f"{counts.feed} feed, {counts.category} category"
    )


def _cmd_queue(args: argparse.Namespace, ctx: CliContext) -> int:
    counts = ctx.services.queue.get_total_queue_count()
    print(f"{counts.total} pending changes ({_format_counts(counts)})")
    return 0


def _cmd_sync(args: argparse.Namespace, ctx: CliContext) -> int:
    def _confirm(counts: QueueCounts) -> SyncDecision:
        if args.discard:
            return SyncDecision.DISCARD
        if not ctx.interactive:
            return SyncDecision.SYNC_NOW
        prompt = (
            f"{build_sync_confirmation_prompt(counts.total)} "
            "[s]ync now / [l]ater / [d]elete queue: "
        )
        try:
            answer = ctx.input_fn(prompt).strip().lower()
        except EOFError:
            return SyncDecision.LATER
        if answer.startswith("d"):
            return SyncDecision.DISCARD
        if answer.startswith("s"):
            return SyncDecision.SYNC_NOW
        return SyncDecision.LATER

    services = ctx.services
    reconciler = SyncReconciler(services.gateway, services.queue, services.store)
    report = reconciler.sync(confirm=_confirm, auto_confirm=args.yes and not args.discard)
    print(report.message)
    return 0


def _fetch_entries(ctx: CliContext, entry_ids: list[int]) -> tuple[list[Entry], list[str]]:
    entries: list[Entry] = []
    errors: list[str] = []
    for entry_id in entry_ids:
        record = ctx.services.store.get_record(entry_id)
        if ctx.services.store.is_downloaded(entry_id) and record is not None:
            entries.append(Entry(id=entry_id, title=record.title, url=record.url))
            continue
        entry, error = ctx.services.gateway.get_entry(entry_id)
        if entry is None:
            errors.append(f"{entry_id}: {error.message if error else 'not found'}")
            continue
        entries.append(entry)
    return entries, errors


def _cmd_download(args: argparse.Namespace, ctx: CliContext) -> int:
    entries, errors = _fetch_entries(ctx, args.entry_ids)
    for message in errors:
        print(f"Could not fetch entry {message}", file=sys.stderr)
    if not entries:
        return 1
    include_images = False if args.no_images else None
    batch = BatchDownloader(ctx.downloader())
    with _interrupts_request_cancel(ctx):
        result = batch.run(entries, include_images=include_images)
    for outcome in result.results:
        status = outcome.error or outcome.message.replace("\n\n", " - ")
        print(f"{outcome.entry_id}: {outcome.outcome.value} {status}".rstrip())
    print(result.message)
    return 0 if result.failed == 0 and not errors else 1


def _cmd_prefetch(args: argparse.Namespace, ctx: CliContext) -> int:
    batch = BatchDownloader(ctx.downloader(), ctx.services.gateway)
    with _interrupts_request_cancel(ctx):
        result, error = prefetch_entries(
            ctx.services.gateway, batch, ctx.config, count=args.count, starred=args.starred
        )
    if error is not None or result is None:
        return _error("prefetch entries", error, "set prefetch_count or pass --count")
    print(result.message)
    return 0 if result.failed == 0 else 1


def _scope_from_args(args: argparse.Namespace) -> NavigationContext:
    if args.feed:
        return NavigationContext(kind=ScopeKind.FEED, id=args.feed)
    if args.category:
        return NavigationContext(kind=ScopeKind.CATEGORY, id=args.category)
    if args.starred:
        return NavigationContext(kind=ScopeKind.STARRED)
    if args.local:
        return NavigationContext(kind=ScopeKind.LOCAL)
    if args.unread:
        return NavigationContext(kind=ScopeKind.UNREAD)
    return NavigationContext()


def _cmd_navigate(args: argparse.Namespace, ctx: CliContext) -> int:
    services = ctx.services
    cursor = NavigationCursor(services.gateway, services.store, services.config)
    direction = Direction(args.command)
    with _interrupts_request_cancel(ctx):
        result, download = cursor.navigate(
            args.entry_id, direction, _scope_from_args(args), ctx.downloader(), PrintViewer()
        )
    if not result.found:
        print(result.message)
        return 1
    if download is not None and not download.succeeded:
        return _error("open the entry", download.error or download.message, "try again later")
    return 0


def _cmd_open(args: argparse.Namespace, ctx: CliContext) -> int:
    store = ctx.services.store
    if not store.is_downloaded(args.entry_id):
        return _error(
            f"open entry {args.entry_id}",
            "it has not been downloaded",
            f"run 'download {args.entry_id}' first",
        )
    print(store.html_path(args.entry_id))
    service = ctx.entry_service()
    if service.mark_read_on_open(args.entry_id):
        # workers are daemon threads; join them before the process exits
        timeout = float(ctx.config.request_timeout_seconds) + 5.0
        if service.wait_for_workers(timeout):
            logger.warning("Entry %d stays queued; background update still running", args.entry_id)
    return 0


def _cmd_close(args: argparse.Namespace, ctx: CliContext) -> int:
    if ctx.entry_service().on_entry_closed(args.entry_id):
        print(f"Deleted local copy of entry {args.entry_id}")
    return 0


def _cmd_status(args: argparse.Namespace, ctx: CliContext) -> int:
    new_status = STATUS_READ if args.command == "mark-read" else STATUS_UNREAD
    result = ctx.entry_service().change_entries_status(args.entry_ids, new_status)
    if not result.ok:
        return _error(f"mark entries as {new_status}", result.error, "check the entry ids")
    print(result.message)
    return 0


def _cmd_star(args: argparse.Namespace, ctx: CliContext) -> int:
    result = ctx.entry_service().toggle_bookmark(args.entry_id)
    if not result.ok:
        return _error("toggle the bookmark", result.error, "try again when online")
    print(result.message)
    return 0


def _cmd_mark_collection(args: argparse.Namespace, ctx: CliContext) -> int:
    kind = COLLECTION_FEED if args.command == "mark-feed-read" else COLLECTION_CATEGORY
    result = ctx.entry_service().mark_collection_read(kind, args.collection_id)
    if not result.ok:
        return _error(f"mark the {kind} as read", result.error, f"check the {kind} id")
    print(result.message)
    return 0


def _cmd_list(args: argparse.Namespace, ctx: CliContext) -> int:
    store = ctx.services.store
    records = store.search_local_entries(args.text) if args.command == "search" else None
    if records is None:
        records = store.list_local_entries(args.sort)
    for record in records:
        marker = "*" if record.starred else " "
        print(f"{record.id:>8} {marker} {record.status:<6} {record.title}")
    return 0


def _cmd_stats(args: argparse.Namespace, ctx: CliContext) -> int:
    stats = ctx.services.store.storage_stats()
    print(f"Entries: {stats.entry_count}")
    print(f"Images:  {stats.image_count} ({format_size(stats.image_bytes)})")
    print(f"Total:   {format_size(stats.total_bytes)}")
    print(f"Location: {ctx.services.store.root}")
    return 0


def _cmd_purge(args: argparse.Namespace, ctx: CliContext) -> int:
    deleted, failed, error = purge_entries_older_than(ctx.services.store, args.older_than)
    if error is not None:
        return _error("purge entries", error, "pick one of the listed ages")
    print(f"Deleted {deleted} entries" + (f", {failed} failed" if failed else ""))
    return 0 if failed == 0 else 1


def _cmd_recover(args: argparse.Namespace, ctx: CliContext) -> int:
    result = recover_images(ctx.services.store, ctx.services.fetcher, args.entry_id)
    if result.error is not None:
        return _error("recover images", result.error, f"run 'download {args.entry_id}' first")
    if result.attempted == 0:
        print("No missing images")
        return 0
    print(f"{result.recovered} of {result.attempted} images recovered")
    return 0 if result.failed == 0 else 1


def _cmd_delete(args: argparse.Namespace, ctx: CliContext) -> int:
    store = ctx.services.store
    if args.images_only:
        print(f"Deleted {store.delete_images(args.entry_id)} images")
        return 0
    if not store.delete_entry(args.entry_id):
        return _error(f"delete entry {args.entry_id}", None, "check file permissions")
    print(f"Deleted entry {args.entry_id}")
    return 0


def _cmd_clear_downloads(args: argparse.Namespace, ctx: CliContext) -> int:
    if not args.yes:
        return _error("clear downloads", "this deletes every local entry", "re-run with --yes")
    print(f"Deleted {ctx.services.store.clear_all()} entries")
    return 0


def _cmd_config(args: argparse.Namespace, ctx: CliContext, path: Path | None) -> int:
    config = ctx.config
    if args.config_action == "set":
        error = apply_config_value(config, args.key, args.value)
        if error is not None:
            return _error("update the setting", error, "run 'config show' for valid keys")
        if not save_config(config, path):
            return _error("save the config", None, "check write access to the config directory")
    shown = {
        "server_address": config.server_address,
        "api_token": "***" if config.api_token else "",
        "limit": config.limit,
        "order": config.order,
        "direction": config.direction,
        "hide_read_entries": config.hide_read_entries,
        "include_images": config.include_images,
        "mark_as_read_on_open": config.mark_as_read_on_open,
        "auto_delete_read_on_close": config.auto_delete_read_on_close,
        "prefetch_count": config.prefetch_count,
        "download_dir": str(ctx.services.store.root),
        "proxy_image_downloader_enabled": config.proxy_image_downloader_enabled,
        "proxy_image_downloader_url": config.proxy_image_downloader_url,
        "request_timeout_seconds": config.request_timeout_seconds,
    }
    for key, value in shown.items():
        print(f"{key} = {value}")
    return 0


# ============================================================================
# Entry point
# ============================================================================


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="miniflux-offline",
        description="Download Miniflux entries for offline reading and sync read state",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging to file (~/.config/miniflux-offline/debug.log)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Use another config file")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="Test the server connection")
    sub.add_parser("queue", help="Show pending offline changes")
    sync = sub.add_parser("sync", help="Send pending offline changes to the server")
    sync.add_argument("--yes", action="store_true", help="Sync without asking")
    sync.add_argument("--discard", action="store_true", help="Delete the pending queue")

    download = sub.add_parser("download", help="Download entries for offline reading")
    download.add_argument("entry_ids", nargs="+", type=int)
    download.add_argument("--no-images", action="store_true", help="Skip image downloads")

    prefetch = sub.add_parser("prefetch", help="Download the newest unread entries")
    prefetch.add_argument("--count", type=int, default=None)
    prefetch.add_argument("--starred", action="store_true", help="Prefetch starred entries")

    for name in (Direction.NEXT.value, Direction.PREVIOUS.value):
        nav = sub.add_parser(name, help=f"Open the {name} entry")
        nav.add_argument("entry_id", type=int)
        scope = nav.add_mutually_exclusive_group()
        scope.add_argument("--feed", type=int, default=None)
        scope.add_argument("--category", type=int, default=None)
        scope.add_argument("--unread", action="store_true")
        scope.add_argument("--starred", action="store_true")
        scope.add_argument("--local", action="store_true", help="Only downloaded entries")

    open_cmd = sub.add_parser("open", help="Print a downloaded entry's path and mark it read")
    open_cmd.add_argument("entry_id", type=int)
    close_cmd = sub.add_parser("close", help="Apply the auto-delete-on-close policy")
    close_cmd.add_argument("entry_id", type=int)

    for name in ("mark-read", "mark-unread"):
        status = sub.add_parser(name, help=f"{name.replace('-', ' ').capitalize()} entries")
        status.add_argument("entry_ids", nargs="+", type=int)
    star = sub.add_parser("star", help="Toggle an entry's bookmark")
    star.add_argument("entry_id", type=int)
    for name in ("mark-feed-read", "mark-category-read"):
        collection = sub.add_parser(name, help="Mark every entry in a feed or category read")
        collection.add_argument("collection_id", type=int)

    list_cmd = sub.add_parser("list", help="List downloaded entries")
    list_cmd.add_argument("--sort", choices=LOCAL_SORT_KEYS, default="published")
    search = sub.add_parser("search", help="Fuzzy search downloaded entries")
    search.add_argument("text")
    sub.add_parser("stats", help="Show local storage usage")
    purge = sub.add_parser("purge", help="Delete old downloaded entries")
    purge.add_argument("--older-than", type=int, required=True, choices=PURGE_AGE_OPTIONS)
    recover = sub.add_parser("recover-images", help="Re-download missing images")
    recover.add_argument("entry_id", type=int)
    delete = sub.add_parser("delete", help="Delete a downloaded entry")
    delete.add_argument("entry_id", type=int)
    delete.add_argument("--images-only", action="store_true", help="Keep the document")
    clear = sub.add_parser("clear-downloads", help="Delete every downloaded entry")
    clear.add_argument("--yes", action="store_true")

    config_cmd = sub.add_parser("config", help="Show or change settings")
    config_sub = config_cmd.add_subparsers(dest="config_action", required=True)
    config_sub.add_parser("show")
    config_set = config_sub.add_parser("set")
    config_set.add_argument("key")
    config_set.add_argument("value")
    return parser


_HANDLERS: dict[str, Callable[[argparse.Namespace, CliContext], int]] = {
    "check": _cmd_check,
    "queue": _cmd_queue,
    "sync": _cmd_sync,
    "download": _cmd_download,
    "prefetch": _cmd_prefetch,
    "next": _cmd_navigate,
    "previous": _cmd_navigate,
    "open": _cmd_open,
    "close": _cmd_close,
    "mark-read": _cmd_status,
    "mark-unread": _cmd_status,
    "star": _cmd_star,
    "mark-feed-read": _cmd_mark_collection,
    "mark-category-read": _cmd_mark_collection,
    "list": _cmd_list,
    "search": _cmd_list,
    "stats": _cmd_stats,
    "purge": _cmd_purge,
    "recover-images": _cmd_recover,
    "delete": _cmd_delete,
    "clear-downloads": _cmd_clear_downloads,
}

# Commands that need a server address and token
_ONLINE_COMMANDS = frozenset({"check", "prefetch"})


def main(
    argv: list[str] | None = None,
    *,
    load_config_fn: Callable[[Path | None], UserConfig] = load_config,
    build_services_fn: Callable[[UserConfig], AppServices] = build_default_app_services,
    configure_logging_fn: Callable[[bool], None] = _configure_logging,
    input_fn: Callable[[str], str] = input,
    interactive: bool | None = None,
) -> int:
    """Main entry point. Returns exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging_fn(args.debug)
    logger.debug("miniflux-offline %s, config=%s", args.command, args.config or get_config_path())

    config = load_config_fn(args.config)
    if args.command in _ONLINE_COMMANDS and not config.is_configured:
        return _error(
            args.command,
            "the server address or API token is not set",
            "run 'config set server_address URL' and 'config set api_token TOKEN'",
        )

    services = build_services_fn(config)
    ctx = CliContext(
        services=services,
        input_fn=input_fn,
        interactive=sys.stdin.isatty() if interactive is None else interactive,
    )
    try:
        if args.command == "config":
            return _cmd_config(args, ctx, args.config)
        return _HANDLERS[args.command](args, ctx)
    finally:
        services.close()


__all__ = [
    "ConsolePrompter",
    "PrintViewer",
    "main",
]
