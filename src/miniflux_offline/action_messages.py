"""User-facing copy builders for sync, download and navigation notices."""

from __future__ import annotations


def _ensure_sentence(text: str) -> str:
    """Return text with terminal sentence punctuation."""
    cleaned = text.strip()
    if not cleaned:
        return ""
    if cleaned.endswith((".", "!", "?")):
        return cleaned
    return f"{cleaned}."


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def build_next_step_hint(next_step: str) -> str:
    """Build a canonical next-step guidance line."""
    return f"Next step: {_ensure_sentence(next_step)}"


def build_actionable_error(
    action: str,
    *,
    next_step: str,
    why: str | None = None,
) -> str:
    """Build a 2-3 line actionable error message."""
    lines = [f"Could not {action.strip()}."]
    if why:
        lines.append(f"Why: {_ensure_sentence(why)}")
    lines.append(build_next_step_hint(next_step))
    return "\n".join(lines)


def build_actionable_success(
    message: str,
    *,
    detail: str | None = None,
    next_step: str | None = None,
) -> str:
    """Build a concise success message with optional detail and next step."""
    lines = [_ensure_sentence(message)]
    if detail:
        lines.append(_ensure_sentence(detail))
    if next_step:
        lines.append(build_next_step_hint(next_step))
    return "\n".join(lines)


# ============================================================================
# Sync
# ============================================================================

NOTHING_TO_SYNC = "All changes are already synced"


def build_sync_confirmation_prompt(pending_count: int) -> str:
    return f"Sync {_plural(pending_count, 'pending change')}?"


def build_sync_summary(synced: int, failed: int) -> str:
    """Aggregate outcome of one reconciliation pass.

    >>> build_sync_summary(2, 1)
    '2 changes synced, 1 failed'
    """
    if synced == 0 and failed == 0:
        return NOTHING_TO_SYNC
    if synced == 0:
        return f"{_plural(failed, 'change')} failed to sync"
    summary = f"{_plural(synced, 'change')} synced"
    if failed:
        summary += f", {failed} failed"
    return summary


def build_queued_status_notice(new_status: str) -> str:
    """Informational notice shown when a status change is queued offline."""
    return f"Marked as {new_status} (will sync when online)"


def build_queued_bookmark_notice(starred: bool) -> str:
    state = "starred" if starred else "unstarred"
    return f"Entry {state} (will sync when online)"


def build_queued_collection_notice(kind: str) -> str:
    return f"{kind.capitalize()} marked as read (will sync when online)"


# ============================================================================
# Downloads
# ============================================================================


def build_download_preparing_message(title: str) -> str:
    return f"Downloading:\n{title}\n\nPreparing..."


def build_image_progress_message(title: str, current: int, total: int) -> str:
    return f"Downloading:\n{title}\n\nDownloading {current}/{total} images"


def build_processing_message(title: str) -> str:
    return f"Downloading:\n{title}\n\nProcessing content..."


def build_image_summary(downloaded: int, total: int, *, include_images: bool = True) -> str:
    """Per-entry image outcome line."""
    if total == 0:
        return "No images found in entry"
    if not include_images:
        return f"{_plural(total, 'image')} found (skipped - disabled in settings)"
    if downloaded == total:
        return "All images downloaded successfully"
    if downloaded == 0:
        return "No images could be downloaded"
    return f"{downloaded} of {total} images downloaded"


def build_batch_summary(successful: int, failed: int, total: int, *, cancelled: bool) -> str:
    if cancelled:
        return f"Batch download cancelled. Downloaded {successful}/{total} entries."
    if failed == 0:
        return f"All {total} entries downloaded successfully!"
    return f"Batch download completed: {successful} successful, {failed} failed."


# ============================================================================
# Navigation
# ============================================================================


def build_no_adjacent_entry_message(direction: str, *, offline: bool) -> str:
    where = "in local files" if offline else "on server"
    return f"No {direction} entry available {where}"


__all__ = [
    "NOTHING_TO_SYNC",
    "build_actionable_error",
    "build_actionable_success",
    "build_batch_summary",
    "build_download_preparing_message",
    "build_image_progress_message",
    "build_image_summary",
    "build_next_step_hint",
    "build_no_adjacent_entry_message",
    "build_processing_message",
    "build_queued_bookmark_notice",
    "build_queued_collection_notice",
    "build_queued_status_notice",
    "build_sync_confirmation_prompt",
    "build_sync_summary",
]
