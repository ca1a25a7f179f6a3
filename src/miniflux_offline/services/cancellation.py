"""Cooperative cancellation for long-running downloads."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum


class DownloadPhase(StrEnum):
    IDLE = "idle"
    PREPARING = "preparing"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    COMPLETING = "completing"


class CancelChoice(StrEnum):
    """Answers a user can give at a cancellation checkpoint."""

    CANCEL_ENTRY = "cancel_entry"
    SKIP_IMAGES = "skip_images"
    SKIP_IMAGES_ALL = "skip_images_all"
    INCLUDE_IMAGES_ALL = "include_images_all"
    CANCEL_ALL = "cancel_all"
    RESUME = "resume"


# Choices offered per checkpoint; the first one is what a non-interactive
# caller gets when it requested cancellation.
IMAGE_CHOICES: tuple[CancelChoice, ...] = (
    CancelChoice.CANCEL_ENTRY,
    CancelChoice.SKIP_IMAGES,
    CancelChoice.SKIP_IMAGES_ALL,
    CancelChoice.RESUME,
)
PHASE_CHOICES: tuple[CancelChoice, ...] = (CancelChoice.CANCEL_ENTRY, CancelChoice.RESUME)
BATCH_CHOICES: tuple[CancelChoice, ...] = (
    CancelChoice.CANCEL_ALL,
    CancelChoice.SKIP_IMAGES_ALL,
    CancelChoice.INCLUDE_IMAGES_ALL,
    CancelChoice.RESUME,
)


@dataclass(slots=True)
class BatchState:
    """Decisions shared by every entry of one batch run."""

    total: int = 1
    index: int = 0
    title: str = ""
    skip_images_for_all: bool = False
    include_images_for_all: bool = False
    cancel_all: bool = False

    def apply(self, choice: CancelChoice) -> None:
        if choice is CancelChoice.SKIP_IMAGES_ALL:
            self.skip_images_for_all = True
            self.include_images_for_all = False
        elif choice is CancelChoice.INCLUDE_IMAGES_ALL:
            self.include_images_for_all = True
            self.skip_images_for_all = False
        elif choice is CancelChoice.CANCEL_ALL:
            self.cancel_all = True


class CancellationToken:
    """Set by the UI (or a signal handler), observed at workflow checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self) -> None:
        self._event.set()

    def clear(self) -> None:
        self._event.clear()


class ProgressThrottle:
    """Lets progress through at most once per ``interval`` seconds."""

    def __init__(self, interval: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.interval = interval
        self._clock = clock
        self._last: float | None = None

    def ready(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval:
            return False
        self._last = now
        return True


class SilentPrompter:
    """Prompter for unattended runs: no output, honors cancel requests."""

    def report(self, message: str) -> None:
        return None

    def choose(
        self,
        phase: DownloadPhase,
        choices: tuple[CancelChoice, ...],
        batch: BatchState | None,
    ) -> CancelChoice:
        return choices[0]


__all__ = [
    "BATCH_CHOICES",
    "IMAGE_CHOICES",
    "PHASE_CHOICES",
    "BatchState",
    "CancelChoice",
    "CancellationToken",
    "DownloadPhase",
    "ProgressThrottle",
    "SilentPrompter",
]
