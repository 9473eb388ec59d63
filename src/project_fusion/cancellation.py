"""Cooperative cancellation and synchronous progress reporting."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import Any, Protocol

from project_fusion.exceptions import FusionCancelledError


class CancellationToken:
    """A single cooperative cancellation signal shared by one fusion run.

    The pipeline polls it at well-defined checkpoints; nothing is interrupted
    pre-emptively.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = ""

    def cancel(self, reason: str = "") -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self, where: str = "") -> None:
        """Raise ``FusionCancelledError`` when the token has been signaled.

        Args:
            where (str): Checkpoint name, included in the error message.

        Raises:
            FusionCancelledError: if ``cancel`` has been called.
        """
        if self._event.is_set():
            detail = f" at {where}" if where else ""
            suffix = f": {self._reason}" if self._reason else ""
            raise FusionCancelledError(message=f"Fusion cancelled{detail}{suffix}.")


class ProgressStage(StrEnum):
    SCAN_START = auto()
    FILE_PROCESSED = auto()
    RENDER_START = auto()
    WRITE_COMPLETE = auto()


@dataclass(frozen=True)
class ProgressEvent:
    stage: ProgressStage
    current: int = 0
    total: int = 0
    detail: dict[str, Any] = field(default_factory=dict)


class ProgressSink(Protocol):
    def __call__(self, event: ProgressEvent) -> None: ...


def null_progress(event: ProgressEvent) -> None:  # noqa: ARG001
    """Progress sink that ignores every event."""
