"""Per-run diagnostic log: structured events mirrored to structlog and rendered to the ``.log`` artifact."""

from __future__ import annotations

import io
import json
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from project_fusion.file_manipulation import now_iso
from project_fusion.logging import logger

if TYPE_CHECKING:
    from project_fusion.config import FusionConfig
    from project_fusion.exceptions import ErrorKind
    from project_fusion.security import SymlinkAuditor

_LEVELS = ("debug", "info", "warning", "error")


@dataclass(frozen=True)
class DiagnosticEvent:
    """One thing worth telling the user about a run.

    Attributes:
        event: Short machine-friendly name, e.g. ``file_skipped``.
        kind: Error taxonomy entry, when the event relates to one.
        path: Path relative to the root, when the event concerns a file.
        reason: Human-readable explanation.
        level: Log level used when mirroring the event.
        details: Extra structured fields.
    """

    event: str
    kind: ErrorKind | None = None
    path: str | None = None
    reason: str = ""
    level: str = "info"
    details: dict[str, Any] = field(default_factory=dict)

    def format_line(self) -> str:
        parts = [f"[{self.level.upper()}]", self.event]
        if self.kind is not None:
            parts.append(f"({self.kind})")
        if self.path:
            parts.append(self.path)
        line = " ".join(parts)
        if self.reason:
            line += f": {self.reason}"
        if self.details:
            line += " " + json.dumps(self.details, sort_keys=True, default=str)
        return line


class DiagnosticLog:
    """Collects the events of a single fusion run."""

    def __init__(self) -> None:
        self.events: list[DiagnosticEvent] = []
        self.started_at = now_iso()

    def record(
        self,
        event: str,
        *,
        kind: ErrorKind | None = None,
        path: str | None = None,
        reason: str = "",
        level: str = "info",
        **details: Any,  # noqa: ANN401
    ) -> DiagnosticEvent:
        """Append an event and mirror it to the structured logger.

        Args:
            event (str): event name
            kind (ErrorKind | None): related error kind, if any
            path (str | None): related relative path, if any
            reason (str): human-readable explanation
            level (str): one of ``debug``, ``info``, ``warning``, ``error``
            **details: extra structured fields

        Returns:
            DiagnosticEvent: the recorded event
        """
        if level not in _LEVELS:
            level = "info"
        entry = DiagnosticEvent(event=event, kind=kind, path=path, reason=reason, level=level, details=dict(details))
        self.events.append(entry)
        fields: dict[str, Any] = {k: v for k, v in (("kind", kind), ("path", path), ("reason", reason)) if v}
        getattr(logger, level)(event, **fields, **details)
        return entry

    def count(self, kind: ErrorKind) -> int:
        return sum(1 for e in self.events if e.kind == kind)

    def kinds(self) -> Counter[str]:
        return Counter(str(e.kind) for e in self.events if e.kind is not None)

    def for_path(self, path: str) -> list[DiagnosticEvent]:
        return [e for e in self.events if e.path == path]

    def render(
        self,
        config: FusionConfig,
        *,
        outcome: str,
        summary: dict[str, Any] | None = None,
        auditor: SymlinkAuditor | None = None,
    ) -> str:
        """Render the ``.log`` artifact.

        Args:
            config (FusionConfig): the run configuration, dumped for reference
            outcome (str): ``success``, ``failure`` or ``cancelled``
            summary (dict[str, Any] | None): counters shown in the summary section
            auditor (SymlinkAuditor | None): symlink audit to append

        Returns:
            str: the log text
        """
        rule = "=" * 64
        out = io.StringIO()
        out.write(f"{rule}\nProject Fusion - Diagnostic Log\n{rule}\n")
        out.write(f"Session start: {self.started_at}\n")
        out.write(f"Session end: {now_iso()}\n")
        out.write(f"Outcome: {outcome}\n")
        out.write(f"Root directory: {config.resolved_root}\n")
        out.write(f"Output directory: {config.resolved_output_directory}\n\n")

        out.write("Configuration\n-------------\n")
        out.write(json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True))
        out.write("\n\n")

        out.write(f"Events ({len(self.events)})\n------\n")
        for entry in self.events:
            out.write(entry.format_line() + "\n")
        if not self.events:
            out.write("(none)\n")
        out.write("\n")

        out.write("Summary\n-------\n")
        for key, value in (summary or {}).items():
            out.write(f"{key}: {value}\n")
        for kind, n in sorted(self.kinds().items()):
            out.write(f"events[{kind}]: {n}\n")

        if auditor is not None:
            stats = auditor.summary()
            out.write("\nSymlink audit\n-------------\n")
            out.write(
                f"total: {stats['total_symlinks']}, retained: {stats['retained_entries']}, "
                f"dropped: {stats['dropped_entries']}\n",
            )
            for audit in auditor.entries:
                target = str(audit.target) if audit.target is not None else "(not resolved)"
                verdict = "allowed" if audit.allowed else f"rejected: {audit.reason}"
                out.write(f"- {audit.symlink} -> {target} [{verdict}]\n")
        return out.getvalue()
