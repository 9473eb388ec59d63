from __future__ import annotations

import os
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from project_fusion import diagnostics as diagnostics_module
from project_fusion.cancellation import CancellationToken, ProgressEvent, ProgressStage
from project_fusion.config import build_config
from project_fusion.diagnostics import DiagnosticEvent, DiagnosticLog
from project_fusion.exceptions import ErrorKind, FusionCancelledError, SymlinkNotAllowedError
from project_fusion.security import SymlinkAuditor


@pytest.mark.unit
def test_format_line() -> None:
    event = DiagnosticEvent(
        event="file_too_large",
        kind=ErrorKind.FILE_TOO_LARGE,
        path="big.js",
        reason="too big",
        level="warning",
        details={"size": 10},
    )

    assert event.format_line() == '[WARNING] file_too_large (FileTooLarge) big.js: too big {"size": 10}'
    assert DiagnosticEvent(event="started").format_line() == "[INFO] started"


@pytest.mark.unit
def test_record_mirrors_to_structlog(mocker: MockerFixture) -> None:
    warning = mocker.patch.object(diagnostics_module.logger, "warning")
    log = DiagnosticLog()

    log.record("binary_skipped", kind=ErrorKind.BINARY_FILE_SKIPPED, path="a.png", level="warning", size=3)

    warning.assert_called_once_with("binary_skipped", kind=ErrorKind.BINARY_FILE_SKIPPED, path="a.png", size=3)


@pytest.mark.unit
def test_counters() -> None:
    log = DiagnosticLog()
    log.record("a", kind=ErrorKind.SECRET_REDACTED, path="x.py")
    log.record("b", kind=ErrorKind.SECRET_REDACTED, path="y.py")
    log.record("c", path="x.py", level="nonsense")

    assert log.count(ErrorKind.SECRET_REDACTED) == 2
    assert log.kinds() == {"SecretRedacted": 2}
    assert [e.event for e in log.for_path("x.py")] == ["a", "c"]
    assert log.events[-1].level == "info"


@pytest.mark.unit
def test_render_contains_every_section(tmp_path: Path) -> None:
    (tmp_path / "a.js").write_text("x", encoding="utf-8")
    os.symlink(tmp_path / "a.js", tmp_path / "b.js")
    auditor = SymlinkAuditor(allow_symlinks=False)
    with pytest.raises(SymlinkNotAllowedError):
        auditor.audit(tmp_path / "b.js", tmp_path)
    log = DiagnosticLog()
    log.record("symlink_rejected", kind=ErrorKind.SYMLINK_NOT_ALLOWED, path="b.js", reason="not allowed", level="warning")

    text = log.render(build_config({"root_directory": tmp_path}), outcome="success", summary={"files_processed": 1}, auditor=auditor)

    assert "Project Fusion - Diagnostic Log" in text
    assert "Outcome: success" in text
    assert '"generated_file_name": "project-fusioned"' in text
    assert "[WARNING] symlink_rejected (SymlinkNotAllowed) b.js: not allowed" in text
    assert "files_processed: 1" in text
    assert "events[SymlinkNotAllowed]: 1" in text
    assert "total: 1, retained: 1, dropped: 0" in text
    assert f"- {tmp_path / 'b.js'} -> (not resolved) [rejected: symlinks are disabled]" in text


@pytest.mark.unit
def test_render_without_events() -> None:
    text = DiagnosticLog().render(build_config(), outcome="failure")

    assert "Events (0)\n------\n(none)\n" in text
    assert "Symlink audit" not in text


@pytest.mark.unit
def test_cancellation_token() -> None:
    token = CancellationToken()
    token.raise_if_cancelled("start")

    token.cancel("user pressed ctrl-c")

    assert token.is_cancelled
    with pytest.raises(FusionCancelledError, match="Fusion cancelled at render: user pressed ctrl-c."):
        token.raise_if_cancelled("render")


@pytest.mark.unit
def test_progress_event_defaults() -> None:
    event = ProgressEvent(ProgressStage.SCAN_START)

    assert event.stage == "scan_start"
    assert (event.current, event.total, event.detail) == (0, 0, {})
