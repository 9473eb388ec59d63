"""The fusion pipeline: collect, admit, sanitize, hook, render and persist."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from project_fusion.cancellation import ProgressEvent, ProgressStage, null_progress
from project_fusion.collector import FileCollector
from project_fusion.config import merge_extension_groups
from project_fusion.diagnostics import DiagnosticLog
from project_fusion.exceptions import (
    ConfigurationInvalidError,
    ContentRejectedError,
    ErrorKind,
    FusionCancelledError,
    NoFilesMatchedError,
    OutputExistsError,
    OutputTooLargeError,
    ProjectFusionError,
)
from project_fusion.file_manipulation import LocalFileSystem, decode_text, is_binary, relpath
from project_fusion.logging import logger
from project_fusion.models import FileCandidate, FileRecord, FusionCancelled, FusionFailure, FusionSuccess
from project_fusion.output_construction import OutputContext, strategies_for
from project_fusion.plugins import PluginManager
from project_fusion.sanitizer import REMEDIATION_HINT, sanitize_content
from project_fusion.security import SymlinkAuditor

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence
    from pathlib import Path

    from project_fusion.cancellation import CancellationToken, ProgressSink
    from project_fusion.collector import CollectionResult
    from project_fusion.config import FusionConfig
    from project_fusion.file_manipulation import FileSystem
    from project_fusion.models import FusionResult
    from project_fusion.output_construction import OutputStrategy

READ_BATCH_SIZE = 64
READ_WORKERS = 8


@dataclass(frozen=True)
class _ReadOutcome:
    data: bytes | None = None
    error: str | None = None


@dataclass
class _RunState:
    config: FusionConfig
    fs: FileSystem
    plugins: PluginManager
    diagnostics: DiagnosticLog
    auditor: SymlinkAuditor
    progress: ProgressSink
    cancellation: CancellationToken | None
    scan_started: bool = False


def _read_bytes(fs: FileSystem, path: Path) -> _ReadOutcome:
    try:
        return _ReadOutcome(data=fs.read_bytes(path))
    except OSError as e:
        return _ReadOutcome(error=str(e))


def _read_in_order(
    fs: FileSystem,
    entries: Sequence[FileCandidate | FileRecord],
    cancellation: CancellationToken | None,
) -> Iterator[tuple[FileCandidate | FileRecord, _ReadOutcome | None]]:
    """Read candidate files on worker threads, yielding results in discovery order.

    Reads are dispatched in batches so a cancellation stops new reads from
    being scheduled. Placeholders are passed through without a read.
    """
    with ThreadPoolExecutor(max_workers=READ_WORKERS, thread_name_prefix="fusion-read") as pool:
        for start in range(0, len(entries), READ_BATCH_SIZE):
            if cancellation is not None:
                cancellation.raise_if_cancelled("file reading")
            batch = entries[start : start + READ_BATCH_SIZE]
            paths = [e.path for e in batch if isinstance(e, FileCandidate)]
            outcomes = iter(pool.map(lambda p: _read_bytes(fs, p), paths))
            for entry in batch:
                yield entry, (next(outcomes) if isinstance(entry, FileCandidate) else None)


def _process_candidate(state: _RunState, candidate: FileCandidate, outcome: _ReadOutcome) -> FileRecord | None:
    """Admit, hook and sanitize one file. Returns None when the file is dropped."""
    config, diagnostics, rel = state.config, state.diagnostics, candidate.relative_path

    if outcome.data is None:
        diagnostics.record("read_failed", kind=ErrorKind.READ_FAILED, path=rel, reason=outcome.error or "", level="warning")
        return FileRecord.placeholder(candidate, "Read failed", outcome.error or "")
    if is_binary(outcome.data):
        diagnostics.record("binary_skipped", kind=ErrorKind.BINARY_FILE_SKIPPED, path=rel, reason="binary content")
        return None

    hooked = state.plugins.before_file_processing(candidate.with_content(decode_text(outcome.data)), config)
    if hooked is None:
        return None
    content = hooked.content if hooked.content is not None else decode_text(outcome.data)
    rel = hooked.relative_path

    try:
        sanitized = sanitize_content(content, rel, config)
    except ContentRejectedError as e:
        diagnostics.record(
            "content_rejected",
            kind=ErrorKind.CONTENT_REJECTED,
            path=rel,
            reason="; ".join(e.issues),
            level="warning",
        )
        details = "\n".join([*(f"- {issue}" for issue in e.issues), REMEDIATION_HINT])
        return FileRecord.placeholder(hooked, "Content validation failed", details)
    except Exception as e:  # noqa: BLE001
        diagnostics.record("sanitizer_failed", kind=ErrorKind.UNEXPECTED, path=rel, reason=str(e), level="error")
        return FileRecord.placeholder(hooked, "Sanitization failed", str(e))

    if sanitized.detected_secrets:
        diagnostics.record(
            "secrets_redacted",
            kind=ErrorKind.SECRET_REDACTED,
            path=rel,
            reason=", ".join(sanitized.detected_secrets),
            patterns=sanitized.detected_secrets,
        )
    if sanitized.blocked_protocols:
        diagnostics.record("protocols_blocked", path=rel, reason=f"{sanitized.blocked_protocols} dangerous URI scheme(s) neutralized")
    for warning in sanitized.warnings:
        diagnostics.record("content_warning", path=rel, reason=warning, level="warning")
    if sanitized.truncated:
        diagnostics.record("content_truncated", path=rel, reason="oversized lines, tokens or base64 blocks clipped")

    final = state.plugins.after_file_processing(hooked, sanitized.content, config)
    return FileRecord(
        path=hooked.path,
        relative_path=rel,
        content=final,
        size=hooked.size,
        truncated=sanitized.truncated,
    )


def _build_records(state: _RunState, collected: CollectionResult) -> list[FileRecord]:
    records: list[FileRecord] = []
    total = len(collected.entries)
    for index, (entry, outcome) in enumerate(_read_in_order(state.fs, collected.entries, state.cancellation), start=1):
        if state.cancellation is not None:
            state.cancellation.raise_if_cancelled("file processing")
        if isinstance(entry, FileRecord):
            record: FileRecord | None = entry
        else:
            record = _process_candidate(state, entry, outcome or _ReadOutcome(error="not read"))
        if record is not None:
            records.append(record)
        state.progress(ProgressEvent(ProgressStage.FILE_PROCESSED, current=index, total=total, detail={"path": entry.relative_path}))
    return records


def _no_files_hints(config: FusionConfig, collected: CollectionResult, extensions: Sequence[str], auditor: SymlinkAuditor) -> tuple[str, ...]:
    hints: list[str] = []
    if collected.files_seen == 0:
        hints.append(f"The root directory contains no readable files: {config.resolved_root}")
    elif collected.extension_matches == 0:
        hints.append(f"No file matches the selected extensions ({', '.join(extensions)}); check parsed_file_extensions.")
    if collected.ignored:
        hints.append(f"{collected.ignored} matching file(s) were excluded by ignore patterns or .gitignore.")
    if not config.parse_sub_directories:
        hints.append("Sub-directories are not scanned; enable parse_sub_directories to include them.")
    if auditor.total_symlinks and not config.allow_symlinks:
        hints.append("Symbolic links were skipped; enable allow_symlinks to follow links inside the root.")
    if not hints:
        hints.append("Every matching file was vetoed by a plugin or skipped as binary; see the diagnostic log.")
    return tuple(hints)


def _select_strategies(config: FusionConfig, extra: Iterable[OutputStrategy], diagnostics: DiagnosticLog) -> list[OutputStrategy]:
    strategies = strategies_for(config)
    taken = {s.extension for s in strategies} | {"log"}
    for strategy in extra:
        if strategy.extension in taken:
            diagnostics.record(
                "strategy_skipped",
                reason=f"output strategy {strategy.name!r} uses the reserved extension {strategy.extension!r}",
                level="warning",
            )
            continue
        taken.add(strategy.extension)
        strategies.append(strategy)
    return strategies


def _artifact_ignore_patterns(config: FusionConfig, names: Iterable[str]) -> list[str]:
    root, out_dir = config.resolved_root, config.resolved_output_directory
    rel_dir = relpath(out_dir, root)
    if rel_dir == str(out_dir):
        return []
    prefix = "" if rel_dir == "." else f"{rel_dir}/"
    return [f"/{prefix}{name}" for name in names]


def _check_existing_artifacts(config: FusionConfig, fs: FileSystem, strategies: Sequence[OutputStrategy]) -> None:
    """Refuse to replace format artifacts from an earlier run unless ``overwrite`` is set.

    The ``.log`` is not checked; it is rewritten by every run.
    """
    if config.overwrite:
        return
    out_dir = config.resolved_output_directory
    existing = [out_dir / f"{config.generated_file_name}.{s.extension}" for s in strategies]
    existing = [p for p in existing if fs.exists(p)]
    if existing:
        raise OutputExistsError(paths=tuple(existing))


def _check_output_sizes(config: FusionConfig, rendered: Sequence[tuple[OutputStrategy, str]]) -> None:
    limit = config.max_output_size_bytes
    for strategy, text in rendered:
        size = len(text.encode("utf-8"))
        if size > limit:
            raise OutputTooLargeError(
                artifact=f"{config.generated_file_name}.{strategy.extension}",
                size=size,
                message=(
                    f"Output size would exceed maximum limit of {config.max_output_size_mb:g}MB "
                    f"({config.generated_file_name}.{strategy.extension} is {size / (1024 * 1024):.1f}MB)"
                ),
            )


def _write_log(state: _RunState, *, outcome: str, summary: dict[str, object] | None = None) -> Path | None:
    config = state.config
    log_path = config.resolved_output_directory / f"{config.generated_file_name}.log"
    text = state.diagnostics.render(config, outcome=outcome, summary=summary, auditor=state.auditor)
    try:
        state.fs.write_text(log_path, text)
    except OSError as e:
        logger.error("log_write_failed", path=str(log_path), error=str(e))
        return None
    return log_path


def _run(state: _RunState, extension_groups: Sequence[str] | None) -> FusionResult:
    root = state.config.resolved_root
    if not state.fs.exists(root) or not state.fs.stat(root).is_dir:
        raise ConfigurationInvalidError(errors=(f"root_directory: {root} is not a directory",))

    extra_strategies = state.plugins.additional_output_strategies()
    state.config = merge_extension_groups(state.config, state.plugins.additional_file_extensions())
    config = state.config
    extensions = config.extensions_for_groups(extension_groups)
    strategies = _select_strategies(config, extra_strategies, state.diagnostics)
    artifact_names = config.generated_artifact_names([s.extension for s in strategies] + ["log"])
    _check_existing_artifacts(config, state.fs, strategies)

    state.scan_started = True
    state.progress(ProgressEvent(ProgressStage.SCAN_START, detail={"root": str(root)}))
    collector = FileCollector(
        config,
        fs=state.fs,
        auditor=state.auditor,
        diagnostics=state.diagnostics,
        extensions=extensions,
        cancellation=state.cancellation,
        extra_ignore_patterns=_artifact_ignore_patterns(config, artifact_names),
    )
    collected = collector.collect()
    if not collected.entries:
        raise NoFilesMatchedError(hints=_no_files_hints(config, collected, extensions, state.auditor))

    records = _build_records(state, collected)
    if not records:
        raise NoFilesMatchedError(hints=_no_files_hints(config, collected, extensions, state.auditor))
    records = state.plugins.before_fusion(records, config)
    if state.cancellation is not None:
        state.cancellation.raise_if_cancelled("render")

    context = OutputContext(project_title=root.name or str(root), root=root, files_to_process=records, config=config)
    state.progress(ProgressEvent(ProgressStage.RENDER_START, total=len(strategies)))
    rendered = [(s, s.render(context)) for s in strategies]
    _check_output_sizes(config, rendered)

    out_dir = config.resolved_output_directory
    state.fs.ensure_dir(out_dir)
    artifact_paths: list[Path] = []
    for strategy, text in rendered:
        path = out_dir / f"{config.generated_file_name}.{strategy.extension}"
        state.fs.write_text(path, text)
        artifact_paths.append(path)
        logger.info("artifact_written", format=strategy.name, path=str(path), chars=len(text))

    placeholders = sum(1 for r in records if r.is_error_placeholder)
    summary: dict[str, object] = {
        "files_seen": collected.files_seen,
        "files_processed": len(records),
        "error_placeholders": placeholders,
        "ignored": collected.ignored,
        "budget_skipped": collected.budget_skipped,
        "admitted_bytes": collected.admitted_bytes,
        "artifacts": ", ".join(p.name for p in artifact_paths),
    }
    log_path = _write_log(state, outcome="success", summary=summary)
    state.progress(ProgressEvent(ProgressStage.WRITE_COMPLETE, current=len(artifact_paths), total=len(artifact_paths)))

    message = f"Generated {len(artifact_paths)} artifact(s) from {len(records)} file(s)."
    if collected.budget_exceeded:
        message += f" Budget reached: {collected.budget_skipped} file(s) skipped."
    result = FusionSuccess(
        message=message,
        artifact_paths=artifact_paths,
        log_path=log_path,
        files_processed=len(records),
        placeholders=placeholders,
        budget_exceeded=collected.budget_exceeded,
    )
    return state.plugins.after_fusion(result, config)


def process_fusion(
    config: FusionConfig,
    *,
    plugins: PluginManager | None = None,
    fs: FileSystem | None = None,
    cancellation: CancellationToken | None = None,
    progress: ProgressSink | None = None,
    extension_groups: Sequence[str] | None = None,
) -> FusionResult:
    """Run one fusion over ``config.root_directory``.

    Per-file problems never abort the run: they drop the file or turn it into
    an error placeholder, and are recorded in the ``.log`` artifact. Run-level
    problems produce a failure or cancelled result and no format artifacts.

    Args:
        config (FusionConfig): the validated, immutable run configuration
        plugins (PluginManager | None): registered plugins, if any
        fs (FileSystem | None): filesystem to work through; the local disk by default
        cancellation (CancellationToken | None): cooperative cancellation signal
        progress (ProgressSink | None): receives progress events synchronously
        extension_groups (Sequence[str] | None): restrict the scan to these groups; all groups when None

    Returns:
        FusionResult: ``FusionSuccess``, ``FusionFailure`` or ``FusionCancelled``
    """
    if cancellation is not None and cancellation.is_cancelled:
        logger.info("fusion_cancelled", stage="before_start", reason=cancellation.reason)
        return FusionCancelled(message="Fusion cancelled before it started.")

    fs = fs or LocalFileSystem()
    state = _RunState(
        config=config,
        fs=fs,
        plugins=plugins or PluginManager(),
        diagnostics=DiagnosticLog(),
        auditor=SymlinkAuditor(config.allow_symlinks, config.max_symlink_audit_entries, fs=fs),
        progress=progress or null_progress,
        cancellation=cancellation,
    )
    logger.info("fusion_started", root=str(config.resolved_root))
    try:
        with state.plugins.session(config, diagnostics=state.diagnostics, cancellation=cancellation):
            return _run(state, extension_groups)
    except FusionCancelledError as e:
        state.diagnostics.record("fusion_cancelled", kind=ErrorKind.CANCELLED, reason=e.message, level="warning")
        log_path = _write_log(state, outcome="cancelled") if state.scan_started else None
        return FusionCancelled(message=e.message, log_path=log_path)
    except ProjectFusionError as e:
        state.diagnostics.record("fusion_failed", kind=e.kind, reason=str(e), level="error")
        log_path = _write_log(state, outcome="failure") if state.scan_started else None
        return FusionFailure(kind=e.kind, message=str(e), log_path=log_path)
    except Exception as e:
        logger.exception("fusion_unexpected_error")
        log_path = _write_log(state, outcome="failure") if state.scan_started else None
        return FusionFailure(kind=ErrorKind.UNEXPECTED, message=f"Unexpected error: {e}", log_path=log_path)
