from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import pathspec

from project_fusion.exceptions import ErrorKind, PathTraversalError, SymlinkNotAllowedError
from project_fusion.file_manipulation import list_dir_entries, normalize_globs, relpath
from project_fusion.logging import logger
from project_fusion.models import FileCandidate, FileRecord
from project_fusion.security import validate_secure_path

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from pathlib import Path

    from project_fusion.cancellation import CancellationToken
    from project_fusion.config import FusionConfig
    from project_fusion.diagnostics import DiagnosticLog
    from project_fusion.file_manipulation import FileStat, FileSystem
    from project_fusion.security import SymlinkAuditor

GITIGNORE_FILE = ".gitignore"


@dataclass
class CollectionResult:
    """What the collector admitted, in discovery order.

    Attributes:
        entries: Admitted candidates, and placeholders for files over the per-file size limit.
        files_seen: Regular files met during the walk.
        extension_matches: Files whose extension was selected, before ignore rules and budgets.
        ignored: Files dropped by ignore rules.
        budget_skipped: Files dropped because a budget was exhausted.
        admitted_bytes: Cumulative size of admitted candidates.
    """

    entries: list[FileCandidate | FileRecord] = field(default_factory=list)
    files_seen: int = 0
    extension_matches: int = 0
    ignored: int = 0
    budget_skipped: int = 0
    admitted_bytes: int = 0

    @property
    def budget_exceeded(self) -> bool:
        return self.budget_skipped > 0

    @property
    def candidates(self) -> list[FileCandidate]:
        return [e for e in self.entries if isinstance(e, FileCandidate)]

    @property
    def placeholders(self) -> list[FileRecord]:
        return [e for e in self.entries if isinstance(e, FileRecord)]


def build_ignore_spec(
    config: FusionConfig,
    fs: FileSystem,
    *,
    extra_patterns: Iterable[str] = (),
) -> pathspec.GitIgnoreSpec:
    """Combine configured ignore patterns, the root ``.gitignore`` and extra patterns.

    Args:
        config (FusionConfig): the run configuration
        fs (FileSystem): filesystem used to read ``.gitignore``
        extra_patterns (Iterable[str]): additional gitignore-style lines, e.g. the run's own artifacts

    Returns:
        pathspec.GitIgnoreSpec: the compiled spec, matched against root-relative POSIX paths
    """
    lines = normalize_globs(config.ignore_patterns)
    if config.use_gitignore_for_excludes:
        gitignore = config.resolved_root / GITIGNORE_FILE
        try:
            lines.extend(fs.read_text(gitignore).splitlines())
            logger.debug("gitignore_loaded", path=str(gitignore))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("gitignore_unreadable", path=str(gitignore), error=str(e))
    lines.extend(normalize_globs(list(extra_patterns)))
    return pathspec.GitIgnoreSpec.from_lines(lines)


class FileCollector:
    """Walks the root under the security perimeter and applies admission budgets.

    Every path is bounds-checked before it is stat'ed, symlinks go through the
    auditor, directories matched by the ignore spec are pruned, and budget
    counters are updated serially in discovery order.
    """

    def __init__(
        self,
        config: FusionConfig,
        *,
        fs: FileSystem,
        auditor: SymlinkAuditor,
        diagnostics: DiagnosticLog,
        extensions: Iterable[str],
        cancellation: CancellationToken | None = None,
        extra_ignore_patterns: Iterable[str] = (),
    ) -> None:
        self.config = config
        self.fs = fs
        self.auditor = auditor
        self.diagnostics = diagnostics
        self.extensions = frozenset(e.lower() for e in extensions)
        self.cancellation = cancellation
        self.root = config.resolved_root
        self.ignore_spec = build_ignore_spec(config, fs, extra_patterns=extra_ignore_patterns)
        self._visited_dirs: set[Path] = set()

    def _is_ignored(self, rel: str, *, is_dir: bool) -> bool:
        return self.ignore_spec.match_file(f"{rel}/" if is_dir else rel)

    def _guarded_stat(self, path: Path) -> tuple[FileStat, bool] | None:
        """Bounds-check, symlink-audit and stat ``path``.

        Returns:
            tuple[FileStat, bool] | None: the (followed) stat and whether the path is a
                symlink, or None when the path was rejected or vanished.
        """
        rel = relpath(path, self.root)
        try:
            validate_secure_path(path, self.root)
            lst = self.fs.lstat(path)
            if not lst.is_symlink:
                return lst, False
            self.auditor.audit(path, self.root)
            return self.fs.stat(path), True
        except SymlinkNotAllowedError as e:
            self.diagnostics.record(
                "symlink_rejected",
                kind=ErrorKind.SYMLINK_NOT_ALLOWED,
                path=rel,
                reason=f"symbolic link not allowed ({e.message})",
                level="warning",
            )
        except PathTraversalError as e:
            self.diagnostics.record(
                "path_rejected",
                kind=ErrorKind.PATH_TRAVERSAL,
                path=rel,
                reason=e.message,
                level="warning",
            )
        except OSError as e:
            self.diagnostics.record("entry_unreadable", kind=ErrorKind.READ_FAILED, path=rel, reason=str(e), level="warning")
        return None

    def _walk(self, directory: Path) -> Iterator[tuple[Path, FileStat, bool]]:
        for entry in list_dir_entries(directory, self.fs):
            if self.cancellation is not None:
                self.cancellation.raise_if_cancelled("file collection")
            guarded = self._guarded_stat(entry.path)
            if guarded is None:
                continue
            st, is_symlink = guarded
            if st.is_dir:
                if not self.config.parse_sub_directories:
                    continue
                rel = relpath(entry.path, self.root)
                if self._is_ignored(rel, is_dir=True):
                    logger.debug("directory_ignored", path=rel)
                    continue
                real = self.fs.realpath(entry.path)
                if real in self._visited_dirs:
                    self.diagnostics.record("directory_cycle_skipped", path=rel, reason="directory already visited")
                    continue
                self._visited_dirs.add(real)
                yield from self._walk(entry.path)
            elif st.is_file:
                yield entry.path, st, is_symlink

    def collect(self) -> CollectionResult:
        """Walk the root and return admitted candidates in discovery order.

        Raises:
            FusionCancelledError: if the cancellation token is signaled between files.

        Returns:
            CollectionResult: candidates, size placeholders and counters
        """
        result = CollectionResult()
        max_file_bytes = self.config.max_file_size_bytes
        max_total_bytes = self.config.max_total_size_bytes
        exhausted = False
        self._visited_dirs = {self.fs.realpath(self.root)}

        for path, st, is_symlink in self._walk(self.root):
            result.files_seen += 1
            rel = relpath(path, self.root)
            if path.suffix.lower() not in self.extensions:
                continue
            result.extension_matches += 1
            if self._is_ignored(rel, is_dir=False):
                result.ignored += 1
                logger.debug("file_ignored", path=rel)
                continue

            if exhausted or len(result.entries) >= self.config.max_files:
                exhausted = True
                result.budget_skipped += 1
                continue

            candidate = FileCandidate(path=path, relative_path=rel, size=st.size, is_symlink=is_symlink)
            if st.size > max_file_bytes:
                reason = f"File size {st.size / 1024:.1f} KB exceeds the limit of {self.config.max_file_size_kb} KB"
                self.diagnostics.record(
                    "file_too_large",
                    kind=ErrorKind.FILE_TOO_LARGE,
                    path=rel,
                    reason=reason,
                    level="warning",
                    size=st.size,
                )
                result.entries.append(FileRecord.placeholder(candidate, "File too large", reason))
                continue

            if result.admitted_bytes + st.size > max_total_bytes:
                exhausted = True
                result.budget_skipped += 1
                continue

            result.admitted_bytes += st.size
            result.entries.append(candidate)

        if result.budget_skipped:
            self.diagnostics.record(
                "budget_exceeded",
                kind=ErrorKind.BUDGET_EXCEEDED,
                reason=(
                    f"{result.budget_skipped} file(s) skipped after reaching the budget "
                    f"(max_files={self.config.max_files}, max_total_size_mb={self.config.max_total_size_mb})"
                ),
                level="warning",
                skipped=result.budget_skipped,
            )
        logger.info(
            "collection_complete",
            admitted=len(result.entries),
            files_seen=result.files_seen,
            ignored=result.ignored,
            budget_skipped=result.budget_skipped,
        )
        return result
