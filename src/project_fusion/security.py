"""Security perimeter of the scan: path bounds checking and symlink auditing."""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from project_fusion.exceptions import PathTraversalError, SymlinkNotAllowedError
from project_fusion.file_manipulation import LocalFileSystem
from project_fusion.logging import logger
from project_fusion.models import SymlinkAuditEntry

if TYPE_CHECKING:
    from project_fusion.file_manipulation import FileSystem


def _lexical_abspath(path: str | os.PathLike[str]) -> str:
    return os.path.normpath(os.path.abspath(path))


def validate_secure_path(candidate: str | os.PathLike[str], root: str | os.PathLike[str]) -> Path:
    """Resolve ``candidate`` and make sure it stays inside ``root``.

    Resolution is purely lexical (``..`` segments are collapsed, symbolic
    links are not followed) so nothing on disk is touched before the bounds
    check succeeds. Relative candidates are resolved against ``root``, not
    against the process working directory.

    Args:
        candidate (str | os.PathLike[str]): the path to check
        root (str | os.PathLike[str]): the directory the path must stay within

    Raises:
        PathTraversalError: if the canonical candidate is neither ``root`` nor a descendant of it.

    Returns:
        Path: the absolute, normalized candidate path
    """
    root_abs = _lexical_abspath(root)
    raw = os.fspath(candidate)
    if "\x00" in raw:
        raise PathTraversalError(path=Path(raw.replace("\x00", "")), root=Path(root_abs), message="Path contains a NUL byte.")
    joined = raw if os.path.isabs(raw) else os.path.join(root_abs, raw)
    resolved = os.path.normpath(joined)
    try:
        inside = os.path.commonpath([root_abs, resolved]) == root_abs
    except ValueError:
        inside = False
    if not inside:
        raise PathTraversalError(
            path=Path(resolved),
            root=Path(root_abs),
            message=f"Path {raw!r} resolves outside of {root_abs!r}.",
        )
    return Path(resolved)


class SymlinkAuditor:
    """Detects symbolic links and applies the run's symlink policy.

    Every symlink met is counted; only the first ``max_entries`` audit entries
    are kept so a symlink bomb cannot grow memory without bound.
    """

    def __init__(self, allow_symlinks: bool, max_entries: int = 10, fs: FileSystem | None = None) -> None:  # noqa: FBT001
        self.allow_symlinks = allow_symlinks
        self.max_entries = max_entries
        self.fs = fs or LocalFileSystem()
        self.entries: list[SymlinkAuditEntry] = []
        self.total_symlinks = 0

    @property
    def dropped_entries(self) -> int:
        return self.total_symlinks - len(self.entries)

    def _record(self, entry: SymlinkAuditEntry) -> None:
        if len(self.entries) < self.max_entries:
            self.entries.append(entry)

    def audit(self, path: Path, root: Path) -> bool:
        """Apply the symlink policy to ``path``.

        Args:
            path (Path): the path to audit
            root (Path): the scan root; allowed symlink targets must stay inside it

        Raises:
            SymlinkNotAllowedError: if ``path`` is a symlink and symlinks are disabled.
            PathTraversalError: if symlinks are enabled but the resolved target escapes ``root``.

        Returns:
            bool: True when the path may be processed. Missing paths are not
                symlinks and are reported as allowed; the read that follows
                surfaces the real error.
        """
        try:
            st = self.fs.lstat(path)
        except OSError:
            return True
        if not st.is_symlink:
            return True

        self.total_symlinks += 1
        if not self.allow_symlinks:
            self._record(SymlinkAuditEntry(symlink=path, allowed=False, reason="symlinks are disabled"))
            raise SymlinkNotAllowedError(path=path, message=f"Symbolic link rejected: {path}")

        target = self.fs.realpath(path)
        try:
            validate_secure_path(target, self.fs.realpath(root))
        except PathTraversalError:
            self._record(SymlinkAuditEntry(symlink=path, target=target, allowed=False, reason="target escapes root"))
            raise
        self._record(SymlinkAuditEntry(symlink=path, target=target, allowed=True))
        logger.info("symlink_followed", symlink=str(path), target=str(target))
        return True

    def summary(self) -> dict[str, object]:
        return {
            "total_symlinks": self.total_symlinks,
            "retained_entries": len(self.entries),
            "dropped_entries": self.dropped_entries,
        }
