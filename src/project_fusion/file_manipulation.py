from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from project_fusion.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

BINARY_SNIFF_BYTES = 8192
BINARY_RATIO_THRESHOLD = 0.30

# \b \t \n \f \r and ESC (ANSI colour codes in logs/fixtures)
_ALLOWED_CONTROL_BYTES = frozenset({8, 9, 10, 12, 13, 27})


@dataclass(frozen=True)
class FileStat:
    size: int
    is_file: bool
    is_dir: bool
    is_symlink: bool


@dataclass(frozen=True)
class DirEntry:
    name: str
    path: Path


class FileSystem(Protocol):
    """Filesystem operations the pipeline needs, so tests can observe or replace them."""

    def read_text(self, path: Path) -> str: ...

    def read_bytes(self, path: Path) -> bytes: ...

    def read_head(self, path: Path, size: int) -> bytes: ...

    def stat(self, path: Path) -> FileStat: ...

    def lstat(self, path: Path) -> FileStat: ...

    def exists(self, path: Path) -> bool: ...

    def ensure_dir(self, path: Path) -> None: ...

    def write_text(self, path: Path, content: str) -> None: ...

    def scandir(self, path: Path) -> list[DirEntry]: ...

    def realpath(self, path: Path) -> Path: ...


def _to_stat(st: os.stat_result) -> FileStat:
    return FileStat(
        size=st.st_size,
        is_file=stat.S_ISREG(st.st_mode),
        is_dir=stat.S_ISDIR(st.st_mode),
        is_symlink=stat.S_ISLNK(st.st_mode),
    )


class LocalFileSystem:
    """``FileSystem`` backed by the local disk."""

    def read_text(self, path: Path) -> str:
        return decode_text(self.read_bytes(path))

    def read_bytes(self, path: Path) -> bytes:
        return path.read_bytes()

    def read_head(self, path: Path, size: int) -> bytes:
        with path.open("rb") as f:
            return f.read(size)

    def stat(self, path: Path) -> FileStat:
        return _to_stat(path.stat())

    def lstat(self, path: Path) -> FileStat:
        return _to_stat(path.lstat())

    def exists(self, path: Path) -> bool:
        return os.path.lexists(path)

    def ensure_dir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def write_text(self, path: Path, content: str) -> None:
        self.ensure_dir(path.parent)
        path.write_text(content, encoding="utf-8")

    def scandir(self, path: Path) -> list[DirEntry]:
        with os.scandir(path) as it:
            return [DirEntry(name=e.name, path=Path(e.path)) for e in it]

    def realpath(self, path: Path) -> Path:
        return Path(os.path.realpath(path))


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def decode_text(data: bytes) -> str:
    """Decode file bytes as UTF-8, dropping a BOM and replacing invalid sequences."""
    return data.decode("utf-8-sig", errors="replace")


def is_binary(content: bytes) -> bool:
    """Heuristically classify raw file content as binary.

    A NUL byte anywhere in the first ``BINARY_SNIFF_BYTES`` bytes marks the
    content as binary. Otherwise the share of control bytes other than common
    whitespace is computed over the same window and compared to
    ``BINARY_RATIO_THRESHOLD``. Bytes above 0x7F are treated as text so UTF-8
    content is never misclassified.

    Args:
        content (bytes): the content to classify

    Returns:
        bool: True if the content looks binary, False otherwise (including empty content)
    """
    if not content:
        return False
    window = content[:BINARY_SNIFF_BYTES]
    if b"\x00" in window:
        return True
    suspicious = sum(1 for b in window if (b < 32 and b not in _ALLOWED_CONTROL_BYTES) or b == 127)  # noqa: PLR2004
    return suspicious / len(window) > BINARY_RATIO_THRESHOLD


def is_binary_file(path: Path, fs: FileSystem | None = None) -> bool:
    """Check if path points to a binary file, reading only the sniff window.

    Never raises: unreadable or missing files are reported as text so the
    read that follows surfaces its own error.

    Args:
        path (Path): path to test.
        fs (FileSystem | None): filesystem to read through. Defaults to the local disk.

    Returns:
        bool: True if the file looks binary, False otherwise.
    """
    try:
        head = (fs or LocalFileSystem()).read_head(path, BINARY_SNIFF_BYTES)
    except OSError as e:
        logger.debug("binary_sniff_unreadable", path=str(path), error=str(e))
        return False
    return is_binary(head)


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def list_dir_entries(directory: Path, fs: FileSystem) -> list[DirEntry]:
    """List the entries of ``directory`` sorted by name, without touching them.

    Nothing is stat'ed here so callers can bounds-check each path first.
    An unreadable directory is logged and yields no entries.

    Args:
        directory (Path): the directory to list
        fs (FileSystem): filesystem to list through

    Returns:
        list[DirEntry]: the entries, sorted by name
    """
    try:
        return sorted(fs.scandir(directory), key=lambda e: e.name)
    except OSError as e:
        logger.warning("directory_unreadable", path=str(directory), error=str(e))
        return []


def build_tree_lines(root_name: str, rel_paths: Sequence[str]) -> list[str]:
    """Build a visual tree representation of file paths.

    Args:
        root_name (str): the name to use for the root of the tree
        rel_paths (Sequence[str]): the list of file paths relative to the root, using POSIX separators (e.g. "src/main.py")

    Returns:
        list[str]: a list of strings representing the tree structure, suitable for printing
    """
    rels = sorted(
        {p.strip("/").replace("\\", "/") for p in rel_paths if p.strip()},
        key=str.lower,
    )
    tree: dict[str, Any] = {}
    for rp in rels:
        cur = tree
        parts = rp.split("/")
        for i, part in enumerate(parts):
            if i == len(parts) - 1:
                cur.setdefault("__files__", set()).add(part)
            else:
                cur = cur.setdefault(part, {})

    lines: list[str] = [root_name]

    def walk(node: dict[str, Any], prefix: str) -> None:
        dirs = sorted([k for k in node if k != "__files__"], key=str.lower)
        files = sorted(node.get("__files__", set()), key=str.lower)
        entries: list[tuple[str, str, Any]] = []
        entries.extend(("dir", d, node[d]) for d in dirs)
        entries.extend(("file", f, None) for f in files)
        for idx, (kind, name, child) in enumerate(entries):
            last = idx == len(entries) - 1
            branch = "└── " if last else "├── "
            lines.append(prefix + branch + name + ("/" if kind == "dir" else ""))
            if kind == "dir":
                ext = "    " if last else "│   "
                walk(child, prefix + ext)

    walk(tree, "")
    return lines


def now_iso() -> str:
    """Return the current date and time in ISO 8601 format with timezone.

    Returns:
        str: the current date and time in ISO 8601 format with timezone
    """
    return datetime.now(UTC).astimezone().isoformat(timespec="seconds")
