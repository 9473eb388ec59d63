from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path


class ErrorKind(StrEnum):
    """Closed taxonomy of everything that can go wrong during a fusion run."""

    PATH_TRAVERSAL = "PathTraversal"
    SYMLINK_NOT_ALLOWED = "SymlinkNotAllowed"
    FILE_TOO_LARGE = "FileTooLarge"
    BINARY_FILE_SKIPPED = "BinaryFileSkipped"
    SECRET_REDACTED = "SecretRedacted"
    PLUGIN_HOOK_FAILED = "PluginHookFailed"
    BUDGET_EXCEEDED = "BudgetExceeded"
    CANCELLED = "Cancelled"
    NO_FILES_MATCHED = "NoFilesMatched"
    CONFIGURATION_INVALID = "ConfigurationInvalid"
    CONTENT_REJECTED = "ContentRejected"
    READ_FAILED = "ReadFailed"
    OUTPUT_EXISTS = "OutputExists"
    OUTPUT_TOO_LARGE = "OutputTooLarge"
    UNEXPECTED = "Unexpected"


@dataclass(frozen=True)
class ProjectFusionError(Exception):
    """Base exception for errors in the project_fusion package."""

    message: str = "Project fusion error."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.UNEXPECTED

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class PathTraversalError(ProjectFusionError):
    """Raised when a path resolves outside of the configured root."""

    path: Path = field(default_factory=Path)
    root: Path = field(default_factory=Path)
    message: str = "Path escapes the root directory."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.PATH_TRAVERSAL


@dataclass(frozen=True)
class SymlinkNotAllowedError(ProjectFusionError):
    """Raised when a symbolic link is met while symlinks are disabled."""

    path: Path = field(default_factory=Path)
    message: str = "Symbolic links are not allowed."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.SYMLINK_NOT_ALLOWED


@dataclass(frozen=True)
class ConfigurationInvalidError(ProjectFusionError):
    """Raised when a configuration cannot be validated."""

    errors: tuple[str, ...] = ()
    message: str = "Invalid configuration."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.CONFIGURATION_INVALID

    def __str__(self) -> str:
        if not self.errors:
            return self.message
        return self.message + "\n" + "\n".join(f"  - {e}" for e in self.errors)


@dataclass(frozen=True)
class NoFilesMatchedError(ProjectFusionError):
    """Raised when nothing is left to fuse after filtering."""

    hints: tuple[str, ...] = ()
    message: str = "No files found to process."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.NO_FILES_MATCHED

    def __str__(self) -> str:
        if not self.hints:
            return self.message
        return self.message + "\n" + "\n".join(f"  hint: {h}" for h in self.hints)


@dataclass(frozen=True)
class FusionCancelledError(ProjectFusionError):
    """Raised when the cancellation token has been signaled."""

    message: str = "Fusion cancelled."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.CANCELLED


@dataclass(frozen=True)
class ContentRejectedError(ProjectFusionError):
    """Raised by the sanitizer when a file cannot be emitted as-is."""

    issues: tuple[str, ...] = ()
    message: str = "Content validation failed."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.CONTENT_REJECTED


@dataclass(frozen=True)
class PluginRegistrationError(ProjectFusionError):
    """Raised when a plugin record is malformed."""

    plugin: str = ""
    message: str = "Invalid plugin."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.CONFIGURATION_INVALID


@dataclass(frozen=True)
class ConfigFileExistsError(ProjectFusionError):
    """Raised when ``init`` would overwrite an existing configuration file."""

    path: Path = field(default_factory=Path)
    message: str = "Configuration file already exists; use --force to overwrite it."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.CONFIGURATION_INVALID


@dataclass(frozen=True)
class OutputExistsError(ProjectFusionError):
    """Raised when artifacts from an earlier run would be replaced without ``overwrite``."""

    paths: tuple[Path, ...] = ()
    message: str = "Output files already exist."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.OUTPUT_EXISTS

    def __str__(self) -> str:
        lines = [self.message, *(f"  - {p}" for p in self.paths), "Use --overwrite flag to replace existing files."]
        return "\n".join(lines)


@dataclass(frozen=True)
class OutputTooLargeError(ProjectFusionError):
    """Raised when a rendered artifact is larger than ``max_output_size_mb``."""

    artifact: str = ""
    size: int = 0
    message: str = "Output size would exceed the maximum limit."

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.OUTPUT_TOO_LARGE
