from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from project_fusion.config import guess_language
from project_fusion.exceptions import ErrorKind


class FileCandidate(BaseModel):
    """A discovered file on its way through admission control.

    Attributes:
        path: Absolute path to the file on disk.
        relative_path: POSIX path relative to the configured root.
        size: File size in bytes, taken from ``stat`` at discovery time.
        content: Decoded text, set once the file has been read.
        is_symlink: Whether the path itself was a symbolic link.
    """

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Absolute file path")
    relative_path: str = Field(..., description="File path relative to the root directory")
    size: int = Field(..., ge=0, description="File size in bytes")
    content: str | None = Field(default=None, description="Decoded content once read")
    is_symlink: bool = Field(default=False, description="Path was reached through a symlink")

    def with_content(self, content: str) -> FileCandidate:
        return self.model_copy(update={"content": content})


class FileRecord(BaseModel):
    """The admitted, sanitized representation of a file handed to output strategies.

    Attributes:
        path: Absolute path to the file on disk.
        relative_path: POSIX path relative to the configured root.
        content: Final content, or the human-readable rejection notice for placeholders.
        size: Size in bytes of the original file.
        is_error_placeholder: Whether the content was rejected and this is a stub.
        error_reason: Short reason when ``is_error_placeholder`` is set.
        truncated: Whether parts of the content were clipped.
    """

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Absolute file path")
    relative_path: str = Field(..., description="File path relative to the root directory")
    content: str = Field(..., description="Final content")
    size: int = Field(..., ge=0, description="File size in bytes")
    is_error_placeholder: bool = Field(default=False, description="Content was rejected")
    error_reason: str = Field(default="", description="Why the content was rejected")
    truncated: bool = Field(default=False, description="Parts of the content were clipped")

    @computed_field
    @property
    def language(self) -> str:
        """Get the suggested code fence language based on the extension."""
        if self.is_error_placeholder:
            return "text"
        return guess_language(Path(self.relative_path).suffix)

    @classmethod
    def placeholder(cls, candidate: FileCandidate, reason: str, details: str = "") -> FileRecord:
        """Build an error placeholder that keeps a rejected file visible in the output."""
        lines = [f"[ERROR: {reason} for {candidate.relative_path}]"]
        if details:
            lines.append(details)
        return cls(
            path=candidate.path,
            relative_path=candidate.relative_path,
            content="\n".join(lines),
            size=candidate.size,
            is_error_placeholder=True,
            error_reason=reason,
        )


class SymlinkAuditEntry(BaseModel):
    """One symlink resolution seen during the scan."""

    model_config = ConfigDict(frozen=True)

    symlink: Path
    target: Path | None = None
    allowed: bool
    reason: str = ""


class FusionSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["success"] = "success"
    message: str
    artifact_paths: list[Path] = Field(default_factory=list)
    log_path: Path | None = None
    files_processed: int = 0
    placeholders: int = 0
    budget_exceeded: bool = False


class FusionFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    kind: ErrorKind
    message: str
    log_path: Path | None = None


class FusionCancelled(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["cancelled"] = "cancelled"
    message: str = "Fusion cancelled."
    log_path: Path | None = None


FusionResult = Annotated[FusionSuccess | FusionFailure | FusionCancelled, Field(discriminator="status")]
FUSION_RESULT_TYPES: tuple[type[BaseModel], ...] = (FusionSuccess, FusionFailure, FusionCancelled)
