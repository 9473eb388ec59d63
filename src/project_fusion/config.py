from __future__ import annotations

import re
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from project_fusion.exceptions import ConfigurationInvalidError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class ExtensionGroup(StrEnum):
    """Built-in extension groups shipped with the default configuration."""

    BACKEND = "backend"
    CONFIG = "config"
    CPP = "cpp"
    DOC = "doc"
    GODOT = "godot"
    SCRIPTS = "scripts"
    WEB = "web"


DEFAULT_EXTENSION_GROUPS: dict[str, list[str]] = {
    ExtensionGroup.BACKEND: [".cs", ".go", ".java", ".php", ".py", ".rb", ".rs"],
    ExtensionGroup.CONFIG: [".json", ".toml", ".xml", ".yaml", ".yml"],
    ExtensionGroup.CPP: [".c", ".cc", ".cpp", ".h", ".hpp"],
    ExtensionGroup.DOC: [".adoc", ".md", ".rst"],
    ExtensionGroup.GODOT: [".cfg", ".gd", ".import", ".tres", ".tscn"],
    ExtensionGroup.SCRIPTS: [".bat", ".cmd", ".ps1", ".sh"],
    ExtensionGroup.WEB: [".css", ".html", ".js", ".jsx", ".svelte", ".ts", ".tsx", ".vue"],
}

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    "project-fusion.json",
    "node_modules/",
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "dist/",
    "build/",
    ".git/",
    ".venv/",
    "__pycache__/",
    "*.min.js",
    "*.min.css",
    ".env",
    ".env.*",
    "*.key",
    "*.pem",
    "**/credentials/*",
    "**/secrets/*",
    "*.log",
    "logs/",
    ".DS_Store",
    "Thumbs.db",
    ".vscode/",
    ".idea/",
    "*.swp",
    "*.swo",
)

GROUP_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")

EXT2LANG: dict[str, str] = {
    ".adoc": "asciidoc",
    ".bash": "bash",
    ".bat": "batch",
    ".c": "c",
    ".cc": "cpp",
    ".cfg": "ini",
    ".cmd": "batch",
    ".cpp": "cpp",
    ".cs": "csharp",
    ".css": "css",
    ".cxx": "cpp",
    ".gd": "gdscript",
    ".go": "go",
    ".h": "c",
    ".hpp": "cpp",
    ".html": "html",
    ".import": "ini",
    ".ini": "ini",
    ".java": "java",
    ".js": "javascript",
    ".json": "json",
    ".jsx": "jsx",
    ".kt": "kotlin",
    ".lua": "lua",
    ".md": "markdown",
    ".php": "php",
    ".ps1": "powershell",
    ".py": "python",
    ".rb": "ruby",
    ".rs": "rust",
    ".rst": "rst",
    ".scss": "scss",
    ".sh": "bash",
    ".sql": "sql",
    ".svelte": "svelte",
    ".swift": "swift",
    ".toml": "toml",
    ".tres": "gdscript",
    ".ts": "typescript",
    ".tscn": "gdscript",
    ".tsx": "tsx",
    ".vue": "vue",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".zsh": "bash",
}


def guess_language(suffix: str) -> str:
    """Get the suggested code fence language for a file extension.

    Args:
        suffix (str): The file extension, with its leading dot (e.g. ".py").

    Returns:
        str: The fence language, or "text" when the extension is unknown.
    """
    return EXT2LANG.get(suffix.lower(), "text")


def normalize_extension(ext: str) -> str:
    """Lower-case an extension and make sure it starts with a dot."""
    ext = ext.strip().lower()
    if not ext:
        return ext
    return ext if ext.startswith(".") else f".{ext}"


class FusionConfig(BaseModel):
    """Immutable description of a single fusion run.

    Built once (defaults merged with overrides) and threaded through every
    pipeline stage. Size budgets are expressed in the units users type in
    their config file; the ``*_bytes`` properties give the converted values.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    schema_version: int = Field(default=1, ge=1, le=1, description="Configuration schema version.")
    root_directory: Path = Field(default=Path(), description="Directory to scan.")
    output_directory: Path | None = Field(
        default=None,
        description="Where artifacts are written; defaults to the root directory.",
    )
    generated_file_name: str = Field(
        default="project-fusioned",
        min_length=1,
        description="Base name of generated artifacts (no extension).",
    )
    generate_text: bool = Field(default=True, description="Write the .txt artifact.")
    generate_markdown: bool = Field(default=True, description="Write the .md artifact.")
    generate_html: bool = Field(default=True, description="Write the .html artifact.")
    overwrite: bool = Field(default=False, description="Replace artifacts left by an earlier run.")
    max_output_size_mb: float = Field(default=50, gt=0, description="Largest accepted rendered artifact.")

    parsed_file_extensions: dict[str, list[str]] = Field(
        default_factory=lambda: {str(k): list(v) for k, v in DEFAULT_EXTENSION_GROUPS.items()},
        description="Extension groups to include, keyed by group name.",
    )
    ignore_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS),
        description="Gitignore-style patterns excluded from the scan.",
    )
    parse_sub_directories: bool = Field(default=True, description="Recurse into subdirectories.")
    use_gitignore_for_excludes: bool = Field(default=True, description="Honor the root .gitignore.")

    max_file_size_kb: int = Field(default=1024, gt=0, description="Per-file size limit.")
    max_files: int = Field(default=10_000, gt=0, description="Maximum admitted files.")
    max_total_size_mb: float = Field(default=100, gt=0, description="Maximum cumulative size.")

    allow_symlinks: bool = Field(default=False, description="Follow symbolic links inside the root.")
    max_symlink_audit_entries: int = Field(default=10, ge=0, description="Retained symlink audit entries.")

    exclude_secrets: bool = Field(default=True, description="Redact likely credentials.")
    strict_content_validation: bool = Field(
        default=True,
        description="Reject files failing shape checks instead of clipping them.",
    )
    aggressive_content_sanitization: bool = Field(
        default=False,
        description="Strip script blocks and similar payloads at render time.",
    )
    max_line_length: int = Field(default=5000, gt=0, description="Longest accepted line.")
    max_token_length: int = Field(default=2000, gt=0, description="Longest accepted non-whitespace run.")
    max_base64_block_kb: float = Field(default=2, gt=0, description="Largest accepted base64-looking block.")

    @field_validator("parsed_file_extensions")
    @classmethod
    def _check_groups(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        out: dict[str, list[str]] = {}
        for group, exts in value.items():
            if not GROUP_NAME_PATTERN.match(group):
                msg = f"invalid extension group name {group!r}"
                raise ValueError(msg)
            normalized = [normalize_extension(e) for e in exts]
            out[group] = sorted({e for e in normalized if e})
        return out

    @field_validator("generated_file_name")
    @classmethod
    def _check_file_name(cls, value: str) -> str:
        if "/" in value or "\\" in value or value in {".", ".."}:
            msg = "generated_file_name must be a bare file name"
            raise ValueError(msg)
        return value

    @field_validator("ignore_patterns")
    @classmethod
    def _drop_blank_patterns(cls, value: list[str]) -> list[str]:
        return [p for p in value if p.strip() and not p.lstrip().startswith("#")]

    @property
    def group_names(self) -> frozenset[str]:
        """Explicit set of valid group names for this configuration."""
        return frozenset(self.parsed_file_extensions)

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_kb * 1024)

    @property
    def max_total_size_bytes(self) -> int:
        return int(self.max_total_size_mb * 1024 * 1024)

    @property
    def max_output_size_bytes(self) -> int:
        return int(self.max_output_size_mb * 1024 * 1024)

    @property
    def max_base64_block_bytes(self) -> int:
        return int(self.max_base64_block_kb * 1024)

    @property
    def resolved_root(self) -> Path:
        return self.root_directory.expanduser().resolve()

    @property
    def resolved_output_directory(self) -> Path:
        target = self.output_directory if self.output_directory is not None else self.root_directory
        return target.expanduser().resolve()

    @property
    def enabled_formats(self) -> list[str]:
        """Names of the built-in output formats switched on for this run."""
        flags = (
            ("text", self.generate_text),
            ("markdown", self.generate_markdown),
            ("html", self.generate_html),
        )
        return [name for name, enabled in flags if enabled]

    def generated_artifact_names(self, extensions: Iterable[str] = ("txt", "md", "html", "log")) -> list[str]:
        """File names this run writes, so the collector never fuses its own output."""
        return [f"{self.generated_file_name}.{ext}" for ext in extensions]

    def extensions_for_groups(self, groups: Iterable[str] | None = None) -> list[str]:
        """Resolve a selection of groups to a sorted list of extensions.

        Args:
            groups (Iterable[str] | None): Group names to include. ``None`` or an
                empty selection means every configured group.

        Raises:
            ConfigurationInvalidError: if a requested group is not configured.

        Returns:
            list[str]: Sorted, de-duplicated extensions.
        """
        selected = list(groups or [])
        if not selected:
            return sorted({e for exts in self.parsed_file_extensions.values() for e in exts})
        unknown = [g for g in selected if g not in self.group_names]
        if unknown:
            raise ConfigurationInvalidError(
                errors=tuple(f"unknown extension group {g!r}" for g in unknown),
                message=f"Unknown extension group(s); valid groups: {', '.join(sorted(self.group_names))}",
            )
        return sorted({e for g in selected for e in self.parsed_file_extensions[g]})


def _format_validation_error(exc: ValidationError) -> tuple[str, ...]:
    out: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "<root>"
        out.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return tuple(out)


def build_config(overrides: Mapping[str, Any] | None = None, *, base: FusionConfig | None = None) -> FusionConfig:
    """Merge overrides over a base configuration and validate the result.

    Args:
        overrides (Mapping[str, Any] | None): Field values replacing the base ones.
        base (FusionConfig | None): Starting point; the built-in defaults when None.

    Raises:
        ConfigurationInvalidError: if the merged values do not validate.

    Returns:
        FusionConfig: The immutable configuration for the run.
    """
    data: dict[str, Any] = (base or FusionConfig()).model_dump()
    data.update(dict(overrides or {}))
    try:
        return FusionConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationInvalidError(errors=_format_validation_error(exc)) from exc


def merge_extension_groups(config: FusionConfig, extra: Mapping[str, Iterable[str]]) -> FusionConfig:
    """Return a copy of ``config`` with plugin-provided extension groups merged in.

    Existing groups are extended, new groups are added. Group names go
    through the same validation as user-provided ones.
    """
    if not extra:
        return config
    groups = {k: list(v) for k, v in config.parsed_file_extensions.items()}
    for name, exts in extra.items():
        groups.setdefault(name, []).extend(exts)
    return build_config({"parsed_file_extensions": groups}, base=config)
