from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "PROJECT_FUSION_"


def environment_defaults(env_file: str | None = None) -> dict[str, str]:
    """Read ``PROJECT_FUSION_*`` values from the ``.env`` file and the process environment.

    Process environment variables win over the ``.env`` file.

    Args:
        env_file (str | None): path of the ``.env`` file; the one found from the cwd when None

    Returns:
        dict[str, str]: lower-cased keys without the prefix, e.g. ``{"config": "cfg.json"}``
    """
    path = ENV_FILE if env_file is None else env_file
    values: dict[str, Any] = dict(dotenv_values(path)) if path else {}
    values.update(os.environ)
    return {k[len(ENV_PREFIX) :].lower(): v for k, v in values.items() if k.startswith(ENV_PREFIX) and v is not None}


class Settings(BaseModel):
    """Command-line settings for the project_fusion CLI."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    command: str = Field(default="fuse", description="Subcommand to run.")
    root: Path | None = Field(default=None, description="Directory to scan; the config file location or cwd when unset.")
    config: Path | None = Field(default=None, description="Configuration file (JSON or YAML).")
    log_file: str = Field(default="", description="Log file path.")
    force: bool = Field(default=False, description="Overwrite an existing configuration file on init.")

    groups: list[str] = Field(default_factory=list, description="Extension groups to include.")
    output_directory: Path | None = Field(default=None, description="Directory receiving the artifacts.")
    name: str = Field(default="", description="Base name of generated artifacts.")
    plugins_dir: Path | None = Field(default=None, description="Directory of plugin modules to load.")

    no_text: bool = Field(default=False, description="Do not write the text artifact.")
    no_markdown: bool = Field(default=False, description="Do not write the Markdown artifact.")
    no_html: bool = Field(default=False, description="Do not write the HTML artifact.")
    allow_symlinks: bool = Field(default=False, description="Follow symbolic links inside the root.")
    no_gitignore: bool = Field(default=False, description="Do not honor .gitignore.")
    no_subdirs: bool = Field(default=False, description="Scan the root directory only.")
    keep_secrets: bool = Field(default=False, description="Do not redact likely secrets.")
    lenient: bool = Field(default=False, description="Clip oversized content instead of rejecting it.")
    aggressive: bool = Field(default=False, description="Strip script-like payloads at render time.")
    overwrite: bool = Field(default=False, description="Replace artifacts left by an earlier run.")

    def config_overrides(self) -> dict[str, Any]:
        """Configuration fields set explicitly on the command line."""
        overrides: dict[str, Any] = {}
        if self.output_directory is not None:
            overrides["output_directory"] = self.output_directory
        if self.name:
            overrides["generated_file_name"] = self.name
        flags = (
            (self.no_text, "generate_text", False),
            (self.no_markdown, "generate_markdown", False),
            (self.no_html, "generate_html", False),
            (self.allow_symlinks, "allow_symlinks", True),
            (self.no_gitignore, "use_gitignore_for_excludes", False),
            (self.no_subdirs, "parse_sub_directories", False),
            (self.keep_secrets, "exclude_secrets", False),
            (self.lenient, "strict_content_validation", False),
            (self.aggressive, "aggressive_content_sanitization", True),
            (self.overwrite, "overwrite", True),
        )
        overrides.update({field: value for enabled, field, value in flags if enabled})
        return overrides
