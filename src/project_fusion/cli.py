"""
project_fusion: fuse a project directory into LLM-ready context files.

Overview
--------
Scans a project tree and writes consolidated artifacts under the output
directory (the root by default):

- ``<name>.txt``  plain text with a file tree,
- ``<name>.md``   Markdown with a linked table of contents,
- ``<name>.html`` standalone HTML with strict security meta tags,
- ``<name>.log``  diagnostic log of everything skipped, redacted or rejected.

Symbolic links are rejected unless allowed, likely secrets are redacted,
dangerous URI schemes are neutralized and oversized content is rejected
(or clipped with ``--lenient``).

Usage
-----
    project-fusion                      # fuse the current directory
    project-fusion --groups web backend --root ./app
    project-fusion --overwrite          # replace artifacts from an earlier run
    project-fusion init [--force]       # write project-fusion.json with defaults
    project-fusion config-check         # validate and print the effective configuration

Exit codes: 0 success, 1 failure, 130 cancelled.
"""

from __future__ import annotations

import argparse
import json
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from project_fusion.cancellation import CancellationToken
from project_fusion.config import build_config
from project_fusion.config_loader import find_config_file, load_config, write_default_config
from project_fusion.exceptions import ProjectFusionError
from project_fusion.fusion import process_fusion
from project_fusion.logging import logger, setup_logging
from project_fusion.models import FusionCancelled, FusionSuccess
from project_fusion.plugins import PluginManager
from project_fusion.settings import Settings, environment_defaults

if TYPE_CHECKING:
    from collections.abc import Sequence

    from project_fusion.cancellation import ProgressEvent
    from project_fusion.config import FusionConfig

COMMANDS = ("fuse", "init", "config-check")
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


def _add_common_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--root", type=Path, default=None, help="Directory to scan.")
    p.add_argument("--config", type=Path, default=None, help="Configuration file (JSON or YAML).")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")


def _add_fuse_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--groups", nargs="+", default=[], help="Extension groups to include (default: all).")
    p.add_argument("--output-directory", type=Path, default=None, help="Directory receiving the artifacts.")
    p.add_argument("--name", type=str, default="", help="Base name of generated artifacts.")
    p.add_argument("--plugins-dir", type=Path, default=None, help="Directory of plugin modules to load.")
    p.add_argument("--no-text", action="store_true", help="Do not write the text artifact.")
    p.add_argument("--no-markdown", action="store_true", help="Do not write the Markdown artifact.")
    p.add_argument("--no-html", action="store_true", help="Do not write the HTML artifact.")
    p.add_argument("--allow-symlinks", action="store_true", help="Follow symbolic links inside the root.")
    p.add_argument("--no-gitignore", action="store_true", help="Do not honor .gitignore.")
    p.add_argument("--no-subdirs", action="store_true", help="Scan the root directory only.")
    p.add_argument("--keep-secrets", action="store_true", help="Do not redact likely secrets.")
    p.add_argument("--lenient", action="store_true", help="Clip oversized content instead of rejecting it.")
    p.add_argument("--aggressive", action="store_true", help="Strip script-like payloads at render time.")
    p.add_argument("--overwrite", action="store_true", help="Replace artifacts left by an earlier run.")


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    """Parse command-line arguments into ``Settings``.

    Without an explicit subcommand the ``fuse`` command runs.
    """
    args_list = list(argv) if argv is not None else sys.argv[1:]
    if not args_list or args_list[0] not in (*COMMANDS, "-h", "--help"):
        args_list = ["fuse", *args_list]

    p = argparse.ArgumentParser(
        prog="project-fusion",
        description="Fuse a project directory into text, Markdown and HTML context files.",
    )
    sub = p.add_subparsers(dest="command", required=True)

    fuse = sub.add_parser("fuse", help="Generate the fusion artifacts (default).")
    _add_common_arguments(fuse)
    _add_fuse_arguments(fuse)

    init = sub.add_parser("init", help="Write project-fusion.json with the default configuration.")
    _add_common_arguments(init)
    init.add_argument("--force", action="store_true", help="Overwrite an existing configuration file.")

    check = sub.add_parser("config-check", help="Validate and print the effective configuration.")
    _add_common_arguments(check)

    args = p.parse_args(args_list)
    return Settings(**vars(args))


def resolve_config(settings: Settings, env: dict[str, str] | None = None) -> FusionConfig:
    """Build the run configuration from the config file, the environment and the command line.

    The config file is, in order: ``--config``, ``PROJECT_FUSION_CONFIG``, or a
    ``project-fusion.json``/``.yaml`` found in the root. Without one, defaults apply.

    Raises:
        ConfigurationInvalidError: if the file or the merged values do not validate.
    """
    env = environment_defaults() if env is None else env
    overrides: dict[str, Any] = settings.config_overrides()
    if settings.root is not None:
        overrides["root_directory"] = settings.root

    config_path = settings.config or (Path(env["config"]) if env.get("config") else None)
    if config_path is None:
        config_path = find_config_file(settings.root or Path.cwd())
    if config_path is not None:
        return load_config(config_path, overrides)
    overrides.setdefault("root_directory", Path.cwd())
    return build_config(overrides)


def _log_progress(event: ProgressEvent) -> None:
    logger.debug("progress", stage=str(event.stage), current=event.current, total=event.total, **event.detail)


def run_fuse(settings: Settings) -> int:
    config = resolve_config(settings)
    plugins = PluginManager()
    if settings.plugins_dir is not None:
        plugins.load_plugins_from_directory(settings.plugins_dir)

    token = CancellationToken()
    previous = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, lambda *_: token.cancel("interrupted by user"))
    try:
        result = process_fusion(
            config,
            plugins=plugins,
            cancellation=token,
            progress=_log_progress,
            extension_groups=settings.groups or None,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    if isinstance(result, FusionSuccess):
        print(result.message)
        for path in result.artifact_paths:
            print(f"  {path}")
        return EXIT_OK
    if isinstance(result, FusionCancelled):
        print(result.message)
        return EXIT_CANCELLED
    print(f"Fusion failed ({result.kind}): {result.message}")
    if result.log_path is not None:
        print(f"See {result.log_path}")
    return EXIT_FAILURE


def run_init(settings: Settings) -> int:
    target = write_default_config(settings.root or Path.cwd(), force=settings.force)
    print(f"Wrote {target}")
    return EXIT_OK


def run_config_check(settings: Settings) -> int:
    config = resolve_config(settings)
    print("Configuration is valid.")
    print(json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True))
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    log_file = settings.log_file or environment_defaults().get("log_file", "")
    if log_file:
        setup_logging(log_file)

    handlers = {"fuse": run_fuse, "init": run_init, "config-check": run_config_check}
    try:
        return handlers[settings.command](settings)
    except ProjectFusionError as e:
        logger.error("command_failed", command=settings.command, kind=str(e.kind), error=str(e))
        print(f"Error: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    raise SystemExit(main())
