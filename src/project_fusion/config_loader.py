"""Reading and writing ``project-fusion`` configuration files (JSON or YAML)."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from project_fusion.config import FusionConfig, build_config
from project_fusion.exceptions import ConfigFileExistsError, ConfigurationInvalidError
from project_fusion.logging import logger

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_CONFIG_FILE = "project-fusion.json"
CONFIG_FILE_NAMES: tuple[str, ...] = (DEFAULT_CONFIG_FILE, "project-fusion.yaml", "project-fusion.yml")

# camelCase keys that do not map mechanically onto field names
KEY_ALIASES: dict[str, str] = {
    "use_git_ignore_for_excludes": "use_gitignore_for_excludes",
}
# keys of features this tool does not provide; dropped with a warning
UNSUPPORTED_KEYS = frozenset({"copy_to_clipboard", "generate_pdf"})
NESTED_SECTIONS = frozenset({"parsing", "output"})

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def to_snake_case(key: str) -> str:
    """Convert a ``camelCase`` key to the matching ``snake_case`` field name."""
    snake = _CAMEL_BOUNDARY.sub("_", key).lower()
    return KEY_ALIASES.get(snake, snake)


def normalize_config_document(document: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten known sections and convert keys to field names.

    Extension group names (the keys of ``parsed_file_extensions``) are left
    untouched.
    """
    flat: dict[str, Any] = {}
    for key, value in document.items():
        name = to_snake_case(str(key))
        if name in NESTED_SECTIONS and isinstance(value, dict):
            flat.update(normalize_config_document(value))
        elif name in UNSUPPORTED_KEYS:
            logger.warning("config_key_ignored", key=key)
        else:
            flat[name] = value
    return flat


def find_config_file(directory: Path) -> Path | None:
    for name in CONFIG_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def load_config_document(path: Path) -> dict[str, Any]:
    """Parse a JSON or YAML configuration file into a plain mapping.

    Args:
        path (Path): the configuration file

    Raises:
        ConfigurationInvalidError: if the file cannot be read, parsed, or is not a mapping.

    Returns:
        dict[str, Any]: the raw document
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationInvalidError(errors=(str(e),), message=f"Cannot read configuration file {path}.") from e

    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            document = json.loads(text)
        elif suffix in {".yaml", ".yml"}:
            document = yaml.safe_load(text)
        else:
            raise ConfigurationInvalidError(message=f"Unsupported configuration format {suffix!r}; use .json, .yaml or .yml.")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationInvalidError(errors=(str(e),), message=f"Cannot parse configuration file {path}.") from e

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigurationInvalidError(message=f"Configuration file {path} must contain a mapping at top level.")
    return document


def load_config(path: Path, overrides: Mapping[str, Any] | None = None) -> FusionConfig:
    """Load, normalize and validate a configuration file.

    A relative ``root_directory`` is resolved against the directory holding
    the file. ``overrides`` (typically from the command line) win over the file.

    Raises:
        ConfigurationInvalidError: if the file is unreadable or its content does not validate.
    """
    data = normalize_config_document(load_config_document(path))
    for key, default in (("root_directory", "."), ("output_directory", None)):
        value = data.get(key, default)
        if value is not None and not Path(value).is_absolute():
            data[key] = path.parent / value
    data.update(dict(overrides or {}))
    logger.info("config_loaded", path=str(path))
    return build_config(data)


def default_config_document() -> dict[str, Any]:
    """The default configuration as a JSON-ready mapping, as written by ``init``."""
    data = FusionConfig().model_dump(mode="json", exclude={"output_directory"})
    data["root_directory"] = "."
    return data


def write_default_config(directory: Path, *, force: bool = False) -> Path:
    """Write ``project-fusion.json`` with the default configuration into ``directory``.

    Raises:
        ConfigFileExistsError: if the file exists and ``force`` is False.

    Returns:
        Path: the written file
    """
    target = directory / DEFAULT_CONFIG_FILE
    if target.exists() and not force:
        raise ConfigFileExistsError(path=target, message=f"{target} already exists; use --force to overwrite it.")
    directory.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(default_config_document(), indent=2) + "\n", encoding="utf-8")
    logger.info("config_written", path=str(target), overwritten=force)
    return target
