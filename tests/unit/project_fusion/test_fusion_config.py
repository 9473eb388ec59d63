from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from project_fusion.config import FusionConfig, build_config, guess_language, merge_extension_groups, normalize_extension
from project_fusion.exceptions import ConfigurationInvalidError, ErrorKind


@pytest.mark.unit
def test_defaults() -> None:
    config = FusionConfig()

    assert config.generated_file_name == "project-fusioned"
    assert config.enabled_formats == ["text", "markdown", "html"]
    assert not config.allow_symlinks
    assert config.exclude_secrets
    assert config.strict_content_validation
    assert config.max_file_size_bytes == 1024 * 1024
    assert config.max_total_size_bytes == 100 * 1024 * 1024
    assert config.max_base64_block_bytes == 2048
    assert config.max_output_size_bytes == 50 * 1024 * 1024
    assert not config.overwrite
    assert "node_modules/" in config.ignore_patterns


@pytest.mark.unit
def test_config_is_immutable() -> None:
    config = FusionConfig()

    with pytest.raises(ValidationError):
        config.max_files = 1  # type: ignore[misc]


@pytest.mark.unit
def test_build_config_merges_over_base() -> None:
    base = build_config({"max_files": 10})

    config = build_config({"generate_html": False}, base=base)

    assert config.max_files == 10
    assert config.enabled_formats == ["text", "markdown"]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overrides", "fragment"),
    [
        ({"max_files": 0}, "max_files"),
        ({"max_file_size_kb": -1}, "max_file_size_kb"),
        ({"unknown_option": True}, "unknown_option"),
        ({"parsed_file_extensions": {"Web Stuff": [".js"]}}, "invalid extension group name"),
        ({"generated_file_name": "../escape"}, "bare file name"),
        ({"schema_version": 2}, "schema_version"),
    ],
)
def test_build_config_reports_invalid_values(overrides: dict[str, object], fragment: str) -> None:
    with pytest.raises(ConfigurationInvalidError) as info:
        build_config(overrides)

    assert info.value.kind == ErrorKind.CONFIGURATION_INVALID
    assert any(fragment in e for e in info.value.errors)
    assert fragment in str(info.value)


@pytest.mark.unit
def test_extensions_are_normalized() -> None:
    config = build_config({"parsed_file_extensions": {"web": ["JS", ".ts", " .js ", ""]}})

    assert config.parsed_file_extensions == {"web": [".js", ".ts"]}
    assert normalize_extension("Py") == ".py"


@pytest.mark.unit
def test_blank_and_comment_ignore_patterns_are_dropped() -> None:
    config = build_config({"ignore_patterns": ["dist/", "  ", "# comment"]})

    assert config.ignore_patterns == ["dist/"]


@pytest.mark.unit
def test_extensions_for_groups() -> None:
    config = FusionConfig()

    assert config.extensions_for_groups(["scripts"]) == [".bat", ".cmd", ".ps1", ".sh"]
    assert ".py" in config.extensions_for_groups()
    assert ".py" in config.extensions_for_groups([])


@pytest.mark.unit
def test_extensions_for_unknown_group_lists_valid_groups() -> None:
    with pytest.raises(ConfigurationInvalidError) as info:
        FusionConfig().extensions_for_groups(["web", "nope"])

    assert info.value.errors == ("unknown extension group 'nope'",)
    assert "backend" in info.value.message


@pytest.mark.unit
def test_merge_extension_groups_extends_and_adds() -> None:
    config = merge_extension_groups(FusionConfig(), {"web": ["astro"], "data": [".csv"]})

    assert ".astro" in config.parsed_file_extensions["web"]
    assert config.parsed_file_extensions["data"] == [".csv"]
    assert merge_extension_groups(config, {}) is config


@pytest.mark.unit
def test_resolved_output_directory_defaults_to_root(tmp_path: Path) -> None:
    config = build_config({"root_directory": tmp_path})

    assert config.resolved_output_directory == tmp_path.resolve()
    assert build_config({"output_directory": tmp_path / "out"}).resolved_output_directory == (tmp_path / "out").resolve()


@pytest.mark.unit
def test_generated_artifact_names() -> None:
    config = build_config({"generated_file_name": "ctx"})

    assert config.generated_artifact_names(["md", "log"]) == ["ctx.md", "ctx.log"]


@pytest.mark.unit
@pytest.mark.parametrize(("suffix", "language"), [(".py", "python"), (".TSX", "tsx"), (".unknown", "text")])
def test_guess_language(suffix: str, language: str) -> None:
    assert guess_language(suffix) == language
