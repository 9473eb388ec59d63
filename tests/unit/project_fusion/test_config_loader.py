from __future__ import annotations

import json
from pathlib import Path

import pytest

from project_fusion.config import FusionConfig
from project_fusion.config_loader import (
    DEFAULT_CONFIG_FILE,
    find_config_file,
    load_config,
    load_config_document,
    normalize_config_document,
    to_snake_case,
    write_default_config,
)
from project_fusion.exceptions import ConfigFileExistsError, ConfigurationInvalidError


@pytest.mark.unit
@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("generatedFileName", "generated_file_name"),
        ("maxFileSizeKB", "max_file_size_kb"),
        ("maxOutputSizeMB", "max_output_size_mb"),
        ("useGitIgnoreForExcludes", "use_gitignore_for_excludes"),
        ("max_files", "max_files"),
    ],
)
def test_to_snake_case(key: str, expected: str) -> None:
    assert to_snake_case(key) == expected


@pytest.mark.unit
def test_normalize_config_document_flattens_sections_and_drops_unsupported_keys() -> None:
    document = {
        "schemaVersion": 1,
        "parsing": {"maxFileSizeKB": 10, "parseSubDirectories": False},
        "copyToClipboard": True,
        "parsedFileExtensions": {"my-web": [".js"]},
    }

    assert normalize_config_document(document) == {
        "schema_version": 1,
        "max_file_size_kb": 10,
        "parse_sub_directories": False,
        "parsed_file_extensions": {"my-web": [".js"]},
    }


@pytest.mark.unit
def test_load_config_reads_camel_case_json(tmp_path: Path) -> None:
    path = tmp_path / "project-fusion.json"
    path.write_text(
        json.dumps({"generatedFileName": "ctx", "useGitIgnoreForExcludes": False, "rootDirectory": "src"}),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.generated_file_name == "ctx"
    assert not config.use_gitignore_for_excludes
    assert config.root_directory == tmp_path / "src"


@pytest.mark.unit
def test_load_config_defaults_root_to_the_file_directory(tmp_path: Path) -> None:
    path = tmp_path / "project-fusion.yaml"
    path.write_text("max_files: 5\noutput:\n  generate_html: false\n", encoding="utf-8")

    config = load_config(path)

    assert config.root_directory == tmp_path
    assert config.max_files == 5
    assert not config.generate_html


@pytest.mark.unit
def test_load_config_overrides_win(tmp_path: Path) -> None:
    path = tmp_path / "project-fusion.json"
    path.write_text('{"maxFiles": 5}', encoding="utf-8")

    config = load_config(path, {"max_files": 7})

    assert config.max_files == 7


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "content", "fragment"),
    [
        ("project-fusion.json", "{not json", "Cannot parse"),
        ("project-fusion.yaml", "a: [1, 2", "Cannot parse"),
        ("project-fusion.json", "[1, 2]", "must contain a mapping"),
        ("project-fusion.toml", "a = 1", "Unsupported configuration format"),
    ],
)
def test_load_config_document_rejects_bad_files(tmp_path: Path, name: str, content: str, fragment: str) -> None:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")

    with pytest.raises(ConfigurationInvalidError, match=fragment):
        load_config_document(path)


@pytest.mark.unit
def test_load_config_document_treats_empty_yaml_as_empty_mapping(tmp_path: Path) -> None:
    path = tmp_path / "project-fusion.yml"
    path.write_text("", encoding="utf-8")

    assert load_config_document(path) == {}


@pytest.mark.unit
def test_load_config_reports_validation_errors(tmp_path: Path) -> None:
    path = tmp_path / "project-fusion.json"
    path.write_text('{"maxFiles": 0}', encoding="utf-8")

    with pytest.raises(ConfigurationInvalidError) as info:
        load_config(path)

    assert any(e.startswith("max_files") for e in info.value.errors)


@pytest.mark.unit
def test_find_config_file_prefers_json(tmp_path: Path) -> None:
    assert find_config_file(tmp_path) is None

    (tmp_path / "project-fusion.yaml").write_text("{}", encoding="utf-8")
    assert find_config_file(tmp_path) == tmp_path / "project-fusion.yaml"

    (tmp_path / DEFAULT_CONFIG_FILE).write_text("{}", encoding="utf-8")
    assert find_config_file(tmp_path) == tmp_path / DEFAULT_CONFIG_FILE


@pytest.mark.unit
def test_write_default_config_round_trips_and_refuses_to_overwrite(tmp_path: Path) -> None:
    target = write_default_config(tmp_path)

    loaded = load_config(target)
    assert loaded.root_directory == tmp_path
    assert loaded.max_files == FusionConfig().max_files
    assert loaded.parsed_file_extensions == FusionConfig().parsed_file_extensions

    with pytest.raises(ConfigFileExistsError):
        write_default_config(tmp_path)

    target.write_text("{}", encoding="utf-8")
    write_default_config(tmp_path, force=True)
    assert json.loads(target.read_text(encoding="utf-8"))["generated_file_name"] == "project-fusioned"
