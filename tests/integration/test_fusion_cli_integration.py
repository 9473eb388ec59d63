from __future__ import annotations

import json
from pathlib import Path

import pytest
from pytest_mock import MockerFixture

from project_fusion import cli
from project_fusion.exceptions import ErrorKind
from project_fusion.models import FusionCancelled, FusionFailure, FusionSuccess
from project_fusion.settings import Settings


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PROJECT_FUSION_CONFIG", raising=False)
    monkeypatch.delenv("PROJECT_FUSION_LOG_FILE", raising=False)


@pytest.mark.integration
def test_parse_args_defaults_to_fuse(tmp_path: Path) -> None:
    settings = cli.parse_args(["--root", str(tmp_path), "--groups", "web", "backend", "--no-html"])

    assert settings.command == "fuse"
    assert settings.root == tmp_path
    assert settings.groups == ["web", "backend"]
    assert settings.no_html


@pytest.mark.integration
def test_parse_args_init_and_config_check(tmp_path: Path) -> None:
    assert cli.parse_args(["init", "--force", "--root", str(tmp_path)]).force
    assert cli.parse_args(["config-check"]).command == "config-check"


@pytest.mark.integration
def test_parse_args_rejects_fuse_flags_on_init() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args(["init", "--no-html"])


@pytest.mark.integration
def test_resolve_config_prefers_explicit_file_then_environment(tmp_path: Path) -> None:
    explicit = tmp_path / "explicit.json"
    explicit.write_text(json.dumps({"maxFiles": 3}), encoding="utf-8")
    from_env = tmp_path / "env.yaml"
    from_env.write_text("max_files: 4\n", encoding="utf-8")

    by_flag = cli.resolve_config(Settings(config=explicit, root=tmp_path), env={"config": str(from_env)})
    by_env = cli.resolve_config(Settings(root=tmp_path), env={"config": str(from_env)})

    assert by_flag.max_files == 3
    assert by_env.max_files == 4


@pytest.mark.integration
def test_resolve_config_discovers_file_in_root_and_applies_flags(tmp_path: Path) -> None:
    (tmp_path / "project-fusion.json").write_text(json.dumps({"generatedFileName": "ctx"}), encoding="utf-8")

    config = cli.resolve_config(Settings(root=tmp_path, no_markdown=True), env={})

    assert config.generated_file_name == "ctx"
    assert config.enabled_formats == ["text", "html"]
    assert config.root_directory == tmp_path


@pytest.mark.integration
def test_fuse_passes_groups_and_reports_success(tmp_path: Path, mocker: MockerFixture, capsys: pytest.CaptureFixture[str]) -> None:
    artifact = tmp_path / "project-fusioned.md"
    success = FusionSuccess(message="Generated 1 artifact(s).", artifact_paths=[artifact])
    process = mocker.patch.object(cli, "process_fusion", return_value=success)

    exit_code = cli.main(["--root", str(tmp_path), "--groups", "web"])

    assert exit_code == cli.EXIT_OK
    assert process.call_args.kwargs["extension_groups"] == ["web"]
    assert process.call_args.args[0].root_directory == tmp_path
    out = capsys.readouterr().out
    assert "Generated 1 artifact(s)." in out
    assert str(artifact) in out


@pytest.mark.integration
def test_fuse_exit_codes(tmp_path: Path, mocker: MockerFixture) -> None:
    process = mocker.patch.object(cli, "process_fusion")

    process.return_value = FusionCancelled()
    assert cli.main(["--root", str(tmp_path)]) == cli.EXIT_CANCELLED

    process.return_value = FusionFailure(kind=ErrorKind.NO_FILES_MATCHED, message="nothing")
    assert cli.main(["--root", str(tmp_path)]) == cli.EXIT_FAILURE


@pytest.mark.integration
def test_fuse_loads_plugins_from_directory(tmp_path: Path, mocker: MockerFixture) -> None:
    plugins_dir = tmp_path / "plugins"
    plugins_dir.mkdir()
    (plugins_dir / "noop.py").write_text(
        "from project_fusion.plugins import create_plugin\nplugin = create_plugin('noop')\n",
        encoding="utf-8",
    )
    process = mocker.patch.object(cli, "process_fusion", return_value=FusionCancelled())

    cli.main(["--root", str(tmp_path), "--plugins-dir", str(plugins_dir)])

    manager = process.call_args.kwargs["plugins"]
    assert [m.name for m in manager.list_plugins()] == ["noop"]


@pytest.mark.integration
def test_invalid_config_file_is_reported(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config = tmp_path / "broken.json"
    config.write_text("{broken", encoding="utf-8")

    exit_code = cli.main(["config-check", "--config", str(config)])

    assert exit_code == cli.EXIT_FAILURE
    assert "Error: Cannot parse configuration file" in capsys.readouterr().out
