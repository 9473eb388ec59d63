from pathlib import Path

import pytest

from project_fusion.settings import Settings, environment_defaults


@pytest.mark.unit
def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.command == "fuse"
    assert settings.root is None
    assert settings.groups == []
    assert settings.config_overrides() == {}


@pytest.mark.unit
def test_config_overrides_map_flags_to_fields(tmp_path: Path) -> None:
    settings = Settings(
        output_directory=tmp_path,
        name="ctx",
        no_html=True,
        allow_symlinks=True,
        no_gitignore=True,
        keep_secrets=True,
        lenient=True,
        aggressive=True,
        overwrite=True,
    )

    assert settings.config_overrides() == {
        "output_directory": tmp_path,
        "generated_file_name": "ctx",
        "generate_html": False,
        "allow_symlinks": True,
        "use_gitignore_for_excludes": False,
        "exclude_secrets": False,
        "strict_content_validation": False,
        "aggressive_content_sanitization": True,
        "overwrite": True,
    }


@pytest.mark.unit
def test_environment_defaults_reads_prefixed_values(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("PROJECT_FUSION_CONFIG=from-file.json\nPROJECT_FUSION_LOG_FILE=run.log\nOTHER=1\n", encoding="utf-8")
    monkeypatch.setenv("PROJECT_FUSION_CONFIG", "from-env.json")
    monkeypatch.delenv("PROJECT_FUSION_LOG_FILE", raising=False)

    values = environment_defaults(str(env_file))

    assert values["config"] == "from-env.json"
    assert values["log_file"] == "run.log"
    assert "other" not in values
