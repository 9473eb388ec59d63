import json
import os
from pathlib import Path

import pytest

from project_fusion import cli


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PROJECT_FUSION_CONFIG", raising=False)
    monkeypatch.delenv("PROJECT_FUSION_LOG_FILE", raising=False)


def _project(root: Path) -> Path:
    (root / "src").mkdir(parents=True, exist_ok=True)
    (root / "src" / "app.py").write_text("def main():\n    return 'ok'\n", encoding="utf-8")
    (root / "web").mkdir(exist_ok=True)
    (root / "web" / "index.html").write_text("<h1>Hello</h1>\n<script>alert(1)</script>\n", encoding="utf-8")
    return root


@pytest.mark.end2end
def test_end_to_end_fuse_project(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = _project(tmp_path)

    exit_code = cli.main(["--root", str(root)])

    assert exit_code == 0
    for ext in ("txt", "md", "html", "log"):
        assert (root / f"project-fusioned.{ext}").exists()
    assert "def main():" in (root / "project-fusioned.md").read_text(encoding="utf-8")
    assert "<script>alert" not in (root / "project-fusioned.html").read_text(encoding="utf-8")
    assert "Generated 3 artifact(s) from 2 file(s)." in capsys.readouterr().out


@pytest.mark.end2end
def test_end_to_end_fuse_selected_groups_without_html(tmp_path: Path) -> None:
    root = _project(tmp_path)

    exit_code = cli.main(["fuse", "--root", str(root), "--groups", "backend", "--no-html", "--name", "context"])

    assert exit_code == 0
    assert not (root / "context.html").exists()
    markdown = (root / "context.md").read_text(encoding="utf-8")
    assert "src/app.py" in markdown
    assert "index.html" not in markdown


@pytest.mark.end2end
def test_end_to_end_symlink_flag(tmp_path: Path) -> None:
    root = _project(tmp_path)
    os.symlink(root / "src" / "app.py", root / "alias.py")

    assert cli.main(["--root", str(root), "--no-html"]) == 0
    assert "alias.py" not in (root / "project-fusioned.md").read_text(encoding="utf-8")

    assert cli.main(["--root", str(root), "--no-html", "--allow-symlinks", "--overwrite"]) == 0
    assert "alias.py" in (root / "project-fusioned.md").read_text(encoding="utf-8")


@pytest.mark.end2end
def test_end_to_end_init_then_fuse_with_config_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = _project(tmp_path)

    assert cli.main(["init", "--root", str(root)]) == 0
    config_file = root / "project-fusion.json"
    assert config_file.exists()
    assert cli.main(["init", "--root", str(root)]) == 1
    assert "already exists" in capsys.readouterr().out

    document = json.loads(config_file.read_text(encoding="utf-8"))
    document["generated_file_name"] = "from-config"
    document["generate_text"] = False
    config_file.write_text(json.dumps(document), encoding="utf-8")

    assert cli.main(["--root", str(root)]) == 0
    assert (root / "from-config.md").exists()
    assert not (root / "from-config.txt").exists()
    assert "project-fusion.json" not in (root / "from-config.md").read_text(encoding="utf-8")

    assert cli.main(["init", "--root", str(root), "--force"]) == 0
    assert json.loads(config_file.read_text(encoding="utf-8"))["generated_file_name"] == "project-fusioned"


@pytest.mark.end2end
def test_end_to_end_config_check(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_file = tmp_path / "settings.yaml"
    config_file.write_text("parsing:\n  maxFiles: 42\n", encoding="utf-8")

    exit_code = cli.main(["config-check", "--config", str(config_file)])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert out.startswith("Configuration is valid.\n")
    printed = json.loads(out.split("\n", 1)[1])
    assert printed["max_files"] == 42
    assert printed["root_directory"] == str(tmp_path)


@pytest.mark.end2end
def test_end_to_end_failures_exit_with_one(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "notes.txt").write_text("nothing to fuse\n", encoding="utf-8")

    assert cli.main(["--root", str(tmp_path)]) == 1
    out = capsys.readouterr().out
    assert "Fusion failed (NoFilesMatched)" in out
    assert "project-fusioned.log" in out

    assert cli.main(["--root", str(tmp_path), "--groups", "unknown"]) == 1
    assert "Fusion failed (ConfigurationInvalid)" in capsys.readouterr().out


@pytest.mark.end2end
def test_end_to_end_log_file(tmp_path: Path) -> None:
    root = _project(tmp_path / "project")
    log_file = tmp_path / "run.log"

    assert cli.main(["--root", str(root), "--log-file", str(log_file)]) == 0
    assert log_file.exists()


@pytest.mark.end2end
def test_end_to_end_existing_artifacts_need_overwrite(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = _project(tmp_path)
    (root / "project-fusioned.txt").write_text("existing content", encoding="utf-8")

    assert cli.main(["--root", str(root)]) == 1
    out = capsys.readouterr().out
    assert "Fusion failed (OutputExists): Output files already exist." in out
    assert "project-fusioned.txt" in out
    assert "Use --overwrite flag to replace existing files." in out
    assert (root / "project-fusioned.txt").read_text(encoding="utf-8") == "existing content"
    assert not (root / "project-fusioned.md").exists()

    assert cli.main(["--root", str(root), "--overwrite"]) == 0
    assert (root / "project-fusioned.txt").read_text(encoding="utf-8").startswith("# Generated Project Fusion File")
