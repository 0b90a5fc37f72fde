from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from gitvault.cli import app
from tests.conftest import write_files


runner = CliRunner()


def test_init_then_status(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    write_files(tmp_path, {"a.md": "x"})

    result = runner.invoke(app, ["init", "https://github.com/me/notes", "--skip-remote"])
    assert result.exit_code == 0, result.output
    assert (tmp_path / ".gitvault.json").exists()
    assert "Initialized gitvault" in " ".join(result.output.split())

    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "a.md" in result.output
    assert ".gitvault.json" not in result.output


def test_init_rejects_bad_repo(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["init", "not-a-repo", "--skip-remote"])

    assert result.exit_code == 1


def test_status_without_config(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["status"])

    assert result.exit_code == 1
    assert "not found" in " ".join(result.output.split())


def test_push_without_token(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GH_TOKEN", raising=False)
    monkeypatch.setenv("GH_CONFIG_DIR", str(tmp_path / "gh"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    runner.invoke(app, ["init", "me/notes", "--skip-remote"])

    result = runner.invoke(app, ["push"])

    assert result.exit_code == 1
    assert "GITHUB_TOKEN" in result.output
