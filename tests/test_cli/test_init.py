"""Tests for the `clinisync init` CLI command."""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from clinisync.cli.main import cli
from clinisync.core.config import default_config


class TestInit:
    def test_creates_layout_and_default_config(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0, result.output
        assert "clinisync initialized" in result.output

        data_dir = tmp_path / ".clinisync"
        for sub in ("records", "changes", "locks"):
            assert (data_dir / sub).is_dir()
        assert json.loads((data_dir / "config.json").read_text()) == default_config()

    def test_server_and_bundle_size(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            cli,
            ["init", "--path", str(tmp_path), "--server", "https://hapi.example/fhir/", "--bundle-size", "10"],
        )
        assert result.exit_code == 0, result.output
        assert "Server: https://hapi.example/fhir" in result.output
        config = json.loads((tmp_path / ".clinisync" / "config.json").read_text())
        assert config["server"]["base_url"] == "https://hapi.example/fhir"
        assert config["sync"]["bundle_size"] == 10

    def test_is_idempotent(self, tmp_path: Path) -> None:
        runner = CliRunner()
        runner.invoke(cli, ["init", "--path", str(tmp_path), "--bundle-size", "7"])
        result = runner.invoke(cli, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0
        assert "already initialized" in result.output
        config = json.loads((tmp_path / ".clinisync" / "config.json").read_text())
        assert config["sync"]["bundle_size"] == 7

    def test_rejects_invalid_settings(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["init", "--path", str(tmp_path), "--server", "ftp://x"])
        assert result.exit_code != 0
        assert "base_url" in result.output
        assert not (tmp_path / ".clinisync").exists()

    def test_file_in_the_way(self, tmp_path: Path) -> None:
        (tmp_path / ".clinisync").write_text("")
        result = CliRunner().invoke(cli, ["init", "--path", str(tmp_path)])
        assert result.exit_code != 0
        assert "not a directory" in result.output


def test_commands_outside_project_fail(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli, ["changes", "--json"], env={"CLINISYNC_ROOT": str(tmp_path)}
    )
    assert result.exit_code == 1
    assert json.loads(result.output)["error"]["code"] == "NOT_INITIALIZED"
