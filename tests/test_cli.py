from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import cup_cli.main as cli
from cup_core.client import ConfirmingInstaller, FilesystemInstaller
from cup_core.protocol import ArtifactEntry, InstallLocation, ResponseCode, UpdateResponse
from cup_registry import UpdateServer

runner = CliRunner()


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch) -> None:
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)


def test_registry_command_json(plugins_dir: Path) -> None:
    (plugins_dir / "empty").mkdir()
    result = runner.invoke(cli.app, ["registry", "--plugins-dir", str(plugins_dir), "--format", "json"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["packages"][0]["name"] == "demo"
    assert payload["packages"][0]["artifacts"][-1] == "/sd/config/demo/"
    assert payload["errors"][0]["directory"].endswith("empty")


def test_registry_command_text_and_errors(plugins_dir: Path, tmp_path: Path) -> None:
    result = runner.invoke(cli.app, ["registry", "--plugins-dir", str(plugins_dir)])
    assert result.exit_code == 0
    assert "demo@1.0.0 artifacts=4" in result.stdout

    missing = runner.invoke(cli.app, ["registry", "--plugins-dir", str(tmp_path / "absent")])
    assert missing.exit_code == 1

    bad_format = runner.invoke(cli.app, ["registry", "--plugins-dir", str(plugins_dir), "--format", "xml"])
    assert bad_format.exit_code == 2


def test_info_command(monkeypatch) -> None:
    calls: list[tuple] = []
    response = UpdateResponse(
        code=ResponseCode.UPDATE,
        plugin_name="demo",
        required_files=(ArtifactEntry(InstallLocation.absolute("/sd/demo.nro"), 0),),
        new_version="1.0.0",
        description="Demo plugin",
    )

    def fake_info(address, name, version, allow_beta, *, settings):
        calls.append((name, version, allow_beta, settings.host, settings.control_port))
        return response

    monkeypatch.setattr(cli, "get_update_info", fake_info)
    result = runner.invoke(cli.app, ["info", "demo", "0.9.0", "--server", "10.1.1.1:5000", "--beta"])
    assert result.exit_code == 0, result.output
    assert "new version: 1.0.0" in result.stdout
    assert "/sd/demo.nro" in result.stdout
    assert calls == [("demo", "0.9.0", True, "10.1.1.1", 5000)]

    as_json = runner.invoke(cli.app, ["info", "demo", "0.9.0", "--format", "json"])
    assert json.loads(as_json.stdout)["code"] == "Update"


def test_info_command_failures(monkeypatch) -> None:
    monkeypatch.setattr(cli, "get_update_info", lambda *args, **kwargs: None)
    assert runner.invoke(cli.app, ["info", "demo", "0.9.0"]).exit_code == 1

    current = UpdateResponse(code=ResponseCode.NO_UPDATE, plugin_name="demo")
    monkeypatch.setattr(cli, "get_update_info", lambda *args, **kwargs: current)
    result = runner.invoke(cli.app, ["info", "demo", "1.0.0"])
    assert result.exit_code == 1
    assert "demo: NoUpdate" in result.stdout


def test_check_command_installer_choice(monkeypatch, tmp_path: Path) -> None:
    installers: list[object] = []

    def fake_check(address, name, version, allow_beta, installer, *, settings, marker):
        installers.append(installer)
        return isinstance(installer, FilesystemInstaller)

    monkeypatch.setenv("CUP_MARKER_PATH", str(tmp_path / "installing.tmpfile"))
    monkeypatch.setattr(cli, "custom_check_update", fake_check)

    yes = runner.invoke(cli.app, ["check", "demo", "0.9.0", "--yes"])
    assert yes.exit_code == 0
    assert "update installed" in yes.stdout

    ask = runner.invoke(cli.app, ["check", "demo", "0.9.0"])
    assert ask.exit_code == 1
    assert isinstance(installers[1], ConfirmingInstaller)
    assert installers[1].recovering() is False


def test_serve_command_builds_registry(monkeypatch, plugins_dir: Path) -> None:
    served: list[UpdateServer] = []
    monkeypatch.setattr(UpdateServer, "serve_forever", lambda self: served.append(self))

    result = runner.invoke(
        cli.app, ["serve", "--plugins-dir", str(plugins_dir), "--host", "127.0.0.1", "--port", "0"]
    )
    assert result.exit_code == 0, result.output
    assert "serving 1 package(s)" in result.stdout
    assert served[0].registry.lookup("demo") is not None
    assert served[0].data_port == 0


def test_main_returns_exit_code(tmp_path: Path) -> None:
    assert cli.main(["registry", "--plugins-dir", str(tmp_path / "absent")]) == 1
