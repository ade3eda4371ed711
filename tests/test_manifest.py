from __future__ import annotations

from pathlib import Path

import pytest

from cup_core.protocol import InstallLocation, RegistryError, parse_semver
from cup_registry.manifest import definition_to_dict, load_definition, parse_definition


def test_load_toml_definition(plugins_dir: Path) -> None:
    definition = load_definition(plugins_dir / "demo")
    assert definition.name == "demo"
    assert str(definition.version) == "1.0.0"
    assert definition.beta is False
    assert str(definition.min_host_version) == "0.0.0"
    assert definition.files[0].install_location == InstallLocation.absolute("/sd/atmosphere/demo/main.nro")
    assert definition.files[0].filename == Path("main.nro")
    assert definition.folders[0].root_name == Path("assets")
    assert definition.metadata is not None
    assert definition.metadata.changelog == Path("CHANGELOG.md")
    assert definition.directory == plugins_dir / "demo"


def test_load_yaml_definition_with_aliases(tmp_path: Path) -> None:
    directory = tmp_path / "legacy"
    directory.mkdir()
    (directory / "plugin.yml").write_text(
        "\n".join(
            [
                "name: legacy",
                "version: 2.1.0-beta.1",
                "beta: true",
                "skyline_version: 1.5.0",
                "files:",
                "  - install_location: /sd/legacy/main.nro",
                "    source_path: build/main.nro",
            ]
        ),
        encoding="utf-8",
    )
    definition = load_definition(directory)
    assert definition.beta is True
    assert definition.min_host_version == parse_semver("1.5.0")
    assert definition.files[0].filename == Path("build/main.nro")
    assert definition.files[0].install_location.value == "/sd/legacy/main.nro"


def test_version_text_survives_round_trip() -> None:
    definition = parse_definition({"name": "demo", "version": "3.0.0-rc.2+build.7"})
    payload = definition_to_dict(definition)
    assert payload["version"] == "3.0.0-rc.2+build.7"
    assert parse_definition(payload) == definition


def test_missing_manifest_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(RegistryError, match="no manifest"):
        load_definition(tmp_path)


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"version": "1.0.0"}, "name"),
        ({"name": "demo", "version": "1.0"}, "version"),
        ({"name": "demo", "version": "1.0.0", "beta": "yes"}, "beta"),
        ({"name": "demo", "version": "1.0.0", "files": {"a": 1}}, "files"),
        (
            {"name": "demo", "version": "1.0.0", "files": [{"install_location": {"SdRoot": "x"}, "filename": "a"}]},
            "unsupported install location",
        ),
        ({"name": "demo", "version": "1.0.0", "folders": [{"install_root_location": "/sd/x"}]}, "root_name"),
    ],
)
def test_parse_definition_rejects_invalid(payload: dict, message: str) -> None:
    with pytest.raises(RegistryError, match=message):
        parse_definition(payload)


def test_unparseable_manifest(tmp_path: Path) -> None:
    (tmp_path / "plugin.toml").write_text("name = ", encoding="utf-8")
    with pytest.raises(RegistryError, match="failed to parse"):
        load_definition(tmp_path)
