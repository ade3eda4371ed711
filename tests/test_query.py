from __future__ import annotations

import json
from pathlib import Path

import pytest

from cup_core.protocol import ResponseCode, UpdateRequest, encode_request
from cup_registry.registry import RegistrySnapshot, build_registry
from cup_registry.server import answer_query


def _request(name: str, version: str, beta: bool | None = None, options: dict | None = None) -> bytes:
    return encode_request(UpdateRequest(plugin_name=name, plugin_version=version, beta=beta, options=options))


@pytest.fixture
def snapshot(plugins_dir: Path, make_package) -> RegistrySnapshot:
    make_package(
        plugins_dir,
        "nightly",
        'name = "nightly"\nversion = "2.0.0-beta.1"\nbeta = true\nmin_host_version = "1.4.0"\n'
        '[[files]]\ninstall_location = "/sd/nightly.nro"\nfilename = "nightly.nro"\n',
        {"nightly.nro": b"N"},
    )
    return RegistrySnapshot(build_registry(plugins_dir))


def test_update_offered_with_artifacts_in_install_order(snapshot: RegistrySnapshot) -> None:
    response = answer_query(snapshot, _request("demo", "0.9.0"))
    assert response.code is ResponseCode.UPDATE
    assert response.plugin_name == "demo"
    assert response.new_version == "1.0.0"
    assert response.beta is False
    assert response.description == "Demo plugin"
    assert response.changelog == "- first release\n"
    assert response.images == (b"\x89PNG",)
    assert [entry.install_location.value for entry in response.required_files] == [
        "/sd/config/demo/a.txt",
        "/sd/config/demo/sub/b.txt",
        "/sd/atmosphere/demo/main.nro",
        "/sd/config/demo/",
    ]
    assert [snapshot.artifact_bytes(entry.download_index) for entry in response.required_files] == [
        b"A",
        b"B",
        b"NRO",
        b"",
    ]


@pytest.mark.parametrize("version", ["1.0.0", "1.0.1", "1.0.0+local", "2.0.0-alpha"])
def test_no_update_when_client_is_current(snapshot: RegistrySnapshot, version: str) -> None:
    response = answer_query(snapshot, _request("demo", version))
    assert response.code is ResponseCode.NO_UPDATE
    assert response.required_files == ()


def test_prerelease_client_gets_release(snapshot: RegistrySnapshot) -> None:
    assert answer_query(snapshot, _request("demo", "1.0.0-rc.1")).code is ResponseCode.UPDATE


def test_unknown_plugin(snapshot: RegistrySnapshot) -> None:
    response = answer_query(snapshot, _request("missing", "1.0.0"))
    assert response.code is ResponseCode.PLUGIN_NOT_FOUND
    assert response.plugin_name == "missing"


@pytest.mark.parametrize("beta", [None, False])
def test_beta_package_withheld_unless_opted_in(snapshot: RegistrySnapshot, beta: bool | None) -> None:
    assert answer_query(snapshot, _request("nightly", "1.0.0", beta=beta)).code is ResponseCode.NO_UPDATE
    offered = answer_query(snapshot, _request("nightly", "1.0.0", beta=True))
    assert offered.code is ResponseCode.UPDATE
    assert offered.beta is True
    assert offered.min_host_version == "1.4.0"


def test_host_version_below_minimum(snapshot: RegistrySnapshot) -> None:
    old_host = _request("nightly", "1.0.0", beta=True, options={"host_version": "1.3.9"})
    new_host = _request("nightly", "1.0.0", beta=True, options={"host_version": "1.4.0"})
    assert answer_query(snapshot, old_host).code is ResponseCode.NO_UPDATE
    assert answer_query(snapshot, new_host).code is ResponseCode.UPDATE


@pytest.mark.parametrize(
    "raw",
    [
        b"garbage\n",
        b"",
        json.dumps({"type": "Update", "plugin_name": "demo"}).encode(),
        json.dumps({"type": "Update", "plugin_name": "demo", "plugin_version": "one"}).encode(),
        json.dumps(
            {"type": "Update", "plugin_name": "demo", "plugin_version": "1.0.0", "options": {"host_version": "x"}}
        ).encode(),
    ],
)
def test_invalid_requests(snapshot: RegistrySnapshot, raw: bytes) -> None:
    response = answer_query(snapshot, raw)
    assert response.code is ResponseCode.INVALID_REQUEST
    assert response.required_files == ()
