from __future__ import annotations

import json

import pytest

from cup_core.protocol import (
    ArtifactEntry,
    InstallLocation,
    ProtocolDecodeError,
    ResponseCode,
    UnsupportedInstallLocationError,
    UpdateRequest,
    UpdateResponse,
    decode_index,
    decode_request,
    decode_response,
    encode_index,
    encode_request,
    encode_response,
)


def test_index_is_eight_bytes_big_endian() -> None:
    assert encode_index(1) == b"\x00\x00\x00\x00\x00\x00\x00\x01"
    assert encode_index(2**64 - 1) == b"\xff" * 8
    assert decode_index(b"\x00\x00\x00\x00\x00\x00\x01\x00") == 256
    with pytest.raises(ValueError):
        encode_index(-1)
    with pytest.raises(ProtocolDecodeError):
        decode_index(b"\x00\x01")


def test_request_is_one_json_line() -> None:
    raw = encode_request(UpdateRequest(plugin_name="demo", plugin_version="0.9.0", beta=True))
    assert raw.endswith(b"\n")
    assert raw.count(b"\n") == 1
    payload = json.loads(raw)
    assert payload == {
        "type": "Update",
        "plugin_name": "demo",
        "plugin_version": "0.9.0",
        "beta": True,
        "options": None,
    }
    request = decode_request(raw)
    assert request.plugin_name == "demo"
    assert request.allow_beta is True


def test_request_beta_null_means_not_allowed() -> None:
    request = decode_request('{"type":"Update","plugin_name":"demo","plugin_version":"1.0.0","beta":null,"options":null}')
    assert request.beta is None
    assert request.allow_beta is False
    assert request.host_version is None


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        '{"type":"Delete","plugin_name":"demo","plugin_version":"1.0.0"}',
        '{"type":"Update","plugin_version":"1.0.0"}',
        '{"type":"Update","plugin_name":"demo"}',
        '{"type":"Update","plugin_name":"demo","plugin_version":"1.0.0","beta":"yes"}',
        '{"type":"Update","plugin_name":"demo","plugin_version":"1.0.0","options":[1]}',
    ],
)
def test_decode_request_rejects_malformed(raw: str) -> None:
    with pytest.raises(ProtocolDecodeError):
        decode_request(raw)


def test_response_wire_shape() -> None:
    response = UpdateResponse(
        code=ResponseCode.UPDATE,
        plugin_name="demo",
        required_files=(ArtifactEntry(InstallLocation.absolute("/sd/demo/main.nro"), 3),),
        new_version="1.0.0",
        beta=False,
        images=(b"\x89PNG",),
    )
    payload = json.loads(encode_response(response))
    assert payload["code"] == "Update"
    assert payload["required_files"] == [
        {"install_location": {"AbsolutePath": "/sd/demo/main.nro"}, "download_index": 3}
    ]
    assert "description" not in payload

    decoded = decode_response(encode_response(response))
    assert decoded == response


def test_unknown_response_code_and_location_variant() -> None:
    raw = json.dumps(
        {
            "code": "Rebooting",
            "plugin_name": "demo",
            "required_files": [{"install_location": {"SdRoot": "demo"}, "download_index": 0}],
        }
    )
    response = decode_response(raw)
    assert response.code is ResponseCode.UNKNOWN
    location = response.required_files[0].install_location
    assert location.kind == "SdRoot"
    with pytest.raises(UnsupportedInstallLocationError):
        location.path()


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"{",
        b'{"code":"NoUpdate","required_files":[]}',
        b'{"code":"Update","plugin_name":"demo","required_files":[{"install_location":{"AbsolutePath":"/x"},"download_index":-1}]}',
        b'{"code":"Update","plugin_name":"demo","required_files":[{"install_location":{"AbsolutePath":"/x"},"download_index":true}]}',
        b'{"code":"Update","plugin_name":"demo","required_files":[],"images":["@@"]}',
    ],
)
def test_decode_response_rejects_malformed(raw: bytes) -> None:
    with pytest.raises(ProtocolDecodeError):
        decode_response(raw)
