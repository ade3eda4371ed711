"""JSON codec for the control channel and index framing for the data channel."""

from __future__ import annotations

import base64
import binascii
import json
import struct
from typing import Any, Mapping

from .errors import ProtocolDecodeError
from .types import (
    MAX_DOWNLOAD_INDEX,
    ArtifactEntry,
    InstallLocation,
    ResponseCode,
    UpdateRequest,
    UpdateResponse,
)

REQUEST_TYPE_UPDATE = "Update"
INDEX_SIZE = 8
_INDEX_STRUCT = struct.Struct(">Q")


def encode_index(index: int) -> bytes:
    if not 0 <= index <= MAX_DOWNLOAD_INDEX:
        raise ValueError(f"download index out of range: {index}")
    return _INDEX_STRUCT.pack(index)


def decode_index(payload: bytes) -> int:
    if len(payload) != INDEX_SIZE:
        raise ProtocolDecodeError(f"expected {INDEX_SIZE} index bytes, got {len(payload)}")
    return _INDEX_STRUCT.unpack(payload)[0]


def location_to_dict(location: InstallLocation) -> dict[str, str]:
    return {location.kind: location.value}


def location_from_dict(payload: Any) -> InstallLocation:
    if not isinstance(payload, Mapping) or len(payload) != 1:
        raise ProtocolDecodeError("install_location must be an object with exactly one variant")
    kind, value = next(iter(payload.items()))
    if not isinstance(value, str):
        raise ProtocolDecodeError(f"install_location.{kind} must be a string")
    return InstallLocation(kind=str(kind), value=value)


def encode_request(request: UpdateRequest) -> bytes:
    payload = {
        "type": REQUEST_TYPE_UPDATE,
        "plugin_name": request.plugin_name,
        "plugin_version": request.plugin_version,
        "beta": request.beta,
        "options": dict(request.options) if request.options is not None else None,
    }
    return (json.dumps(payload) + "\n").encode("utf-8")


def decode_request(raw: bytes | str) -> UpdateRequest:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        payload = json.loads(text.strip())
    except json.JSONDecodeError as exc:
        raise ProtocolDecodeError("request is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise ProtocolDecodeError("request must be an object")
    if payload.get("type") != REQUEST_TYPE_UPDATE:
        raise ProtocolDecodeError(f"unsupported request type: {payload.get('type')!r}")
    name = payload.get("plugin_name")
    version = payload.get("plugin_version")
    if not isinstance(name, str) or not name.strip():
        raise ProtocolDecodeError("plugin_name is required")
    if not isinstance(version, str) or not version.strip():
        raise ProtocolDecodeError("plugin_version is required")
    beta = payload.get("beta")
    if beta is not None and not isinstance(beta, bool):
        raise ProtocolDecodeError("beta must be a boolean or null")
    options = payload.get("options")
    if options is not None and not isinstance(options, dict):
        raise ProtocolDecodeError("options must be an object or null")
    return UpdateRequest(plugin_name=name, plugin_version=version, beta=beta, options=options)


def response_to_dict(response: UpdateResponse) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "code": response.code.value,
        "plugin_name": response.plugin_name,
        "required_files": [
            {
                "install_location": location_to_dict(entry.install_location),
                "download_index": entry.download_index,
            }
            for entry in response.required_files
        ],
    }
    optional = {
        "new_version": response.new_version,
        "beta": response.beta,
        "min_host_version": response.min_host_version,
        "description": response.description,
        "changelog": response.changelog,
    }
    for key, value in optional.items():
        if value is not None:
            payload[key] = value
    if response.images:
        payload["images"] = [base64.b64encode(image).decode("ascii") for image in response.images]
    return payload


def encode_response(response: UpdateResponse) -> bytes:
    return json.dumps(response_to_dict(response)).encode("utf-8")


def decode_response(raw: bytes | str) -> UpdateResponse:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolDecodeError(f"failed to parse update server response: {text[:200]!r}") from exc
    if not isinstance(payload, dict):
        raise ProtocolDecodeError("response must be an object")

    name = payload.get("plugin_name")
    if not isinstance(name, str):
        raise ProtocolDecodeError("response.plugin_name must be a string")
    files_raw = payload.get("required_files")
    if not isinstance(files_raw, list):
        raise ProtocolDecodeError("response.required_files must be a list")

    files: list[ArtifactEntry] = []
    for item in files_raw:
        if not isinstance(item, dict):
            raise ProtocolDecodeError("required_files entries must be objects")
        index = item.get("download_index")
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index <= MAX_DOWNLOAD_INDEX:
            raise ProtocolDecodeError(f"invalid download_index: {index!r}")
        files.append(
            ArtifactEntry(
                install_location=location_from_dict(item.get("install_location")),
                download_index=index,
            )
        )

    images: list[bytes] = []
    for image in payload.get("images") or []:
        try:
            images.append(base64.b64decode(str(image), validate=True))
        except (binascii.Error, ValueError) as exc:
            raise ProtocolDecodeError("images must be base64 strings") from exc

    return UpdateResponse(
        code=ResponseCode.parse(payload.get("code")),
        plugin_name=name,
        required_files=tuple(files),
        new_version=_optional_str(payload.get("new_version")),
        beta=payload.get("beta") if isinstance(payload.get("beta"), bool) else None,
        min_host_version=_optional_str(payload.get("min_host_version")),
        description=_optional_str(payload.get("description")),
        changelog=_optional_str(payload.get("changelog")),
        images=tuple(images),
    )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
