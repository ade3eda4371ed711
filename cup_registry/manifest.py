"""Package definition manifests (``plugin.toml`` or ``plugin.yml``)."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from cup_core.protocol.errors import RegistryError
from cup_core.protocol.types import InstallLocation
from cup_core.protocol.versioning import LOWEST_VERSION, SemVer, parse_semver
from cup_core.protocol.wire import location_to_dict

MANIFEST_FILENAMES = ("plugin.toml", "plugin.yml", "plugin.yaml")


@dataclass(frozen=True)
class FileEntry:
    install_location: InstallLocation
    filename: Path


@dataclass(frozen=True)
class FolderEntry:
    install_root_location: InstallLocation
    root_name: Path


@dataclass(frozen=True)
class MetadataEntry:
    name: str | None = None
    images: tuple[Path, ...] = ()
    description: str | None = None
    changelog: Path | None = None


@dataclass(frozen=True)
class PackageDefinition:
    name: str
    version: SemVer
    beta: bool = False
    files: tuple[FileEntry, ...] = ()
    folders: tuple[FolderEntry, ...] = ()
    min_host_version: SemVer = LOWEST_VERSION
    metadata: MetadataEntry | None = None
    directory: Path | None = field(default=None, compare=False)


def find_manifest(directory: Path) -> Path | None:
    for filename in MANIFEST_FILENAMES:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def read_manifest(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix == ".toml":
            payload = tomllib.loads(text)
        else:
            payload = yaml.safe_load(text) or {}
    except (tomllib.TOMLDecodeError, yaml.YAMLError) as exc:
        raise RegistryError(f"failed to parse manifest {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RegistryError(f"manifest must be a mapping/dict: {path}")
    return payload


def load_definition(directory: Path) -> PackageDefinition:
    manifest_path = find_manifest(directory)
    if manifest_path is None:
        raise RegistryError(f"no manifest ({', '.join(MANIFEST_FILENAMES)}) in {directory}")
    try:
        payload = read_manifest(manifest_path)
    except (OSError, UnicodeDecodeError) as exc:
        raise RegistryError(f"failed to read manifest {manifest_path}: {exc}") from exc
    return parse_definition(payload, directory=directory)


def parse_definition(payload: Mapping[str, Any], *, directory: Path | None = None) -> PackageDefinition:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise RegistryError("manifest field 'name' is required")
    version = _parse_version(payload.get("version"), "version")

    host_raw = payload.get("min_host_version", payload.get("skyline_version"))
    min_host_version = LOWEST_VERSION if host_raw is None else _parse_version(host_raw, "min_host_version")

    beta = payload.get("beta")
    if beta is not None and not isinstance(beta, bool):
        raise RegistryError("manifest field 'beta' must be a boolean")

    files = tuple(_parse_file(item) for item in _as_list(payload.get("files"), "files"))
    folders = tuple(_parse_folder(item) for item in _as_list(payload.get("folders"), "folders"))

    metadata_raw = payload.get("metadata")
    metadata = _parse_metadata(metadata_raw) if metadata_raw is not None else None

    return PackageDefinition(
        name=name,
        version=version,
        beta=bool(beta),
        files=files,
        folders=folders,
        min_host_version=min_host_version,
        metadata=metadata,
        directory=directory,
    )


def definition_to_dict(definition: PackageDefinition) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": definition.name,
        "version": str(definition.version),
        "beta": definition.beta,
        "min_host_version": str(definition.min_host_version),
        "files": [
            {"install_location": location_to_dict(item.install_location), "filename": str(item.filename)}
            for item in definition.files
        ],
        "folders": [
            {
                "install_root_location": location_to_dict(item.install_root_location),
                "root_name": str(item.root_name),
            }
            for item in definition.folders
        ],
    }
    if definition.metadata is not None:
        meta = definition.metadata
        payload["metadata"] = {
            key: value
            for key, value in {
                "name": meta.name,
                "images": [str(path) for path in meta.images] or None,
                "description": meta.description,
                "changelog": str(meta.changelog) if meta.changelog else None,
            }.items()
            if value is not None
        }
    return payload


def _parse_version(value: Any, key: str) -> SemVer:
    try:
        return parse_semver(str(value) if value is not None else "")
    except ValueError as exc:
        raise RegistryError(f"manifest field '{key}': {exc}") from exc


def _as_list(value: Any, key: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise RegistryError(f"manifest field '{key}' must be a list")
    return value


def _parse_location(value: Any, key: str) -> InstallLocation:
    if isinstance(value, str):
        return InstallLocation.absolute(value)
    if isinstance(value, Mapping) and len(value) == 1:
        kind, raw = next(iter(value.items()))
        location = InstallLocation(kind=str(kind), value=str(raw))
        if not location.is_absolute_path:
            raise RegistryError(f"{key}: unsupported install location variant {kind!r}")
        return location
    raise RegistryError(f"{key} must be a path string or {{AbsolutePath = \"...\"}}")


def _parse_file(item: Any) -> FileEntry:
    if not isinstance(item, Mapping):
        raise RegistryError("files entries must be tables")
    filename = item.get("filename", item.get("source_path"))
    if not filename:
        raise RegistryError("files entries require 'filename'")
    return FileEntry(
        install_location=_parse_location(item.get("install_location"), "files.install_location"),
        filename=Path(str(filename)),
    )


def _parse_folder(item: Any) -> FolderEntry:
    if not isinstance(item, Mapping):
        raise RegistryError("folders entries must be tables")
    root_name = item.get("root_name")
    if not root_name:
        raise RegistryError("folders entries require 'root_name'")
    return FolderEntry(
        install_root_location=_parse_location(
            item.get("install_root_location"), "folders.install_root_location"
        ),
        root_name=Path(str(root_name)),
    )


def _parse_metadata(item: Any) -> MetadataEntry:
    if not isinstance(item, Mapping):
        raise RegistryError("metadata must be a table")
    images = item.get("images") or []
    if not isinstance(images, list):
        raise RegistryError("metadata.images must be a list")
    changelog = item.get("changelog")
    description = item.get("description")
    name = item.get("name")
    return MetadataEntry(
        name=str(name) if name is not None else None,
        images=tuple(Path(str(path)) for path in images),
        description=str(description) if description is not None else None,
        changelog=Path(str(changelog)) if changelog else None,
    )
