"""Server-side package registry built from a directory of package definitions.

Each immediate subdirectory of the registry root holds one definition. A
definition that cannot be resolved is reported and skipped; it never prevents
the other definitions from being served.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from cup_core.protocol.errors import RegistryError
from cup_core.protocol.types import ArtifactEntry, InstallLocation
from cup_core.protocol.versioning import SemVer

from .manifest import FolderEntry, MetadataEntry, PackageDefinition, find_manifest, load_definition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageMetadata:
    name: str | None = None
    images: tuple[bytes, ...] = field(default=(), repr=False)
    description: str | None = None
    changelog: str | None = None


@dataclass(frozen=True)
class Package:
    name: str
    plugin_version: SemVer
    beta: bool
    min_host_version: SemVer
    artifacts: tuple[tuple[InstallLocation, bytes], ...] = field(repr=False)
    metadata: PackageMetadata = PackageMetadata()


@dataclass(frozen=True)
class DefinitionError:
    directory: Path
    message: str


@dataclass(frozen=True)
class RegistryBuild:
    packages: tuple[Package, ...]
    errors: tuple[DefinitionError, ...]


def _resolve_source(path: Path, base: Path) -> Path:
    return path if path.is_absolute() else base / path


def _walk_files(root: Path) -> list[Path]:
    return sorted(item for item in root.rglob("*") if item.is_file())


def _join_install_path(root: str, relative: Path) -> str:
    return f"{root.rstrip('/')}/{relative.as_posix()}"


def folder_artifacts(folder: FolderEntry, base: Path) -> list[tuple[InstallLocation, bytes]]:
    """Flatten one folder tree into artifacts rooted at its install location."""

    root = _resolve_source(folder.root_name, base)
    if not root.is_dir():
        raise RegistryError(f"folder not found: {root}")
    if not folder.install_root_location.is_absolute_path:
        raise RegistryError(f"unsupported install location for folder {root}")
    install_root = folder.install_root_location.value
    anchor = root.resolve()

    artifacts: list[tuple[InstallLocation, bytes]] = []
    for file_path in _walk_files(root):
        try:
            file_path.resolve().relative_to(anchor)
        except ValueError as exc:
            raise RegistryError(f"{file_path} does not lie under folder root {anchor}") from exc
        relative = file_path.relative_to(root)
        install_path = _join_install_path(install_root, relative)
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise RegistryError(f"failed to read {file_path}: {exc}") from exc
        artifacts.append((InstallLocation.absolute(install_path), data))
    return artifacts


def _load_metadata(entry: MetadataEntry | None, base: Path) -> PackageMetadata:
    if entry is None:
        return PackageMetadata()
    images: list[bytes] = []
    for image in entry.images:
        path = _resolve_source(image, base)
        try:
            images.append(path.read_bytes())
        except OSError as exc:
            logger.debug("metadata image unreadable path=%s err=%s", path, exc)
            images.append(b"")
    changelog: str | None = None
    if entry.changelog is not None:
        path = _resolve_source(entry.changelog, base)
        try:
            changelog = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("metadata changelog unreadable path=%s err=%s", path, exc)
    return PackageMetadata(
        name=entry.name,
        images=tuple(images),
        description=entry.description,
        changelog=changelog,
    )


def resolve_definition(definition: PackageDefinition, base: Path | None = None) -> Package:
    """Materialize every artifact of a definition into memory."""

    base = base or definition.directory or Path.cwd()

    plain: list[tuple[InstallLocation, bytes]] = []
    for entry in definition.files:
        path = _resolve_source(entry.filename, base)
        try:
            plain.append((entry.install_location, path.read_bytes()))
        except OSError as exc:
            raise RegistryError(f"failed to read declared file {path}: {exc}") from exc

    flattened: list[tuple[InstallLocation, bytes]] = []
    sentinels: list[tuple[InstallLocation, bytes]] = []
    for folder in definition.folders:
        flattened.extend(folder_artifacts(folder, base))
        sentinels.append((InstallLocation.directory(folder.install_root_location.value), b""))

    return Package(
        name=definition.name,
        plugin_version=definition.version,
        beta=definition.beta,
        min_host_version=definition.min_host_version,
        artifacts=tuple(flattened + plain + sentinels),
        metadata=_load_metadata(definition.metadata, base),
    )


def build_registry(root: Path) -> RegistryBuild:
    if not root.is_dir():
        raise RegistryError(f"registry root not found: {root}")

    packages: list[Package] = []
    errors: list[DefinitionError] = []
    seen: set[str] = set()
    for directory in sorted(path for path in root.iterdir() if path.is_dir()):
        if find_manifest(directory) is None:
            errors.append(DefinitionError(directory, "no manifest found"))
            logger.warning("skipping %s: no manifest found", directory)
            continue
        try:
            package = resolve_definition(load_definition(directory), directory)
        except RegistryError as exc:
            errors.append(DefinitionError(directory, str(exc)))
            logger.error("skipping %s: %s", directory, exc)
            continue
        if package.name in seen:
            errors.append(DefinitionError(directory, f"duplicate package name {package.name!r}"))
            logger.error("skipping %s: duplicate package name %s", directory, package.name)
            continue
        seen.add(package.name)
        packages.append(package)
        logger.info(
            "registered %s %s (%s artifacts%s)",
            package.name,
            package.plugin_version,
            len(package.artifacts),
            ", beta" if package.beta else "",
        )
    return RegistryBuild(packages=tuple(packages), errors=tuple(errors))


class RegistrySnapshot:
    """Immutable view of one registry build with a flat download-index table."""

    def __init__(self, build: RegistryBuild) -> None:
        self.build = build
        self._packages: dict[str, Package] = {}
        self._entries: dict[str, tuple[ArtifactEntry, ...]] = {}
        table: list[bytes] = []
        for package in build.packages:
            entries: list[ArtifactEntry] = []
            for location, data in package.artifacts:
                entries.append(ArtifactEntry(install_location=location, download_index=len(table)))
                table.append(data)
            self._packages[package.name] = package
            self._entries[package.name] = tuple(entries)
        self._table = tuple(table)

    @classmethod
    def empty(cls) -> "RegistrySnapshot":
        return cls(RegistryBuild(packages=(), errors=()))

    @property
    def packages(self) -> tuple[Package, ...]:
        return self.build.packages

    def lookup(self, name: str) -> Package | None:
        return self._packages.get(name)

    def entries_for(self, name: str) -> tuple[ArtifactEntry, ...]:
        return self._entries.get(name, ())

    def artifact_bytes(self, index: int) -> bytes | None:
        if 0 <= index < len(self._table):
            return self._table[index]
        return None


class PackageRegistry:
    """Holds the current snapshot; ``rebuild`` replaces it wholesale."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = threading.Lock()
        self._snapshot = RegistrySnapshot.empty()

    @property
    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return self._snapshot

    def rebuild(self) -> RegistryBuild:
        build = build_registry(self.root)
        with self._lock:
            self._snapshot = RegistrySnapshot(build)
        logger.info("registry rebuilt packages=%s errors=%s", len(build.packages), len(build.errors))
        return build

    def lookup(self, name: str) -> Package | None:
        return self.snapshot.lookup(name)
