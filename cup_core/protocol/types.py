"""Update protocol datatypes."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .errors import UnsupportedInstallLocationError

ABSOLUTE_PATH = "AbsolutePath"
MAX_DOWNLOAD_INDEX = 2**64 - 1


class ResponseCode(str, enum.Enum):
    NO_UPDATE = "NoUpdate"
    UPDATE = "Update"
    INVALID_REQUEST = "InvalidRequest"
    PLUGIN_NOT_FOUND = "PluginNotFound"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "ResponseCode":
        for code in cls:
            if code.value == value:
                return code
        return cls.UNKNOWN


@dataclass(frozen=True)
class InstallLocation:
    """Where an artifact is placed; only ``AbsolutePath`` has defined semantics."""

    kind: str
    value: str

    @classmethod
    def absolute(cls, path: str | Path) -> "InstallLocation":
        return cls(kind=ABSOLUTE_PATH, value=str(path))

    @classmethod
    def directory(cls, path: str | Path) -> "InstallLocation":
        text = str(path)
        return cls(kind=ABSOLUTE_PATH, value=text if text.endswith("/") else f"{text}/")

    @property
    def is_absolute_path(self) -> bool:
        return self.kind == ABSOLUTE_PATH

    @property
    def is_directory(self) -> bool:
        """A trailing slash marks the root of a folder tree."""
        return self.is_absolute_path and self.value.endswith("/")

    def path(self) -> Path:
        if not self.is_absolute_path:
            raise UnsupportedInstallLocationError(f"unsupported install location: {self.kind}")
        return Path(self.value)


@dataclass(frozen=True)
class ArtifactEntry:
    install_location: InstallLocation
    download_index: int


@dataclass(frozen=True)
class UpdateRequest:
    plugin_name: str
    plugin_version: str
    beta: bool | None = None
    options: Mapping[str, Any] | None = None

    @property
    def allow_beta(self) -> bool:
        return bool(self.beta)

    @property
    def host_version(self) -> str | None:
        if not self.options:
            return None
        value = self.options.get("host_version")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class UpdateResponse:
    code: ResponseCode
    plugin_name: str
    required_files: tuple[ArtifactEntry, ...] = ()
    new_version: str | None = None
    beta: bool | None = None
    min_host_version: str | None = None
    description: str | None = None
    changelog: str | None = None
    images: tuple[bytes, ...] = field(default=(), repr=False)

    @property
    def has_update(self) -> bool:
        return self.code is ResponseCode.UPDATE
