"""Client and server settings loaded from ``cup.toml`` and ``CUP_*`` env vars."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping

from cup_core.protocol.errors import ConfigError

DEFAULT_CONTROL_PORT = 45000
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_PRIMARY_EXTENSIONS = (".nro",)
DEFAULT_MARKER_PATH = Path("~") / ".cup" / "installing.tmpfile"
CONFIG_FILENAME = "cup.toml"


def _to_port(value: Any, key: str) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from exc
    if not 0 <= port <= 65535:
        raise ConfigError(f"{key} out of range: {port}")
    return port


def _to_optional_port(value: Any, key: str) -> int | None:
    if value is None or value == "":
        return None
    return _to_port(value, key)


def _to_timeout(value: Any) -> float:
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"timeout_seconds must be a number, got {value!r}") from exc
    if timeout <= 0:
        raise ConfigError("timeout_seconds must be positive")
    return timeout


def _to_extensions(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        raise ConfigError("primary_extensions must be a list or comma-separated string")
    out: list[str] = []
    for item in items:
        ext = item.strip()
        if not ext:
            continue
        out.append(ext if ext.startswith(".") else f".{ext}")
    return tuple(out)


def load_config_file(path: Path | None) -> dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    return payload


def _section(payload: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = payload.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"[{name}] must be a table")
    return section


@dataclass(frozen=True)
class ClientSettings:
    host: str = "127.0.0.1"
    control_port: int = DEFAULT_CONTROL_PORT
    data_port: int | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    marker_path: Path = DEFAULT_MARKER_PATH
    primary_extensions: tuple[str, ...] = DEFAULT_PRIMARY_EXTENSIONS

    @property
    def resolved_data_port(self) -> int:
        return self.data_port if self.data_port is not None else self.control_port + 1

    @property
    def resolved_marker_path(self) -> Path:
        return self.marker_path.expanduser()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ClientSettings":
        settings = cls()
        if "host" in data:
            settings = replace(settings, host=str(data["host"]).strip() or settings.host)
        if "control_port" in data:
            settings = replace(settings, control_port=_to_port(data["control_port"], "control_port"))
        if "data_port" in data:
            settings = replace(settings, data_port=_to_optional_port(data["data_port"], "data_port"))
        if "timeout_seconds" in data:
            settings = replace(settings, timeout_seconds=_to_timeout(data["timeout_seconds"]))
        if "marker_path" in data:
            settings = replace(settings, marker_path=Path(str(data["marker_path"])))
        if "primary_extensions" in data:
            settings = replace(settings, primary_extensions=_to_extensions(data["primary_extensions"]))
        return settings

    @classmethod
    def load(cls, config_path: Path | None = None, env: Mapping[str, str] | None = None) -> "ClientSettings":
        payload = load_config_file(config_path)
        merged = dict(_section(payload, "client"))
        merged.update(_env_overrides(env if env is not None else os.environ, _CLIENT_ENV))
        return cls.from_mapping(merged)


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    control_port: int = DEFAULT_CONTROL_PORT
    data_port: int | None = None
    plugins_dir: Path = Path("plugins")
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def resolved_data_port(self) -> int:
        if self.data_port is not None:
            return self.data_port
        # Port 0 asks the OS for any free port on both channels.
        return 0 if self.control_port == 0 else self.control_port + 1

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ServerSettings":
        settings = cls()
        if "host" in data:
            settings = replace(settings, host=str(data["host"]).strip() or settings.host)
        if "control_port" in data:
            settings = replace(settings, control_port=_to_port(data["control_port"], "control_port"))
        if "data_port" in data:
            settings = replace(settings, data_port=_to_optional_port(data["data_port"], "data_port"))
        if "plugins_dir" in data:
            settings = replace(settings, plugins_dir=Path(str(data["plugins_dir"])))
        if "timeout_seconds" in data:
            settings = replace(settings, timeout_seconds=_to_timeout(data["timeout_seconds"]))
        return settings

    @classmethod
    def load(cls, config_path: Path | None = None, env: Mapping[str, str] | None = None) -> "ServerSettings":
        payload = load_config_file(config_path)
        merged = dict(_section(payload, "server"))
        merged.update(_env_overrides(env if env is not None else os.environ, _SERVER_ENV))
        return cls.from_mapping(merged)


_CLIENT_ENV = {
    "CUP_SERVER_HOST": "host",
    "CUP_CONTROL_PORT": "control_port",
    "CUP_DATA_PORT": "data_port",
    "CUP_TIMEOUT_SECONDS": "timeout_seconds",
    "CUP_MARKER_PATH": "marker_path",
    "CUP_PRIMARY_EXTENSIONS": "primary_extensions",
}

_SERVER_ENV = {
    "CUP_BIND_HOST": "host",
    "CUP_CONTROL_PORT": "control_port",
    "CUP_DATA_PORT": "data_port",
    "CUP_PLUGINS_DIR": "plugins_dir",
    "CUP_TIMEOUT_SECONDS": "timeout_seconds",
}


def _env_overrides(env: Mapping[str, str], mapping: Mapping[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for env_name, key in mapping.items():
        value = env.get(env_name)
        if value is not None and value.strip():
            out[key] = value.strip()
    return out
