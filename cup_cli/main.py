from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import NoReturn, Optional

import typer

from cup_core.client import (
    ConfirmingInstaller,
    FileRecoveryMarker,
    FilesystemInstaller,
    Installer,
    custom_check_update,
    get_update_info,
    settings_for_address,
)
from cup_core.config import ClientSettings, ServerSettings
from cup_core.logging_utils import configure_logging
from cup_core.protocol import ConfigError, RegistryError, UpdateResponse
from cup_core.protocol.wire import response_to_dict
from cup_registry import RegistryBuild, UpdateServer, build_registry

app = typer.Typer(help="Component update protocol: registry server and update client")

OUTPUT_FORMATS = ("text", "json")


def _check_format(value: str) -> str:
    if value not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"expected one of: {', '.join(OUTPUT_FORMATS)}")
    return value


def _fail(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(1)


def _load_server_settings(config: Optional[Path]) -> ServerSettings:
    try:
        return ServerSettings.load(config)
    except ConfigError as exc:
        _fail(str(exc))


def _load_client_settings(config: Optional[Path], server: Optional[str]) -> ClientSettings:
    try:
        settings = ClientSettings.load(config)
        return settings_for_address(server, settings) if server else settings
    except ConfigError as exc:
        _fail(str(exc))


def _print_build(build: RegistryBuild) -> None:
    for package in build.packages:
        beta = " beta" if package.beta else ""
        typer.echo(
            f"{package.name}@{package.plugin_version}{beta} "
            f"artifacts={len(package.artifacts)} min_host_version={package.min_host_version}"
        )
    for error in build.errors:
        typer.echo(f"skipped {error.directory}: {error.message}", err=True)


def _print_response(response: UpdateResponse) -> None:
    typer.echo(f"{response.plugin_name}: {response.code.value}")
    if not response.has_update:
        return
    typer.echo(f"new version: {response.new_version}{' (beta)' if response.beta else ''}")
    if response.min_host_version:
        typer.echo(f"min host version: {response.min_host_version}")
    if response.description:
        typer.echo(f"description: {response.description}")
    if response.changelog:
        typer.echo("changelog:")
        typer.echo(response.changelog.rstrip())
    for entry in response.required_files:
        typer.echo(f"  [{entry.download_index}] {entry.install_location.value}")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Also write logs to this file"),
) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO, log_file)


@app.command("serve")
def serve(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to cup.toml"),
    plugins_dir: Optional[Path] = typer.Option(None, "--plugins-dir", help="Registry root directory"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Control port; data port is port + 1"),
) -> None:
    """Build the registry and serve both channels until interrupted."""

    settings = _load_server_settings(config)
    if plugins_dir is not None:
        settings = replace(settings, plugins_dir=plugins_dir)
    if host:
        settings = replace(settings, host=host)
    if port is not None:
        settings = replace(settings, control_port=port, data_port=None)

    server = UpdateServer.from_settings(settings)
    try:
        build = server.rebuild()
    except RegistryError as exc:
        _fail(str(exc))
    _print_build(build)
    typer.echo(
        f"serving {len(build.packages)} package(s) from {settings.plugins_dir} "
        f"on {settings.host}:{settings.control_port} (data {settings.resolved_data_port})"
    )
    server.serve_forever()


@app.command("registry")
def registry(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to cup.toml"),
    plugins_dir: Optional[Path] = typer.Option(None, "--plugins-dir", help="Registry root directory"),
    fmt: str = typer.Option("text", "--format", callback=_check_format, help="text or json"),
) -> None:
    """Build the registry and print its packages and definition errors."""

    root = plugins_dir or _load_server_settings(config).plugins_dir
    try:
        build = build_registry(root)
    except RegistryError as exc:
        _fail(str(exc))

    if fmt == "json":
        payload = {
            "packages": [
                {
                    "name": package.name,
                    "version": str(package.plugin_version),
                    "beta": package.beta,
                    "min_host_version": str(package.min_host_version),
                    "artifacts": [location.value for location, _ in package.artifacts],
                }
                for package in build.packages
            ],
            "errors": [{"directory": str(error.directory), "message": error.message} for error in build.errors],
        }
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    _print_build(build)


@app.command("info")
def info(
    name: str = typer.Argument(..., help="Plugin name"),
    version: str = typer.Argument(..., help="Installed version"),
    server: Optional[str] = typer.Option(None, "--server", help="host or host:port"),
    beta: bool = typer.Option(False, "--beta", help="Accept beta releases"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to cup.toml"),
    fmt: str = typer.Option("text", "--format", callback=_check_format, help="text or json"),
) -> None:
    """Ask the server whether an update exists without installing it."""

    settings = _load_client_settings(config, server)
    response = get_update_info("", name, version, beta, settings=settings)
    if response is None:
        _fail(f"could not query {settings.host}:{settings.control_port}")

    if fmt == "json":
        typer.echo(json.dumps(response_to_dict(response), indent=2, ensure_ascii=False))
    else:
        _print_response(response)
    if not response.has_update:
        raise typer.Exit(1)


@app.command("check")
def check(
    name: str = typer.Argument(..., help="Plugin name"),
    version: str = typer.Argument(..., help="Installed version"),
    server: Optional[str] = typer.Option(None, "--server", help="host or host:port"),
    beta: bool = typer.Option(False, "--beta", help="Accept beta releases"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Install without asking"),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to cup.toml"),
) -> None:
    """Check for an update and install it."""

    settings = _load_client_settings(config, server)
    marker = FileRecoveryMarker(settings.resolved_marker_path)
    installer: Installer = FilesystemInstaller()
    if not yes:
        installer = ConfirmingInstaller(installer, typer.confirm, recovering=marker.exists)

    ok = custom_check_update("", name, version, beta, installer, settings=settings, marker=marker)
    if not ok:
        typer.echo(f"{name}: no update installed", err=True)
        raise typer.Exit(1)
    typer.echo(f"{name}: update installed")


def main(argv: list[str] | None = None) -> int:
    try:
        app(args=argv, prog_name="cup")
    except SystemExit as exc:
        if exc.code is None:
            return 0
        return exc.code if isinstance(exc.code, int) else 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
