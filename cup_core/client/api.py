"""Entry points for host processes.

All functions report failures through logging and a ``False``/``None`` result;
a caller that gets ``False`` can safely retry later.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace

from cup_core.config import ClientSettings
from cup_core.protocol.errors import ConfigError, UpdateError
from cup_core.protocol.types import UpdateRequest, UpdateResponse

from .installer import FilesystemInstaller, Installer, RestartHandler, restart_process
from .machine import ExtensionSkipPolicy, InstallStateMachine, SkipPolicy
from .state import FileRecoveryMarker, RecoveryMarkerStore
from .transport import UpdateClient

logger = logging.getLogger(__name__)


def settings_for_address(address: str, settings: ClientSettings | None = None) -> ClientSettings:
    """Apply ``host`` or ``host:port`` to the settings; the port is the control port."""

    base = settings or ClientSettings()
    value = address.strip()
    if not value:
        return base
    host, port = value, None
    if value.startswith("["):
        closing = value.find("]")
        host = value[1:closing]
        rest = value[closing + 1 :]
        if rest.startswith(":"):
            port = rest[1:]
    elif value.count(":") == 1:
        # More than one colon is a bare IPv6 address without a port.
        host, port = value.split(":", 1)
    updated = replace(base, host=host)
    if port:
        if not port.isdigit():
            raise ConfigError(f"invalid port in server address: {address!r}")
        updated = replace(updated, control_port=int(port), data_port=None)
    return updated


def _machine(
    settings: ClientSettings,
    installer: Installer,
    *,
    marker: RecoveryMarkerStore | None,
    skip_policy: SkipPolicy | None,
    restart_handler: RestartHandler,
    cancel_event: threading.Event | None,
) -> InstallStateMachine:
    return InstallStateMachine(
        UpdateClient.from_settings(settings),
        installer,
        marker or FileRecoveryMarker(settings.resolved_marker_path),
        skip_policy=skip_policy or ExtensionSkipPolicy(settings.primary_extensions),
        restart_handler=restart_handler,
        cancel_event=cancel_event,
    )


def custom_check_update(
    address: str,
    plugin_name: str,
    plugin_version: str,
    allow_beta: bool,
    installer: Installer,
    *,
    settings: ClientSettings | None = None,
    marker: RecoveryMarkerStore | None = None,
    skip_policy: SkipPolicy | None = None,
    restart_handler: RestartHandler = restart_process,
    cancel_event: threading.Event | None = None,
) -> bool:
    """Query the server and install an available update with a custom installer."""

    machine = _machine(
        settings_for_address(address, settings),
        installer,
        marker=marker,
        skip_policy=skip_policy,
        restart_handler=restart_handler,
        cancel_event=cancel_event,
    )
    return machine.run(plugin_name, plugin_version, allow_beta).success


def check_update(
    address: str,
    plugin_name: str,
    plugin_version: str,
    allow_beta: bool,
    *,
    settings: ClientSettings | None = None,
) -> bool:
    """Install an update using the default filesystem installer.

    Args:
        address: update server host, optionally ``host:port``.
        plugin_name: name of the plugin to update.
        plugin_version: currently installed version.
        allow_beta: allow beta releases to be offered.
    """

    return custom_check_update(
        address, plugin_name, plugin_version, allow_beta, FilesystemInstaller(), settings=settings
    )


def get_update_info(
    address: str,
    plugin_name: str,
    plugin_version: str,
    allow_beta: bool,
    *,
    settings: ClientSettings | None = None,
) -> UpdateResponse | None:
    client = UpdateClient.from_settings(settings_for_address(address, settings))
    try:
        return client.query(UpdateRequest(plugin_name=plugin_name, plugin_version=plugin_version, beta=allow_beta))
    except UpdateError as exc:
        logger.warning("[%s updater] update info query failed: %s", plugin_name, exc)
        return None


def install_update(
    address: str,
    response: UpdateResponse,
    *,
    installer: Installer | None = None,
    settings: ClientSettings | None = None,
    marker: RecoveryMarkerStore | None = None,
    restart_handler: RestartHandler = restart_process,
) -> bool:
    """Install a response previously obtained from ``get_update_info``."""

    if not response.has_update:
        logger.info("[%s updater] response carries no update (%s)", response.plugin_name, response.code.value)
        return False
    machine = _machine(
        settings_for_address(address, settings),
        installer or FilesystemInstaller(),
        marker=marker,
        skip_policy=None,
        restart_handler=restart_handler,
        cancel_event=None,
    )
    return machine.install(response).success
