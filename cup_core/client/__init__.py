"""Update client: transport, installer collaborators, install state machine."""

from .api import check_update, custom_check_update, get_update_info, install_update, settings_for_address
from .installer import ConfirmingInstaller, FilesystemInstaller, Installer, restart_process
from .machine import (
    ExtensionSkipPolicy,
    InstallOutcome,
    InstallState,
    InstallStateMachine,
    NeverSkipPolicy,
    SkipPolicy,
)
from .state import FileRecoveryMarker, MemoryRecoveryMarker, RecoveryMarkerStore
from .transport import UpdateClient

__all__ = [
    "check_update",
    "custom_check_update",
    "get_update_info",
    "install_update",
    "settings_for_address",
    "Installer",
    "FilesystemInstaller",
    "ConfirmingInstaller",
    "restart_process",
    "InstallState",
    "InstallOutcome",
    "InstallStateMachine",
    "SkipPolicy",
    "ExtensionSkipPolicy",
    "NeverSkipPolicy",
    "RecoveryMarkerStore",
    "FileRecoveryMarker",
    "MemoryRecoveryMarker",
    "UpdateClient",
]
