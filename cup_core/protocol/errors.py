"""Error taxonomy shared by the update client and server."""

from __future__ import annotations


class UpdateError(RuntimeError):
    """Base error for update protocol failures."""


class UpdateConnectionError(UpdateError):
    """Connecting to the update server failed or timed out."""


class ResourceExhaustionError(UpdateConnectionError):
    """The local process ran out of file descriptors or sockets."""


class ProtocolDecodeError(UpdateError):
    """A request or response could not be decoded."""


class UnsupportedInstallLocationError(ProtocolDecodeError):
    """An install location variant other than AbsolutePath was used."""


class TransferError(UpdateError):
    """Fetching artifact bytes over the data channel failed."""


class InstallError(UpdateError):
    """The installer collaborator rejected an artifact."""


class RegistryError(UpdateError):
    """A package definition could not be resolved on the server."""


class ConfigError(UpdateError):
    """Invalid client or server settings."""
