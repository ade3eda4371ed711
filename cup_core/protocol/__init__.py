"""Update protocol vocabulary shared by client and server."""

from .errors import (
    ConfigError,
    InstallError,
    ProtocolDecodeError,
    RegistryError,
    ResourceExhaustionError,
    TransferError,
    UnsupportedInstallLocationError,
    UpdateConnectionError,
    UpdateError,
)
from .types import (
    ABSOLUTE_PATH,
    ArtifactEntry,
    InstallLocation,
    ResponseCode,
    UpdateRequest,
    UpdateResponse,
)
from .versioning import LOWEST_VERSION, SemVer, is_valid_semver, max_semver, parse_semver
from .wire import (
    decode_index,
    decode_request,
    decode_response,
    encode_index,
    encode_request,
    encode_response,
)

__all__ = [
    "ABSOLUTE_PATH",
    "ArtifactEntry",
    "InstallLocation",
    "ResponseCode",
    "UpdateRequest",
    "UpdateResponse",
    "SemVer",
    "LOWEST_VERSION",
    "parse_semver",
    "is_valid_semver",
    "max_semver",
    "encode_index",
    "decode_index",
    "encode_request",
    "decode_request",
    "encode_response",
    "decode_response",
    "UpdateError",
    "UpdateConnectionError",
    "ResourceExhaustionError",
    "ProtocolDecodeError",
    "UnsupportedInstallLocationError",
    "TransferError",
    "InstallError",
    "RegistryError",
    "ConfigError",
]
