"""Blocking TCP transport for the control and data channels."""

from __future__ import annotations

import errno
import logging
import socket

from cup_core.config import DEFAULT_CONTROL_PORT, DEFAULT_TIMEOUT_SECONDS, ClientSettings
from cup_core.protocol.errors import ResourceExhaustionError, TransferError, UpdateConnectionError
from cup_core.protocol.types import UpdateRequest, UpdateResponse
from cup_core.protocol.wire import decode_response, encode_index, encode_request

logger = logging.getLogger(__name__)

_EXHAUSTION_ERRNOS = frozenset({errno.EMFILE, errno.ENFILE})
_CHUNK_SIZE = 64 * 1024


def is_resource_exhaustion(exc: OSError) -> bool:
    return exc.errno in _EXHAUSTION_ERRNOS


def _read_to_end(sock: socket.socket) -> bytes:
    chunks: list[bytes] = []
    while True:
        chunk = sock.recv(_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


class UpdateClient:
    """Talks to one update server: queries on the control port, downloads on the data port."""

    def __init__(
        self,
        host: str,
        *,
        control_port: int = DEFAULT_CONTROL_PORT,
        data_port: int | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.host = host
        self.control_port = control_port
        self.data_port = data_port if data_port is not None else control_port + 1
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> "UpdateClient":
        return cls(
            settings.host,
            control_port=settings.control_port,
            data_port=settings.resolved_data_port,
            timeout_seconds=settings.timeout_seconds,
        )

    def query(self, request: UpdateRequest) -> UpdateResponse:
        with self._connect(self.control_port) as sock:
            try:
                sock.sendall(encode_request(request))
                raw = _read_to_end(sock)
            except OSError as exc:
                raise UpdateConnectionError(
                    f"control channel failure with {self.host}:{self.control_port}: {exc}"
                ) from exc
        logger.debug("query response bytes=%s plugin=%s", len(raw), request.plugin_name)
        return decode_response(raw)

    def fetch_artifact(self, index: int) -> bytes:
        with self._connect(self.data_port) as sock:
            try:
                sock.sendall(encode_index(index))
                data = _read_to_end(sock)
            except OSError as exc:
                raise TransferError(f"error downloading artifact index={index}: {exc}") from exc
        logger.debug("fetched artifact index=%s bytes=%s", index, len(data))
        return data

    def _connect(self, port: int) -> socket.socket:
        try:
            return socket.create_connection((self.host, port), timeout=self.timeout_seconds)
        except OSError as exc:
            if is_resource_exhaustion(exc):
                raise ResourceExhaustionError(
                    f"descriptor table exhausted connecting to {self.host}:{port}: {exc}"
                ) from exc
            raise UpdateConnectionError(f"failed to connect to {self.host}:{port}: {exc}") from exc
