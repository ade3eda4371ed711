"""TCP update server: version queries on the control port, artifact bytes on the data port."""

from __future__ import annotations

import logging
import socketserver
import threading

from cup_core.config import DEFAULT_CONTROL_PORT, DEFAULT_TIMEOUT_SECONDS, ServerSettings
from cup_core.protocol.errors import ProtocolDecodeError
from cup_core.protocol.types import ResponseCode, UpdateResponse
from cup_core.protocol.versioning import parse_semver
from cup_core.protocol.wire import INDEX_SIZE, decode_index, decode_request, encode_response

from .registry import PackageRegistry, RegistryBuild, RegistrySnapshot

logger = logging.getLogger(__name__)

MAX_REQUEST_BYTES = 64 * 1024


def answer_query(snapshot: RegistrySnapshot, raw: bytes | str) -> UpdateResponse:
    """Answer one control-channel request line against a registry snapshot."""

    try:
        request = decode_request(raw)
    except ProtocolDecodeError as exc:
        logger.info("invalid update request: %s", exc)
        return UpdateResponse(code=ResponseCode.INVALID_REQUEST, plugin_name="")

    name = request.plugin_name
    try:
        client_version = parse_semver(request.plugin_version)
        host_version = parse_semver(request.host_version) if request.host_version is not None else None
    except ValueError as exc:
        logger.info("invalid version in request for %s: %s", name, exc)
        return UpdateResponse(code=ResponseCode.INVALID_REQUEST, plugin_name=name)

    package = snapshot.lookup(name)
    if package is None:
        logger.info("update query for unknown plugin %s", name)
        return UpdateResponse(code=ResponseCode.PLUGIN_NOT_FOUND, plugin_name=name)

    if package.plugin_version <= client_version:
        return UpdateResponse(code=ResponseCode.NO_UPDATE, plugin_name=name)
    if package.beta and not request.allow_beta:
        logger.debug("withholding beta %s %s from %s", name, package.plugin_version, client_version)
        return UpdateResponse(code=ResponseCode.NO_UPDATE, plugin_name=name)
    if host_version is not None and host_version < package.min_host_version:
        logger.debug("host %s below minimum %s for %s", host_version, package.min_host_version, name)
        return UpdateResponse(code=ResponseCode.NO_UPDATE, plugin_name=name)

    logger.info("offering %s %s to client at %s", name, package.plugin_version, client_version)
    return UpdateResponse(
        code=ResponseCode.UPDATE,
        plugin_name=name,
        required_files=snapshot.entries_for(name),
        new_version=str(package.plugin_version),
        beta=package.beta,
        min_host_version=str(package.min_host_version),
        description=package.metadata.description,
        changelog=package.metadata.changelog,
        images=package.metadata.images,
    )


class _ChannelServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        address: tuple[str, int],
        handler: type[socketserver.BaseRequestHandler],
        registry: PackageRegistry,
        timeout_seconds: float,
    ) -> None:
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        super().__init__(address, handler)


class _TimedHandler(socketserver.StreamRequestHandler):
    server: _ChannelServer

    def setup(self) -> None:
        self.timeout = self.server.timeout_seconds
        super().setup()


class ControlHandler(_TimedHandler):
    def handle(self) -> None:
        try:
            line = self.rfile.readline(MAX_REQUEST_BYTES)
        except OSError as exc:
            logger.warning("control read failed from %s: %s", self.client_address, exc)
            return
        response = answer_query(self.server.registry.snapshot, line)
        try:
            self.wfile.write(encode_response(response))
        except OSError as exc:
            logger.warning("control write failed to %s: %s", self.client_address, exc)


class DataHandler(_TimedHandler):
    def handle(self) -> None:
        try:
            index = decode_index(self.rfile.read(INDEX_SIZE))
        except (OSError, ProtocolDecodeError) as exc:
            logger.warning("bad artifact request from %s: %s", self.client_address, exc)
            return
        data = self.server.registry.snapshot.artifact_bytes(index)
        if data is None:
            logger.warning("unknown artifact index %s requested by %s", index, self.client_address)
            return
        try:
            self.wfile.write(data)
        except OSError as exc:
            logger.warning("artifact %s transfer to %s failed: %s", index, self.client_address, exc)
            return
        logger.debug("sent artifact index=%s bytes=%s to %s", index, len(data), self.client_address)


class UpdateServer:
    def __init__(
        self,
        registry: PackageRegistry,
        *,
        host: str = "0.0.0.0",
        control_port: int = DEFAULT_CONTROL_PORT,
        data_port: int | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.registry = registry
        self.host = host
        self.control_port = control_port
        if data_port is None:
            data_port = 0 if control_port == 0 else control_port + 1
        self.data_port = data_port
        self.timeout_seconds = timeout_seconds
        self._servers: list[_ChannelServer] = []
        self._threads: list[threading.Thread] = []

    @classmethod
    def from_settings(cls, settings: ServerSettings) -> "UpdateServer":
        return cls(
            PackageRegistry(settings.plugins_dir),
            host=settings.host,
            control_port=settings.control_port,
            data_port=settings.resolved_data_port,
            timeout_seconds=settings.timeout_seconds,
        )

    @property
    def control_address(self) -> tuple[str, int]:
        return self._address(0)

    @property
    def data_address(self) -> tuple[str, int]:
        return self._address(1)

    def _address(self, position: int) -> tuple[str, int]:
        if not self._servers:
            raise RuntimeError("server not started")
        host, port = self._servers[position].server_address[:2]
        return str(host), int(port)

    def rebuild(self) -> RegistryBuild:
        return self.registry.rebuild()

    def start(self) -> "UpdateServer":
        if self._servers:
            return self
        control = _ChannelServer((self.host, self.control_port), ControlHandler, self.registry, self.timeout_seconds)
        try:
            data = _ChannelServer((self.host, self.data_port), DataHandler, self.registry, self.timeout_seconds)
        except OSError:
            control.server_close()
            raise
        self._servers = [control, data]
        for name, server in (("control", control), ("data", data)):
            thread = threading.Thread(target=server.serve_forever, name=f"cup-{name}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(
            "update server listening control=%s:%s data=%s:%s",
            *self.control_address,
            *self.data_address,
        )
        return self

    def serve_forever(self) -> None:
        self.start()
        try:
            for thread in self._threads:
                thread.join()
        except KeyboardInterrupt:
            logger.info("interrupted, shutting down")
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        for server in self._servers:
            server.shutdown()
            server.server_close()
        for thread in self._threads:
            thread.join(timeout=self.timeout_seconds)
        self._servers = []
        self._threads = []

    def __enter__(self) -> "UpdateServer":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
