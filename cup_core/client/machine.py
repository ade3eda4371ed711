"""Client-side install state machine.

The machine queries the control channel, optionally purges stale directories,
then fetches and installs every artifact of an ``Update`` response in order.
A durable recovery marker survives a process restart triggered by descriptor
exhaustion; while it is present the purge is skipped and already installed
artifacts may be skipped according to the configured ``SkipPolicy``.
"""

from __future__ import annotations

import enum
import logging
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

from cup_core.config import DEFAULT_PRIMARY_EXTENSIONS
from cup_core.protocol.errors import (
    InstallError,
    ResourceExhaustionError,
    UnsupportedInstallLocationError,
    UpdateError,
)
from cup_core.protocol.types import ResponseCode, UpdateRequest, UpdateResponse

from .installer import Installer, RestartHandler, restart_process
from .state import RecoveryMarkerStore

logger = logging.getLogger(__name__)


class InstallState(str, enum.Enum):
    IDLE = "idle"
    QUERYING = "querying"
    NO_UPDATE = "no_update"
    DECLINED = "declined"
    DOWNLOADING = "downloading"
    INSTALLED = "installed"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {InstallState.NO_UPDATE, InstallState.DECLINED, InstallState.INSTALLED, InstallState.FAILED}
)


@dataclass(frozen=True)
class InstallOutcome:
    state: InstallState
    response: UpdateResponse | None = None
    fetched: tuple[int, ...] = ()
    skipped: tuple[Path, ...] = ()
    reason: str | None = None
    restarted: bool = False

    @property
    def success(self) -> bool:
        return self.state is InstallState.INSTALLED


class ArtifactSource(Protocol):
    def query(self, request: UpdateRequest) -> UpdateResponse: ...

    def fetch_artifact(self, index: int) -> bytes: ...


class SkipPolicy(Protocol):
    def should_skip(self, path: Path, *, recovering: bool) -> bool: ...


@dataclass(frozen=True)
class ExtensionSkipPolicy:
    """Skip existing destinations during recovery unless they are primary executables.

    This assumes an interrupted attempt already replaced every regular asset and
    only the primary executable may be stale. Nothing records which artifacts
    actually landed, so a partially written asset is kept as-is.
    """

    primary_extensions: tuple[str, ...] = DEFAULT_PRIMARY_EXTENSIONS

    def should_skip(self, path: Path, *, recovering: bool) -> bool:
        if not recovering or not path.exists():
            return False
        primary = {ext.lower() for ext in self.primary_extensions}
        return path.suffix.lower() not in primary


class NeverSkipPolicy:
    def should_skip(self, path: Path, *, recovering: bool) -> bool:
        del path, recovering
        return False


class InstallStateMachine:
    def __init__(
        self,
        client: ArtifactSource,
        installer: Installer,
        marker: RecoveryMarkerStore,
        *,
        skip_policy: SkipPolicy | None = None,
        restart_handler: RestartHandler = restart_process,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.installer = installer
        self.marker = marker
        self.skip_policy = skip_policy or ExtensionSkipPolicy()
        self.restart_handler = restart_handler
        self.cancel_event = cancel_event
        self.history: list[InstallState] = [InstallState.IDLE]

    @property
    def state(self) -> InstallState:
        return self.history[-1]

    def _transition(self, state: InstallState) -> None:
        logger.debug("install state %s -> %s", self.state.value, state.value)
        self.history.append(state)

    def _finish(self, state: InstallState, response: UpdateResponse | None, **kwargs: Any) -> InstallOutcome:
        self._transition(state)
        return InstallOutcome(state=state, response=response, **kwargs)

    def _fail(self, response: UpdateResponse | None, reason: str, **kwargs: Any) -> InstallOutcome:
        logger.error("[%s updater] %s", response.plugin_name if response else "?", reason)
        return self._finish(InstallState.FAILED, response, reason=reason, **kwargs)

    def run(
        self,
        plugin_name: str,
        plugin_version: str,
        allow_beta: bool,
        *,
        options: Mapping[str, Any] | None = None,
    ) -> InstallOutcome:
        self._transition(InstallState.QUERYING)
        request = UpdateRequest(
            plugin_name=plugin_name,
            plugin_version=plugin_version,
            beta=allow_beta,
            options=options,
        )
        try:
            response = self.client.query(request)
        except UpdateError as exc:
            logger.error("[%s updater] update query failed: %s", plugin_name, exc)
            return self._finish(InstallState.FAILED, None, reason=str(exc))

        if response.code is ResponseCode.NO_UPDATE:
            logger.info("[%s updater] no update available (current %s)", plugin_name, plugin_version)
            return self._finish(InstallState.NO_UPDATE, response)
        if response.code is ResponseCode.INVALID_REQUEST:
            return self._fail(response, "failed to send a valid request to the server")
        if response.code is ResponseCode.PLUGIN_NOT_FOUND:
            return self._fail(response, f"plugin {plugin_name!r} could not be found on the update server")
        if response.code is not ResponseCode.UPDATE:
            return self._fail(response, "unexpected response from update server")

        if not self.installer.should_update(response):
            logger.info("[%s updater] update %s declined", plugin_name, response.new_version)
            return self._finish(InstallState.DECLINED, response)

        outcome = self.install(response)
        if not outcome.success:
            logger.warning("[%s updater] failed to install update, files may be left in a broken state", plugin_name)
        return outcome

    def install(self, response: UpdateResponse) -> InstallOutcome:
        self._transition(InstallState.DOWNLOADING)
        try:
            paths = [entry.install_location.path() for entry in response.required_files]
        except UnsupportedInstallLocationError as exc:
            return self._fail(response, str(exc))

        # marker.set() gets the reserved descriptor back on exhaustion.
        self.marker.reserve()
        try:
            return self._download(response, paths)
        finally:
            self.marker.release()

    def _download(self, response: UpdateResponse, paths: Sequence[Path]) -> InstallOutcome:
        recovering = self.marker.exists()
        if recovering:
            logger.info("[%s updater] recovering interrupted install", response.plugin_name)
        else:
            _purge_directories(paths)

        containers = _parent_directories(paths)
        fetched: list[int] = []
        skipped: list[Path] = []

        for entry, path in zip(response.required_files, paths):
            if self.cancel_event is not None and self.cancel_event.is_set():
                return self._fail(
                    response, "install cancelled", fetched=tuple(fetched), skipped=tuple(skipped)
                )

            if self.skip_policy.should_skip(path, recovering=recovering):
                logger.debug("skipping %s (already installed before restart)", path)
                skipped.append(path)
                continue

            try:
                data = self.client.fetch_artifact(entry.download_index)
            except ResourceExhaustionError as exc:
                logger.warning("descriptor table exhausted, recovering download: %s", exc)
                return self._recover(response, tuple(fetched), tuple(skipped))
            except UpdateError as exc:
                return self._fail(
                    response, f"error downloading {path}: {exc}", fetched=tuple(fetched), skipped=tuple(skipped)
                )
            fetched.append(entry.download_index)
            logger.info("downloaded %s (%s bytes)", path, len(data))

            try:
                if not data and (entry.install_location.is_directory or path in containers or path.is_dir()):
                    self.installer.install_directory(path)
                elif self.installer.install_file(path, data) is False:
                    raise InstallError(f"installer rejected {path}")
            except (InstallError, OSError) as exc:
                return self._fail(
                    response, f"error installing {path}: {exc}", fetched=tuple(fetched), skipped=tuple(skipped)
                )

        logger.info("[%s updater] finished updating plugin", response.plugin_name)
        self.marker.clear()
        return self._finish(InstallState.INSTALLED, response, fetched=tuple(fetched), skipped=tuple(skipped))

    def _recover(
        self, response: UpdateResponse, fetched: tuple[int, ...], skipped: tuple[Path, ...]
    ) -> InstallOutcome:
        try:
            self.marker.set()
        except OSError as exc:
            return self._fail(
                response, f"could not write recovery marker: {exc}", fetched=fetched, skipped=skipped
            )
        self.restart_handler()
        return self._fail(
            response,
            "install interrupted by descriptor exhaustion; restart requested",
            fetched=fetched,
            skipped=skipped,
            restarted=True,
        )


def _purge_directories(paths: Sequence[Path]) -> None:
    for path in paths:
        if path.is_dir():
            logger.info("deleting folder before update: %s", path)
            shutil.rmtree(path, ignore_errors=True)


def _parent_directories(paths: Sequence[Path]) -> frozenset[Path]:
    parents: set[Path] = set()
    for path in paths:
        parents.update(path.parents)
    return frozenset(parents)
