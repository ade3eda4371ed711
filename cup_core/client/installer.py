"""Installer collaborators: confirmation, persisting artifacts, restarting the host."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Callable, Protocol

from cup_core.protocol.errors import InstallError
from cup_core.protocol.types import UpdateResponse

logger = logging.getLogger(__name__)

RestartHandler = Callable[[], None]


class Installer(Protocol):
    def should_update(self, response: UpdateResponse) -> bool: ...

    def install_file(self, path: Path, data: bytes) -> None: ...

    def install_directory(self, path: Path) -> None: ...


class FilesystemInstaller:
    """Writes artifacts straight to their absolute destination."""

    def should_update(self, response: UpdateResponse) -> bool:
        del response
        return True

    def install_file(self, path: Path, data: bytes) -> None:
        logger.info("installing %s bytes to %s", len(data), path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise InstallError(f"error writing {path}: {exc}") from exc

    def install_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InstallError(f"error creating directory {path}: {exc}") from exc


class ConfirmingInstaller:
    """Delegates to another installer after asking ``confirm`` whether to proceed.

    A recovering install (marker present) skips the question: the user already
    agreed before the restart.
    """

    def __init__(
        self,
        delegate: Installer,
        confirm: Callable[[str], bool],
        *,
        recovering: Callable[[], bool] | None = None,
    ) -> None:
        self.delegate = delegate
        self.confirm = confirm
        self.recovering = recovering

    def should_update(self, response: UpdateResponse) -> bool:
        if self.recovering is not None and self.recovering():
            return True
        version = f" {response.new_version}" if response.new_version else ""
        return bool(
            self.confirm(
                f"An update for {response.plugin_name}{version} has been found.\n\n"
                "Would you like to download it?"
            )
        )

    def install_file(self, path: Path, data: bytes) -> None:
        self.delegate.install_file(path, data)

    def install_directory(self, path: Path) -> None:
        self.delegate.install_directory(path)


def restart_process() -> None:
    """Replace the current process with a fresh copy of itself."""

    logger.warning("restarting process to recover interrupted install")
    logging.shutdown()
    os.execv(sys.executable, [sys.executable, *sys.argv])
