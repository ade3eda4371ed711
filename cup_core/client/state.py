"""Durable recovery marker stores for interrupted installs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class RecoveryMarkerStore(Protocol):
    def exists(self) -> bool: ...

    def set(self) -> None: ...

    def clear(self) -> None: ...

    def reserve(self) -> None: ...

    def release(self) -> None: ...


class FileRecoveryMarker:
    """Presence of a single file means an install is in progress.

    Creating the file needs a free descriptor, which is exactly what is missing
    when the marker is set after descriptor exhaustion. ``reserve`` holds one
    descriptor open for the duration of a download; ``set`` closes it right
    before creating the file.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._reserved_fd: int | None = None

    def exists(self) -> bool:
        return self.path.exists()

    def reserve(self) -> None:
        if self._reserved_fd is not None:
            return
        try:
            self._reserved_fd = os.open(os.devnull, os.O_RDONLY)
        except OSError as exc:
            logger.warning("could not reserve a descriptor for the recovery marker: %s", exc)

    def release(self) -> None:
        fd, self._reserved_fd = self._reserved_fd, None
        if fd is not None:
            os.close(fd)

    def set(self) -> None:
        self.release()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            logger.debug("recovery marker already present at %s", self.path)
            return
        os.close(fd)
        logger.info("recovery marker created at %s", self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.info("recovery marker removed from %s", self.path)


class MemoryRecoveryMarker:
    def __init__(self, present: bool = False) -> None:
        self.present = present
        self.set_calls = 0
        self.clear_calls = 0
        self.reserved = False

    def exists(self) -> bool:
        return self.present

    def reserve(self) -> None:
        self.reserved = True

    def release(self) -> None:
        self.reserved = False

    def set(self) -> None:
        self.set_calls += 1
        self.present = True

    def clear(self) -> None:
        self.clear_calls += 1
        self.present = False
