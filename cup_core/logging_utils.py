from __future__ import annotations

import logging
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(level: int = logging.INFO, log_path: Path | None = None) -> None:
    """Install console (and optional file) handlers on the root logger once.

    Calling it again only adjusts the level; handlers are not duplicated.
    """

    root = logging.getLogger()
    root.setLevel(level)
    if getattr(root, "_cup_configured", False):
        return

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(fmt)
        root.addHandler(handler)

    setattr(root, "_cup_configured", True)
    logging.getLogger(__name__).debug("logging initialized (level=%s, file=%s)", level, log_path)
