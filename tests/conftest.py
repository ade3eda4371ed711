from __future__ import annotations

from pathlib import Path

import pytest

DEMO_MANIFEST = """\
name = "demo"
version = "1.0.0"

[[files]]
install_location = { AbsolutePath = "/sd/atmosphere/demo/main.nro" }
filename = "main.nro"

[[folders]]
install_root_location = { AbsolutePath = "/sd/config/demo" }
root_name = "assets"

[metadata]
name = "Demo"
description = "Demo plugin"
changelog = "CHANGELOG.md"
images = ["icon.png"]
"""


def write_package(root: Path, dirname: str, manifest: str, files: dict[str, bytes] | None = None) -> Path:
    directory = root / dirname
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "plugin.toml").write_text(manifest, encoding="utf-8")
    for relative, data in (files or {}).items():
        path = directory / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return directory


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    root = tmp_path / "plugins"
    write_package(
        root,
        "demo",
        DEMO_MANIFEST,
        {
            "main.nro": b"NRO",
            "assets/a.txt": b"A",
            "assets/sub/b.txt": b"B",
            "CHANGELOG.md": b"- first release\n",
            "icon.png": b"\x89PNG",
        },
    )
    return root


@pytest.fixture
def make_package():
    return write_package
