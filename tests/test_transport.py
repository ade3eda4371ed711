from __future__ import annotations

import errno
import socket

import pytest

from cup_core.client import UpdateClient
from cup_core.client.transport import is_resource_exhaustion
from cup_core.protocol import ResourceExhaustionError, UpdateConnectionError, UpdateRequest


@pytest.mark.parametrize("code", [errno.EMFILE, errno.ENFILE])
def test_descriptor_exhaustion_on_connect(monkeypatch, code: int) -> None:
    def exhausted(address, timeout=None):
        raise OSError(code, "Too many open files")

    monkeypatch.setattr(socket, "create_connection", exhausted)
    client = UpdateClient("127.0.0.1", control_port=45000, timeout_seconds=1.0)

    with pytest.raises(ResourceExhaustionError):
        client.fetch_artifact(0)
    with pytest.raises(ResourceExhaustionError):
        client.query(UpdateRequest(plugin_name="demo", plugin_version="0.9.0"))


def test_other_connect_errors_are_connection_errors(monkeypatch) -> None:
    def refused(address, timeout=None):
        raise ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")

    monkeypatch.setattr(socket, "create_connection", refused)
    client = UpdateClient("127.0.0.1", control_port=45000, timeout_seconds=1.0)

    with pytest.raises(UpdateConnectionError) as excinfo:
        client.fetch_artifact(0)
    assert not isinstance(excinfo.value, ResourceExhaustionError)


def test_resource_exhaustion_is_detected_from_errno() -> None:
    assert is_resource_exhaustion(OSError(errno.EMFILE, "Too many open files"))
    assert is_resource_exhaustion(OSError(errno.ENFILE, "File table overflow"))
    assert not is_resource_exhaustion(OSError(errno.ECONNREFUSED, "refused"))
