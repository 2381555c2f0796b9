"""Pytest configuration and fixtures."""

import os
import socket
from pathlib import Path

import pytest

from content_relay.exceptions import EngineError
from content_relay.models import RecordingEditor
from content_relay.scanner import ContentScanner
from content_relay.transport import EngineConnection

# Keep a developer's .env or environment from leaking into tests
for _name in ("ENGINE_SOCKET", "WORK_DIR", "WORK_DIR_PREFIX", "LOG_FORMAT", "DEBUG"):
    os.environ.pop(_name, None)


class FakeEngineClient:
    """EngineClient stand-in serving a canned response over a socketpair.

    Each connect() preloads ``response`` on the engine side and shuts down
    its write half, so a response without a blank line ends in EOF.
    """

    endpoint = "unix:/fake/amavisd.sock"

    def __init__(self, response: bytes = b"", fail_connect: bool = False) -> None:
        self.response = response
        self.fail_connect = fail_connect
        self.connections: list[EngineConnection] = []
        self._peers: list[socket.socket] = []

    def check_endpoint(self) -> None:
        pass

    def connect(self) -> EngineConnection:
        if self.fail_connect:
            raise EngineError("Could not connect to fake engine: refused")
        ours, theirs = socket.socketpair()
        theirs.sendall(self.response)
        theirs.shutdown(socket.SHUT_WR)
        self._peers.append(theirs)
        conn = EngineConnection(ours, name="fake")
        self.connections.append(conn)
        return conn

    def received_lines(self, index: int = -1) -> list[str]:
        """Request lines the engine got on a connection, once it is closed."""
        peer = self._peers[index]
        with peer.makefile("rb") as reader:
            data = reader.read()
        return data.decode("utf-8").splitlines()

    def close_peers(self) -> None:
        for peer in self._peers:
            peer.close()


def engine_response(*lines: str) -> bytes:
    """Encode response lines followed by the blank terminator."""
    return "".join(f"{line}\n" for line in lines).encode() + b"\n"


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def editor() -> RecordingEditor:
    return RecordingEditor()


@pytest.fixture
def fake_engine():
    """Factory for FakeEngineClient instances, closed after the test."""
    created: list[FakeEngineClient] = []

    def make(response: bytes = b"", fail_connect: bool = False) -> FakeEngineClient:
        client = FakeEngineClient(response, fail_connect)
        created.append(client)
        return client

    yield make
    for client in created:
        client.close_peers()


@pytest.fixture
def make_scanner(fake_engine):
    """Build a ContentScanner over a fake engine; returns (scanner, engine)."""

    def make(*lines: str, raw: bytes | None = None, fail_connect: bool = False):
        engine = fake_engine(raw if raw is not None else engine_response(*lines), fail_connect)
        return ContentScanner(engine), engine

    return make
