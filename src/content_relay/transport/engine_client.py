"""Socket client for the content-analysis engine (amavisd AM.PDP).

One connection is opened per message, used for a single request/response
exchange, and closed before the end-of-message handler returns. There is
exactly one connect attempt; retry policy belongs to whoever runs the engine.
"""

import socket
import stat
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

import structlog

from content_relay.exceptions import ConfigurationError, EngineError, ProtocolError

logger = structlog.get_logger(__name__)

# Longest response line accepted, terminator included
MAX_LINE_LENGTH = 8192


@dataclass(frozen=True)
class EngineEndpoint:
    """Where the analysis engine listens.

    Attributes:
        family: ``socket.AF_UNIX`` or ``socket.AF_INET``.
        address: Socket path for unix sockets, ``(host, port)`` otherwise.
    """

    family: int
    address: str | tuple[str, int]

    @classmethod
    def parse(cls, spec: str) -> "EngineEndpoint":
        """Parse ``/path``, ``unix:/path``, ``local:/path`` or ``inet:host:port``.

        Raises:
            ConfigurationError: If the spec has none of these forms.
        """
        if spec.startswith("inet:"):
            host, sep, port = spec[len("inet:") :].rpartition(":")
            if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
                raise ConfigurationError(f"Invalid engine socket: {spec}")
            return cls(socket.AF_INET, (host, int(port)))
        for scheme in ("unix:", "local:"):
            if spec.startswith(scheme):
                spec = spec[len(scheme) :]
                break
        if not spec.startswith("/"):
            raise ConfigurationError(f"Invalid engine socket: {spec}")
        return cls(socket.AF_UNIX, spec)

    def __str__(self) -> str:
        if isinstance(self.address, tuple):
            return f"inet:{self.address[0]}:{self.address[1]}"
        return f"unix:{self.address}"


class EngineConnection:
    """An open, line-oriented connection to the engine.

    Use as a context manager; ``close()`` is idempotent and never raises.
    """

    def __init__(self, sock: socket.socket, name: str = "engine") -> None:
        self.name = name
        self._sock: socket.socket | None = sock
        self._reader = sock.makefile("rb")

    @property
    def closed(self) -> bool:
        return self._sock is None

    def send_lines(self, lines: Iterable[str]) -> None:
        """Write each line followed by LF.

        Raises:
            EngineError: If the connection is closed or the write fails.
        """
        if self._sock is None:
            raise EngineError(f"Connection to {self.name} is closed")
        payload = "".join(f"{line}\n" for line in lines).encode("utf-8")
        try:
            self._sock.sendall(payload)
        except OSError as e:
            raise EngineError(f"Could not write to {self.name}: {e}") from e

    def read_line(self) -> str:
        """Read one line without its terminator.

        Raises:
            EngineError: On read error, timeout, or end of stream.
            ProtocolError: If the line exceeds MAX_LINE_LENGTH.
        """
        if self._sock is None:
            raise EngineError(f"Connection to {self.name} is closed")
        try:
            raw = self._reader.readline(MAX_LINE_LENGTH + 1)
        except OSError as e:
            raise EngineError(f"Could not read from {self.name}: {e}") from e
        if len(raw) > MAX_LINE_LENGTH:
            raise ProtocolError(f"Response line longer than {MAX_LINE_LENGTH} bytes")
        if not raw.endswith(b"\n"):
            raise EngineError(f"Unexpected end of stream from {self.name}")
        return raw.rstrip(b"\r\n").decode("utf-8", "replace")

    def read_response(self) -> Iterator[str]:
        """Yield response lines up to, not including, the blank terminator."""
        while True:
            line = self.read_line()
            if not line:
                return
            yield line

    def close(self) -> None:
        if self._sock is None:
            return
        sock, self._sock = self._sock, None
        try:
            self._reader.close()
            sock.close()
        except OSError as e:
            logger.warning("engine_close_failed", engine=self.name, error=str(e))

    def __enter__(self) -> "EngineConnection":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class EngineClient:
    """Opens connections to a fixed engine endpoint.

    Attributes:
        endpoint: The engine endpoint, immutable for the client's lifetime.
        timeout: Socket timeout in seconds for connect, read and write.
    """

    def __init__(self, endpoint: EngineEndpoint, timeout: float = 600) -> None:
        self.endpoint = endpoint
        self.timeout = timeout

    def check_endpoint(self) -> None:
        """Verify a unix socket endpoint exists and is a socket.

        TCP endpoints cannot be checked without connecting and always pass.

        Raises:
            EngineError: If the socket path is missing or not a socket.
        """
        if self.endpoint.family != socket.AF_UNIX:
            return
        path = Path(str(self.endpoint.address))
        try:
            mode = path.stat().st_mode
        except OSError as e:
            raise EngineError(f"Engine socket {path} is not available: {e}") from e
        if not stat.S_ISSOCK(mode):
            raise EngineError(f"Engine socket {path} is not a socket")

    def connect(self) -> EngineConnection:
        """Open a new connection, one attempt only.

        Raises:
            EngineError: If the connection cannot be established.
        """
        sock = socket.socket(self.endpoint.family, socket.SOCK_STREAM)
        try:
            sock.settimeout(self.timeout)
            sock.connect(self.endpoint.address)
        except OSError as e:
            sock.close()
            raise EngineError(f"Could not connect to {self.endpoint}: {e}") from e
        logger.debug("engine_connected", engine=str(self.endpoint))
        return EngineConnection(sock, name=str(self.endpoint))

    def check_connection(self) -> bool:
        """Test engine connectivity by connecting and closing.

        Returns:
            True if the connection succeeded, False otherwise.
        """
        try:
            conn = self.connect()
        except EngineError as e:
            logger.warning("engine_check_failed", engine=str(self.endpoint), error=str(e))
            return False
        conn.close()
        return True
