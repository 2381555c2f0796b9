"""Content scanning through the external analysis engine."""

from typing import TYPE_CHECKING

import structlog

from content_relay.core import queue_logger, sanitize_for_log
from content_relay.scanner.request import build_request, format_request
from content_relay.scanner.response import ResponseDispatcher
from content_relay.scanner.verdict import ScanResult
from content_relay.transport.engine_client import EngineClient, EngineEndpoint

if TYPE_CHECKING:
    from content_relay.config import Settings
    from content_relay.models import ConnectionContext, MessageContext, TransactionEditor

logger = structlog.get_logger(__name__)


class ContentScanner:
    """Runs one request/response exchange with the engine per message.

    The engine endpoint is fixed at construction and shared read-only by
    every session.
    """

    def __init__(self, client: EngineClient) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ContentScanner":
        """Build a scanner for the configured engine socket.

        Raises:
            ConfigurationError: If ``engine_socket`` cannot be parsed.
        """
        endpoint = EngineEndpoint.parse(settings.engine_socket)
        return cls(EngineClient(endpoint, timeout=settings.engine_timeout))

    def check_endpoint(self) -> None:
        """Raise EngineError if the engine socket is obviously unusable."""
        self.client.check_endpoint()

    def scan(
        self,
        connection: "ConnectionContext",
        message: "MessageContext",
        editor: "TransactionEditor",
    ) -> ScanResult:
        """Send the spooled message to the engine and apply its response.

        The engine connection is closed before returning, on success and
        on every error.

        Args:
            connection: The client connection context.
            message: The message to scan; its spool must be closed.
            editor: Mutation API of the live transaction.

        Returns:
            ScanResult with the engine's verdict (TEMPFAIL if it sent none).

        Raises:
            EngineError: On connect, write or read failure.
            ProtocolError: If the response is malformed.
            MutationError: If the MTA refuses an edit.
        """
        log = queue_logger(logger, message.queue_id)
        fields = build_request(connection, message)

        with self.client.connect() as conn:
            for name, value in fields:
                log.debug("engine_request", name=name, value=sanitize_for_log(value))
            conn.send_lines(format_request(fields))

            dispatcher = ResponseDispatcher(editor, message, log)
            result = dispatcher.dispatch(conn.read_response())

        log.info("scan_complete", **result.to_dict())
        return result
