"""Per-connection transaction state machine.

The MTA drives a RelaySession through a fixed event order::

    connect, helo*, (envfrom, envrcpt+, header*, eoh, body*, eom)*, close

with ``abort`` allowed between any two message events. Every event returns
exactly one Verdict and never raises: failures are classified once by
``classify_failure`` and turned into TEMPFAIL plus the default reply.
"""

import functools
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from content_relay.core import queue_logger
from content_relay.exceptions import ContentRelayError, ContextError
from content_relay.models import ConnectionContext, MessageContext
from content_relay.scanner.verdict import DEFAULT_TEMPFAIL_REPLY, ReplyOverride, Verdict
from content_relay.transport.spool import Spool

if TYPE_CHECKING:
    from content_relay.models import TransactionEditor
    from content_relay.scanner import ContentScanner

logger = structlog.get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class FailureOutcome:
    """What to do about a failed event.

    Attributes:
        verdict: Verdict returned to the MTA.
        set_default_reply: Whether to set the default 451 reply.
        cleanup: Whether the live message must be disposed.
    """

    verdict: Verdict
    set_default_reply: bool
    cleanup: bool


def classify_failure(exc: BaseException, message: MessageContext | None) -> FailureOutcome:
    """Map any failure raised while handling an event to its outcome.

    Every failure is message-fatal. The default reply is skipped when the
    engine already set a 4xx/5xx reply for this message. A missing context
    leaves nothing to clean up.
    """
    engine_replied = message is not None and message.reply_override is not None
    return FailureOutcome(
        verdict=Verdict.TEMPFAIL,
        set_default_reply=not engine_replied,
        cleanup=not isinstance(exc, ContextError),
    )


def event(name: str) -> Callable[[F], F]:
    """Turn a handler into an event method that always returns a Verdict.

    The handler returns None for CONTINUE or an explicit Verdict; anything
    it raises goes through ``RelaySession._fail``.
    """

    def decorator(handler: F) -> F:
        @functools.wraps(handler)
        def wrapper(self: "RelaySession", *args: Any, **kwargs: Any) -> Verdict:
            try:
                verdict = handler(self, *args, **kwargs)
            except Exception as e:
                return self._fail(name, e)
            return Verdict.CONTINUE if verdict is None else verdict

        return wrapper  # type: ignore[return-value]

    return decorator


class RelaySession:
    """State of one MTA connection and its current message.

    Attributes:
        editor: Mutation API of the MTA connection.
        scanner: Shared content scanner.
        work_dir: Base directory for per-message spools.
        work_dir_prefix: Name prefix of per-message work directories.
        connection: Connection context, None before connect/after close.
    """

    def __init__(
        self,
        editor: "TransactionEditor",
        scanner: "ContentScanner",
        work_dir: str | Path,
        work_dir_prefix: str = "af",
    ) -> None:
        self.editor = editor
        self.scanner = scanner
        self.work_dir = Path(work_dir)
        self.work_dir_prefix = work_dir_prefix
        self.connection: ConnectionContext | None = None

    @property
    def message(self) -> MessageContext | None:
        return self.connection.message if self.connection is not None else None

    @property
    def log(self) -> Any:
        message = self.message
        return queue_logger(logger, message.queue_id if message is not None else None)

    def _require_connection(self) -> ConnectionContext:
        if self.connection is None:
            raise ContextError("Connection context is not set")
        return self.connection

    def _require_message(self) -> MessageContext:
        message = self._require_connection().message
        if message is None:
            raise ContextError("Message context is not set")
        return message

    def _fail(self, name: str, exc: BaseException) -> Verdict:
        log = self.log
        outcome = classify_failure(exc, self.message)
        if isinstance(exc, ContentRelayError):
            log.error("event_failed", handler=name, error=exc.message, error_type=type(exc).__name__)
        else:
            log.exception("event_crashed", handler=name, error=str(exc))
        if outcome.set_default_reply:
            self._set_reply(DEFAULT_TEMPFAIL_REPLY)
        if outcome.cleanup and self.connection is not None:
            self.connection.release_message()
        return outcome.verdict

    def _set_reply(self, reply: ReplyOverride) -> None:
        try:
            self.editor.set_reply(reply.rcode, reply.xcode, reply.text)
        except Exception as e:
            self.log.warning("set_reply_failed", reply=str(reply), error=str(e))
        else:
            self.log.debug("reply_set", reply=str(reply))

    @event("connect")
    def connect(self, hostname: str | None, address: str | None = None) -> None:
        """Start a connection; the engine socket must look usable."""
        self.log.info("client_connected", hostname=hostname, address=address)
        if self.connection is not None:
            self.connection.release_message()
            self.connection = None
        self.scanner.check_endpoint()
        self.connection = ConnectionContext(hostname=hostname or None, address=address or None)

    @event("helo")
    def helo(self, name: str | None) -> None:
        connection = self._require_connection()
        self.log.debug("helo", name=name)
        if name:
            connection.helo = name

    @event("envfrom")
    def envfrom(self, sender: str, queue_id: str | None = None) -> None:
        """Begin a new message, discarding any previous one."""
        connection = self._require_connection()
        connection.release_message()
        spool = Spool.create(self.work_dir, queue_id or None, prefix=self.work_dir_prefix)
        connection.message = MessageContext(sender=sender, spool=spool)
        self.log.info("mail_from", sender=sender, work_dir=str(spool.work_dir))

    @event("envrcpt")
    def envrcpt(self, recipient: str) -> None:
        message = self._require_message()
        message.add_recipient(recipient)
        self.log.info("rcpt_to", recipient=recipient)

    @event("header")
    def header(self, name: str, value: str | bytes) -> None:
        self._require_message().spool.write_header(name, value)

    @event("eoh")
    def eoh(self) -> None:
        self._require_message().spool.write_header_end()

    @event("body")
    def body(self, chunk: bytes) -> None:
        self._require_message().spool.write(chunk)

    def eom(self) -> Verdict:
        """Finish the message: close the spool, scan it, return the verdict.

        The message context is disposed before returning, whatever happens.
        """
        try:
            return self._scan()
        except Exception as e:
            return self._fail("eom", e)
        finally:
            if self.connection is not None:
                self.connection.release_message()

    def _scan(self) -> Verdict:
        connection = self._require_connection()
        message = self._require_message()
        log = self.log
        message.spool.close()
        log.info("content_check", size=message.spool.size, recipients=len(message.recipients))
        result = self.scanner.scan(connection, message, self.editor)
        return result.verdict

    def abort(self) -> Verdict:
        """Drop the current message. Always CONTINUE."""
        if self.connection is None:
            logger.debug("abort_without_context")
            return Verdict.CONTINUE
        self.log.info("message_aborted")
        try:
            self.connection.release_message()
        except Exception:
            logger.exception("abort_cleanup_failed")
        return Verdict.CONTINUE

    def close(self) -> Verdict:
        """End the connection, disposing any live message. Always CONTINUE."""
        if self.connection is None:
            logger.debug("close_without_context")
            return Verdict.CONTINUE
        connection, self.connection = self.connection, None
        try:
            connection.release_message()
        except Exception:
            logger.exception("close_cleanup_failed")
        logger.info("connection_closed", hostname=connection.hostname)
        return Verdict.CONTINUE
