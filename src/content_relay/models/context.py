"""Per-connection and per-message state for a relay session.

A connection carries at most one live message at a time. The message owns
its spool; disposing the message removes the work directory and file.
"""

from dataclasses import dataclass, field
from pathlib import Path

from content_relay.scanner.verdict import ReplyOverride
from content_relay.transport.spool import Spool


@dataclass
class MessageContext:
    """One message transaction within a connection.

    Attributes:
        sender: Envelope sender address as given by the MTA.
        spool: The message's spool, open while the MTA streams content.
        recipients: Envelope recipients in arrival order; duplicates kept.
        reply_override: SMTP reply the engine set for this message, if any.
    """

    sender: str
    spool: Spool
    recipients: list[str] = field(default_factory=list)
    reply_override: ReplyOverride | None = None

    @property
    def queue_id(self) -> str | None:
        # Fixed when the spool is created
        return self.spool.queue_id

    @property
    def work_dir(self) -> Path | None:
        return self.spool.work_dir

    @property
    def spool_path(self) -> Path | None:
        return self.spool.path

    def add_recipient(self, address: str) -> None:
        self.recipients.append(address)

    def dispose(self) -> None:
        self.spool.dispose()


@dataclass
class ConnectionContext:
    """One MTA client connection.

    Attributes:
        hostname: Client hostname as resolved by the MTA.
        address: Client IP address, or None for local/unknown sockets.
        helo: Last non-empty HELO/EHLO name the client sent.
        message: The live message, if a transaction is in progress.
    """

    hostname: str | None = None
    address: str | None = None
    helo: str | None = None
    message: MessageContext | None = None

    def release_message(self) -> None:
        """Dispose of the live message, if any. Safe to repeat."""
        if self.message is not None:
            message, self.message = self.message, None
            message.dispose()
