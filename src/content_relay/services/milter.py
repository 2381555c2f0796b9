"""libmilter adapter: runs RelaySession under Sendmail/Postfix via pymilter.

pymilter runs every MTA connection in its own thread with its own
RelayMilter instance, so sessions never share mutable state.
"""

import functools
import socket
from pathlib import Path
from typing import TYPE_CHECKING, Any

import Milter
import structlog

from content_relay.scanner import ContentScanner, Verdict
from content_relay.services.relay import RelaySession

if TYPE_CHECKING:
    from content_relay.config import Settings

logger = structlog.get_logger(__name__)

VERDICT_CODES = {
    Verdict.CONTINUE: Milter.CONTINUE,
    Verdict.ACCEPT: Milter.ACCEPT,
    Verdict.REJECT: Milter.REJECT,
    Verdict.DISCARD: Milter.DISCARD,
    Verdict.TEMPFAIL: Milter.TEMPFAIL,
}

MILTER_FLAGS = Milter.ADDHDRS + Milter.CHGHDRS + Milter.ADDRCPT + Milter.DELRCPT


def client_address(family: int, hostaddr: Any) -> str | None:
    """Extract the client IP from libmilter's host address argument."""
    if family in (socket.AF_INET, socket.AF_INET6) and isinstance(hostaddr, tuple) and hostaddr:
        return str(hostaddr[0])
    return None


class RelayMilter(Milter.Base):
    """One MTA connection; forwards callbacks to a RelaySession.

    Also implements TransactionEditor on top of the libmilter actions.
    """

    def __init__(self, scanner: ContentScanner, work_dir: str, work_dir_prefix: str = "af") -> None:
        self.session = RelaySession(self, scanner, work_dir, work_dir_prefix)

    # TransactionEditor

    def add_recipient(self, address: str) -> None:
        self.addrcpt(address)

    def remove_recipient(self, address: str) -> None:
        self.delrcpt(address)

    def add_header(self, field: str, value: str) -> None:
        self.addheader(field, value)

    def change_header(self, field: str, index: int, value: str) -> None:
        self.chgheader(field, index, value)

    def delete_header(self, field: str, index: int) -> None:
        # libmilter deletes the occurrence when no value is given
        self.chgheader(field, index, "")

    def set_reply(self, rcode: str, xcode: str, text: str) -> None:
        self.setreply(rcode, xcode, text)

    # libmilter callbacks

    def connect(self, IPname: str, family: int, hostaddr: Any) -> int:
        return VERDICT_CODES[self.session.connect(IPname, client_address(family, hostaddr))]

    def hello(self, heloname: str) -> int:
        return VERDICT_CODES[self.session.helo(heloname)]

    def envfrom(self, mailfrom: str, *params: str) -> int:
        return VERDICT_CODES[self.session.envfrom(mailfrom, self.getsymval("i"))]

    def envrcpt(self, to: str, *params: str) -> int:
        return VERDICT_CODES[self.session.envrcpt(to)]

    def header(self, name: str, hval: str) -> int:
        return VERDICT_CODES[self.session.header(name, hval)]

    def eoh(self) -> int:
        return VERDICT_CODES[self.session.eoh()]

    def body(self, chunk: bytes) -> int:
        return VERDICT_CODES[self.session.body(chunk)]

    def eom(self) -> int:
        return VERDICT_CODES[self.session.eom()]

    def abort(self) -> int:
        return VERDICT_CODES[self.session.abort()]

    def close(self) -> int:
        return VERDICT_CODES[self.session.close()]


def run_milter(settings: "Settings") -> None:
    """Register the RelayMilter factory and serve until libmilter stops.

    Raises:
        ConfigurationError: If the engine socket setting is invalid.
    """
    scanner = ContentScanner.from_settings(settings)
    Path(settings.work_dir).mkdir(mode=0o750, parents=True, exist_ok=True)

    Milter.factory = functools.partial(
        RelayMilter, scanner, settings.work_dir, settings.work_dir_prefix
    )
    Milter.set_flags(MILTER_FLAGS)

    logger.info(
        "milter_starting",
        name=settings.milter_name,
        socket=settings.milter_socket,
        engine=str(scanner.client.endpoint),
    )
    Milter.runmilter(settings.milter_name, settings.milter_socket, settings.milter_timeout)
    logger.info("milter_stopped")
