"""AM.PDP response parsing and dispatch.

Each response line is ``name=value``. Recognized names become edits on the
live transaction through a TransactionEditor; ``return_value`` sets the
verdict. Parsing stops at the first grammar violation or refused edit.
"""

import re
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import structlog

from content_relay.core import sanitize_for_log
from content_relay.exceptions import MutationError, ProtocolError
from content_relay.scanner.request import decode_value
from content_relay.scanner.verdict import ReplyOverride, ScanResult, Verdict

if TYPE_CHECKING:
    from content_relay.models import MessageContext, TransactionEditor

logger = structlog.get_logger(__name__)

RETURN_VALUES = {verdict.value: verdict for verdict in Verdict}
HEADER_INDEX_PATTERN = re.compile(r"[0-9]+")


def split_fields(name: str, value: str, count: int) -> list[str]:
    """Split a value into ``count`` space separated, decoded sub-fields.

    The last sub-field keeps any further spaces.

    Raises:
        ProtocolError: If fewer than ``count`` sub-fields are present.
    """
    parts = value.split(" ", count - 1)
    if len(parts) < count:
        raise ProtocolError(f"Malformed line: {name}={sanitize_for_log(value)}")
    return [decode_value(part) for part in parts]


def parse_header_index(name: str, text: str) -> int:
    """Parse a header occurrence index, a non-negative decimal integer.

    Raises:
        ProtocolError: On an empty, signed or non-numeric index.
    """
    if not HEADER_INDEX_PATTERN.fullmatch(text):
        raise ProtocolError(f"Malformed line: {name}={sanitize_for_log(text)}")
    return int(text)


class ResponseDispatcher:
    """Applies one engine response to the transaction.

    Attributes:
        editor: The MTA mutation API.
        message: The message being scanned; receives the reply override.
        verdict: Pending verdict, TEMPFAIL until a return_value is seen.
        reply: The 4xx/5xx reply applied on the engine's behalf, if any.
        mutations: Number of edits applied so far.
    """

    def __init__(
        self,
        editor: "TransactionEditor",
        message: "MessageContext | None" = None,
        log: Any = None,
    ) -> None:
        self.editor = editor
        self.message = message
        self.verdict = Verdict.TEMPFAIL
        self.reply: ReplyOverride | None = None
        self.mutations = 0
        self._log = log if log is not None else logger
        self._handlers: dict[str, Callable[[str, str], None]] = {
            "addrcpt": self._add_recipient,
            "delrcpt": self._remove_recipient,
            "addheader": self._add_header,
            "chgheader": self._change_header,
            "delheader": self._delete_header,
            "return_value": self._return_value,
            "setreply": self._set_reply,
            "exit_code": self._exit_code,
        }

    def dispatch(self, lines: Iterable[str]) -> ScanResult:
        """Apply every line and return the accumulated result.

        ``lines`` should stop at the blank terminator. It is consumed lazily,
        so nothing after a failing line is read.

        Raises:
            ProtocolError: On a grammar violation.
            MutationError: If the MTA refuses an edit.
            EngineError: If reading ``lines`` fails.
        """
        for line in lines:
            self.dispatch_line(line)
        return ScanResult(verdict=self.verdict, reply=self.reply, mutations=self.mutations)

    def dispatch_line(self, line: str) -> None:
        name, sep, value = line.partition("=")
        if not sep:
            raise ProtocolError(f"Malformed line: {sanitize_for_log(line)}")

        handler = self._handlers.get(name)
        if handler is None:
            self._log.warning(
                "unknown_response_ignored",
                name=sanitize_for_log(name),
                value=sanitize_for_log(value),
            )
            return
        handler(name, value)

    def _apply(self, name: str, edit: Callable[..., None], *args: Any) -> None:
        try:
            edit(*args)
        except Exception as e:
            self._log.error("edit_refused", action=name, args=[str(a) for a in args], error=str(e))
            raise MutationError(f"Could not apply {name}: {e}", action=name) from e
        self.mutations += 1

    def _add_recipient(self, name: str, value: str) -> None:
        address = decode_value(value)
        self._log.info("engine_action", action=name, address=sanitize_for_log(address))
        self._apply(name, self.editor.add_recipient, address)

    def _remove_recipient(self, name: str, value: str) -> None:
        address = decode_value(value)
        self._log.info("engine_action", action=name, address=sanitize_for_log(address))
        self._apply(name, self.editor.remove_recipient, address)

    def _add_header(self, name: str, value: str) -> None:
        field, text = split_fields(name, value, 2)
        self._log.info("engine_action", action=name, field=field, text=sanitize_for_log(text))
        self._apply(name, self.editor.add_header, field, text)

    def _change_header(self, name: str, value: str) -> None:
        index_text, field, text = split_fields(name, value, 3)
        index = parse_header_index(name, index_text)
        self._log.info(
            "engine_action", action=name, index=index, field=field, text=sanitize_for_log(text)
        )
        self._apply(name, self.editor.change_header, field, index, text)

    def _delete_header(self, name: str, value: str) -> None:
        index_text, field = split_fields(name, value, 2)
        index = parse_header_index(name, index_text)
        self._log.info("engine_action", action=name, index=index, field=field)
        self._apply(name, self.editor.delete_header, field, index)

    def _return_value(self, name: str, value: str) -> None:
        verdict = RETURN_VALUES.get(decode_value(value))
        if verdict is None:
            raise ProtocolError(f"Unknown return value: {sanitize_for_log(value)}")
        self._log.info("engine_action", action=name, verdict=verdict.value)
        self.verdict = verdict

    def _set_reply(self, name: str, value: str) -> None:
        rcode, xcode, text = split_fields(name, value, 3)
        # Only 4xx and 5xx replies may be set on an SMTP transaction
        if not rcode.startswith(("4", "5")):
            self._log.debug("reply_ignored", rcode=rcode, xcode=xcode, text=sanitize_for_log(text))
            return
        self._log.info("engine_action", action=name, rcode=rcode, xcode=xcode, text=sanitize_for_log(text))
        self._apply(name, self.editor.set_reply, rcode, xcode, text)
        self.reply = ReplyOverride(rcode, xcode, text)
        if self.message is not None:
            self.message.reply_override = self.reply

    def _exit_code(self, name: str, value: str) -> None:
        # Legacy field, carries no information the verdict does not
        self._log.debug("engine_action_ignored", action=name, value=sanitize_for_log(value))
