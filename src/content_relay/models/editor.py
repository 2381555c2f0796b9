"""The MTA-side mutation API a relay session edits transactions through."""

from dataclasses import dataclass, field
from typing import Protocol


class TransactionEditor(Protocol):
    """Edits applied to the live SMTP transaction.

    Each method reports failure by raising; callers treat any exception
    as the MTA refusing the edit.
    """

    def add_recipient(self, address: str) -> None: ...

    def remove_recipient(self, address: str) -> None: ...

    def add_header(self, field: str, value: str) -> None: ...

    def change_header(self, field: str, index: int, value: str) -> None: ...

    def delete_header(self, field: str, index: int) -> None: ...

    def set_reply(self, rcode: str, xcode: str, text: str) -> None: ...


class EditRefused(Exception):
    """Raised by RecordingEditor for edits configured to fail."""


@dataclass
class RecordingEditor:
    """TransactionEditor that records edits instead of applying them.

    Used by the ``scan`` command to show what the engine asked for.

    Attributes:
        actions: Recorded edits as ``(method, *args)`` tuples, in order.
        refuse: Method names that raise EditRefused instead of recording.
    """

    actions: list[tuple[object, ...]] = field(default_factory=list)
    refuse: set[str] = field(default_factory=set)

    def _record(self, method: str, *args: object) -> None:
        if method in self.refuse:
            raise EditRefused(f"{method} refused")
        self.actions.append((method, *args))

    def add_recipient(self, address: str) -> None:
        self._record("add_recipient", address)

    def remove_recipient(self, address: str) -> None:
        self._record("remove_recipient", address)

    def add_header(self, field: str, value: str) -> None:
        self._record("add_header", field, value)

    def change_header(self, field: str, index: int, value: str) -> None:
        self._record("change_header", field, index, value)

    def delete_header(self, field: str, index: int) -> None:
        self._record("delete_header", field, index)

    def set_reply(self, rcode: str, xcode: str, text: str) -> None:
        self._record("set_reply", rcode, xcode, text)
