from dataclasses import dataclass
from enum import Enum
from typing import Any


class Verdict(str, Enum):
    CONTINUE = "continue"
    ACCEPT = "accept"
    REJECT = "reject"
    DISCARD = "discard"
    TEMPFAIL = "tempfail"


@dataclass(frozen=True)
class ReplyOverride:
    """SMTP reply handed to the MTA instead of its default text."""

    rcode: str
    xcode: str
    text: str

    def __str__(self) -> str:
        return f"{self.rcode} {self.xcode} {self.text}"


DEFAULT_TEMPFAIL_REPLY = ReplyOverride("451", "4.6.0", "Content scanner malfunction")


@dataclass
class ScanResult:
    verdict: Verdict
    reply: ReplyOverride | None = None
    mutations: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "reply": str(self.reply) if self.reply else None,
            "mutations": self.mutations,
        }
