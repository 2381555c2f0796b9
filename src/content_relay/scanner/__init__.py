from content_relay.scanner.bridge import ContentScanner
from content_relay.scanner.request import (
    build_request,
    decode_value,
    encode_value,
    format_request,
)
from content_relay.scanner.response import ResponseDispatcher
from content_relay.scanner.verdict import (
    DEFAULT_TEMPFAIL_REPLY,
    ReplyOverride,
    ScanResult,
    Verdict,
)

__all__ = [
    "DEFAULT_TEMPFAIL_REPLY",
    "ContentScanner",
    "ReplyOverride",
    "ResponseDispatcher",
    "ScanResult",
    "Verdict",
    "build_request",
    "decode_value",
    "encode_value",
    "format_request",
]
