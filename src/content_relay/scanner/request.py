"""AM.PDP request serialization.

A request is a sequence of ``name=value`` lines ended by a blank line.
Values are encoded so they cannot break the line grammar: ``%``, ``=``,
spaces, control characters and non-ASCII bytes are written as ``%XX`` of
their UTF-8 encoding.
"""

from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

if TYPE_CHECKING:
    from content_relay.models import ConnectionContext, MessageContext

REQUEST_KIND = "AM.PDP"
# The engine removes tempdir together with everything it unpacked there
TEMPDIR_REMOVED_BY = "server"
# Delivery stays with the MTA that called us
DELIVERY_CARE_OF = "client"

# Printable ASCII except the escape character and the field separator
_SAFE_CHARS = "".join(chr(c) for c in range(0x21, 0x7F) if chr(c) not in "%=")


def encode_value(value: str) -> str:
    """Encode a request value for the wire."""
    return quote(value, safe=_SAFE_CHARS, encoding="utf-8", errors="surrogateescape")


def decode_value(value: str) -> str:
    """Decode a ``%XX``-encoded response value."""
    return unquote(value, encoding="utf-8", errors="replace")


def build_request(
    connection: "ConnectionContext", message: "MessageContext"
) -> list[tuple[str, str]]:
    """Collect the request fields for one message, in wire order.

    Args:
        connection: The client connection the message arrived on.
        message: The message; its spool must already be closed.

    Returns:
        Ordered ``(name, value)`` pairs, without the terminating blank line.
    """
    fields: list[tuple[str, str]] = [("request", REQUEST_KIND)]
    if message.queue_id:
        fields.append(("queue_id", message.queue_id))
    fields.append(("sender", message.sender))
    fields.extend(("recipient", rcpt) for rcpt in message.recipients)
    fields.append(("tempdir", str(message.work_dir)))
    fields.append(("tempdir_removed_by", TEMPDIR_REMOVED_BY))
    fields.append(("mail_file", str(message.spool_path)))
    fields.append(("delivery_care_of", DELIVERY_CARE_OF))
    if connection.address:
        fields.append(("client_address", connection.address))
    if connection.hostname:
        fields.append(("client_name", connection.hostname))
    if connection.helo:
        fields.append(("helo_name", connection.helo))
    return fields


def format_request(fields: list[tuple[str, str]]) -> list[str]:
    """Render fields as wire lines, including the terminating blank line."""
    return [f"{name}={encode_value(value)}" for name, value in fields] + [""]
