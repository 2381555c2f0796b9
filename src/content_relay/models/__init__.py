from content_relay.models.context import ConnectionContext, MessageContext
from content_relay.models.editor import EditRefused, RecordingEditor, TransactionEditor

__all__ = [
    "ConnectionContext",
    "EditRefused",
    "MessageContext",
    "RecordingEditor",
    "TransactionEditor",
]
