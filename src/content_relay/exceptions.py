"""Custom exceptions for Content Relay.

This module defines the exception hierarchy used throughout the
content_relay package. Every failure raised inside a session is one of
these, so the transaction state machine can map it to a verdict.
"""


class ContentRelayError(Exception):
    """Base exception for all Content Relay errors.

    Attributes:
        message: A human-readable description of the error.
    """

    def __init__(self, message: str = "An error occurred in Content Relay") -> None:
        """Initialize the exception with an optional message.

        Args:
            message: A description of the error that occurred.
        """
        self.message = message
        super().__init__(self.message)


class ConfigurationError(ContentRelayError):
    """Raised when settings or the engine endpoint are invalid."""

    def __init__(self, message: str = "Configuration error") -> None:
        super().__init__(message)


class ContextError(ContentRelayError):
    """Raised when an event arrives without the context it needs.

    Covers a missing connection context (connect failed or never ran)
    and a per-message event without a live message context.
    """

    def __init__(self, message: str = "Context is not set") -> None:
        super().__init__(message)


class SpoolError(ContentRelayError):
    """Raised when the spool directory or spool file cannot be used.

    The underlying OSError is chained as ``__cause__``.
    """

    def __init__(self, message: str = "Spool error") -> None:
        super().__init__(message)


class EngineError(ContentRelayError):
    """Raised when talking to the analysis engine fails.

    This covers connect, write and read errors as well as the engine
    closing the connection before the end of its response.
    """

    def __init__(self, message: str = "Analysis engine error") -> None:
        super().__init__(message)


class ProtocolError(ContentRelayError):
    """Raised when the engine response violates the line grammar."""

    def __init__(self, message: str = "Malformed engine response") -> None:
        super().__init__(message)


class MutationError(ContentRelayError):
    """Raised when the MTA rejects a requested transaction edit.

    Attributes:
        action: The response name that triggered the edit (e.g. ``addrcpt``).
    """

    def __init__(self, message: str = "Transaction edit failed", action: str | None = None) -> None:
        """Initialize the exception with an optional message and action.

        Args:
            message: A description of the failed edit.
            action: The engine response name that requested the edit.
        """
        self.action = action
        super().__init__(message)
