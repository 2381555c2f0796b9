from content_relay.core.logging import (
    NO_QUEUE_ID,
    configure_logging,
    queue_logger,
    sanitize_for_log,
)

__all__ = ["NO_QUEUE_ID", "configure_logging", "queue_logger", "sanitize_for_log"]
