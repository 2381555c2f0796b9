from content_relay.services.health import HealthChecker, HealthReport, HealthStatus
from content_relay.services.relay import FailureOutcome, RelaySession, classify_failure

__all__ = [
    "FailureOutcome",
    "HealthChecker",
    "HealthReport",
    "HealthStatus",
    "RelaySession",
    "classify_failure",
]
