"""Transport layer for content-relay.

- EngineClient: per-message socket connections to the analysis engine
- Spool: per-message work directory and spool file
"""

from content_relay.transport.engine_client import (
    EngineClient,
    EngineConnection,
    EngineEndpoint,
)
from content_relay.transport.spool import Spool

__all__ = ["EngineClient", "EngineConnection", "EngineEndpoint", "Spool"]
