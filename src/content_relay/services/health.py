"""Relay health monitoring."""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from content_relay.transport.engine_client import EngineClient, EngineEndpoint

if TYPE_CHECKING:
    from content_relay.config import Settings

logger = structlog.get_logger(__name__)

# Leftover work directories mean cleanup is failing somewhere
STALE_SPOOL_WARNING = 10
STALE_SPOOL_CRITICAL = 50


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class HealthReport:
    status: HealthStatus
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    engine_available: bool = True
    work_dir_writable: bool = True
    spool_count: int = 0
    checked_at: datetime = field(default_factory=datetime.now)


class HealthChecker:
    """Check relay health status."""

    def __init__(self, settings: "Settings"):
        self.settings = settings
        self.work_dir = Path(settings.work_dir)
        self.prefix = settings.work_dir_prefix
        self.engine = EngineClient(
            EngineEndpoint.parse(settings.engine_socket), timeout=min(settings.engine_timeout, 10)
        )

    def count_spools(self) -> int:
        """Count work directories currently present in the spool base."""
        try:
            return sum(
                1
                for entry in self.work_dir.iterdir()
                if entry.is_dir() and entry.name.startswith(self.prefix)
            )
        except OSError:
            return 0

    def work_dir_usable(self) -> bool:
        return self.work_dir.is_dir() and os.access(self.work_dir, os.W_OK | os.X_OK)

    def check_all(self) -> HealthReport:
        """Run all health checks."""
        issues: list[str] = []
        warnings: list[str] = []
        status = HealthStatus.HEALTHY

        # Check 1: engine connectivity
        engine_ok = self.engine.check_connection()
        if not engine_ok:
            status = HealthStatus.CRITICAL
            issues.append(f"Analysis engine {self.engine.endpoint} unreachable")

        # Check 2: spool base directory
        work_dir_ok = self.work_dir_usable()
        if not work_dir_ok:
            status = HealthStatus.CRITICAL
            issues.append(f"Work directory {self.work_dir} missing or not writable")

        # Check 3: leftover spools
        spool_count = self.count_spools()
        if spool_count > STALE_SPOOL_CRITICAL:
            status = HealthStatus.CRITICAL
            issues.append(f"{spool_count} spool directories left in {self.work_dir}")
        elif spool_count > STALE_SPOOL_WARNING:
            if status == HealthStatus.HEALTHY:
                status = HealthStatus.WARNING
            warnings.append(f"{spool_count} spool directories in {self.work_dir}")

        logger.info(
            "health_check_complete",
            status=status.value,
            engine_ok=engine_ok,
            work_dir_ok=work_dir_ok,
            spools=spool_count,
        )

        return HealthReport(
            status=status,
            issues=issues,
            warnings=warnings,
            engine_available=engine_ok,
            work_dir_writable=work_dir_ok,
            spool_count=spool_count,
        )
