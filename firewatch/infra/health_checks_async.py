# firewatch/infra/health_checks_async.py
from __future__ import annotations
import time
from typing import Dict, Any, Sequence
from enum import Enum

from firewatch.core.notify.channels import NotificationChannel
from firewatch.infra.db_async import get_pool
from firewatch.infra.logging_config import get_logger
from firewatch.infra.schema_validator import get_schema_info

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class AsyncHealthCheck:
    """Base class for async health checks"""

    def __init__(self, name: str, critical: bool = True):
        self.name = name
        self.critical = critical

    async def check(self) -> Dict[str, Any]:
        """
        Perform health check.
        Returns dict with 'status', 'details', and optionally 'error'
        """
        raise NotImplementedError


def _result(status: HealthStatus, details: str, **extra: Any) -> Dict[str, Any]:
    return {"status": status, "details": details, **extra}


class AsyncDatabaseHealthCheck(AsyncHealthCheck):
    """Database connectivity plus presence of the incidents table"""

    SLOW_SECONDS = 1.0

    def __init__(self):
        super().__init__("database", critical=True)

    async def check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            pool = await get_pool()
            async with pool.acquire() as conn:
                table = await conn.fetchval("SELECT to_regclass('incidents')")
        except Exception as exc:
            logger.error("Database health check failed", exc_info=True)
            return _result(HealthStatus.UNHEALTHY, "Database connection failed", error=str(exc)[:200])

        elapsed = time.perf_counter() - started
        if table is None:
            return _result(
                HealthStatus.UNHEALTHY, "Incidents table missing",
                error="Run migrations: python -m firewatch.infra.migrate",
            )
        if elapsed > self.SLOW_SECONDS:
            return _result(HealthStatus.DEGRADED, f"Slow database response: {elapsed:.3f}s", response_time=elapsed)
        return _result(HealthStatus.HEALTHY, "Incident store reachable", response_time=elapsed)


class AsyncChannelsHealthCheck(AsyncHealthCheck):
    """Reports which alert channels are configured; never fails readiness"""

    def __init__(self, channels: Sequence[NotificationChannel]):
        super().__init__("notification_channels", critical=False)
        self._channels = list(channels)

    async def check(self) -> Dict[str, Any]:
        configured = {ch.name: ch.is_configured() for ch in self._channels}
        if any(configured.values()):
            return _result(HealthStatus.HEALTHY, "At least one channel configured", channels=configured)
        return _result(HealthStatus.DEGRADED, "No notification channels configured", channels=configured)


class AsyncHealthChecker:
    """Aggregate async health checks"""

    def __init__(self, checks: Sequence[AsyncHealthCheck] | None = None):
        self.checks: list[AsyncHealthCheck] = (
            list(checks) if checks is not None else [AsyncDatabaseHealthCheck()]
        )

    async def run_checks(self, include_non_critical: bool = True) -> Dict[str, Any]:
        """
        Returns:
            {
                "status": "healthy" | "degraded" | "unhealthy",
                "checks": {...},
                "schema": {...},
                "timestamp": float
            }
        """
        results = {}
        overall_status = HealthStatus.HEALTHY

        for check in self.checks:
            if not include_non_critical and not check.critical:
                continue

            result = await check.check()
            results[check.name] = result

            if result["status"] == HealthStatus.UNHEALTHY and check.critical:
                overall_status = HealthStatus.UNHEALTHY
            elif result["status"] != HealthStatus.HEALTHY and overall_status == HealthStatus.HEALTHY:
                overall_status = HealthStatus.DEGRADED

        try:
            schema_info = await get_schema_info()
        except Exception as exc:
            schema_info = {"error": str(exc)[:200]}

        return {
            "status": overall_status.value,
            "checks": results,
            "schema": schema_info,
            "timestamp": time.time(),
        }
