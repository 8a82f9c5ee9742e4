"""
Health check implementations
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List

import structlog

from step_rewards.storage import RewardsStore

logger = structlog.get_logger(__name__)


class HealthChecker:
    """Configurable readiness checker"""

    def __init__(self):
        self.checks: List[Callable[[], Awaitable[Dict[str, Any]]]] = []

    def add_check(self, name: str, check_func: Callable[[], Awaitable[bool]]) -> None:
        """
        Add a health check

        Args:
            name: Name of the check
            check_func: Async function that returns True if healthy
        """

        async def wrapped_check() -> Dict[str, Any]:
            start_time = datetime.now(timezone.utc)
            try:
                result = await check_func()
            except Exception as e:
                logger.error("Health check failed", check=name, error=str(e))
                return {
                    "name": name,
                    "status": "unhealthy",
                    "error": str(e),
                }

            duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
            return {
                "name": name,
                "status": "healthy" if result else "unhealthy",
                "duration_ms": duration_ms,
            }

        self.checks.append(wrapped_check)

    async def check_health(self) -> Dict[str, Any]:
        """
        Run all health checks and return aggregated result

        Returns:
            Dictionary with overall status and individual check results
        """
        results = await asyncio.gather(*[check() for check in self.checks])
        all_healthy = all(r["status"] == "healthy" for r in results)

        return {
            "ready": all_healthy,
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": list(results),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def storage_health_check(store: RewardsStore) -> Callable[[], Awaitable[bool]]:
    """Build a readiness check that pings ``store``."""

    async def check() -> bool:
        return await store.ping()

    return check
