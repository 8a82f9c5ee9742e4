"""
FastAPI health check router
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from step_rewards.health.checks import HealthChecker


def create_health_router(
    health_checker: Optional[HealthChecker] = None, include_metrics: bool = True
) -> APIRouter:
    """
    Create a FastAPI router with standard health endpoints

    Args:
        health_checker: Optional custom health checker
        include_metrics: Whether to include Prometheus metrics endpoint

    Returns:
        Configured APIRouter
    """
    router = APIRouter(tags=["health"])

    if health_checker is None:
        health_checker = HealthChecker()

    @router.get("/healthz")
    async def liveness() -> Dict[str, str]:
        """
        Kubernetes liveness probe endpoint.
        Returns 200 if the service is alive.
        """
        return {"status": "ok"}

    @router.get("/readyz")
    async def readiness() -> Any:
        """
        Kubernetes readiness probe endpoint.
        Returns 503 when any registered check fails.
        """
        result = await health_checker.check_health()

        if not result["ready"]:
            return JSONResponse(content=result, status_code=503)

        return result

    if include_metrics:

        @router.get("/metrics")
        async def metrics() -> Response:
            """
            Prometheus metrics endpoint
            """
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return router
