"""
Health check utilities
"""

from step_rewards.health.checks import HealthChecker, storage_health_check
from step_rewards.health.router import create_health_router

__all__ = ["HealthChecker", "storage_health_check", "create_health_router"]
