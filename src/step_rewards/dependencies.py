"""FastAPI dependencies."""

from fastapi import Request

from .engine import RewardsEngine


def get_engine(request: Request) -> RewardsEngine:
    """Engine built by the application lifespan."""
    return request.app.state.engine
