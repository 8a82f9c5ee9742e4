"""Operational endpoints."""

import structlog
from fastapi import APIRouter, Depends

from ..dependencies import get_engine
from ..engine import RewardsEngine
from ..models import RolloverReport

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/rollover", response_model=RolloverReport)
async def run_rollover(engine: RewardsEngine = Depends(get_engine)) -> RolloverReport:
    """Run the day rollover now. Safe to repeat."""
    logger.info("Manual rollover requested")
    return await engine.run_rollover()
