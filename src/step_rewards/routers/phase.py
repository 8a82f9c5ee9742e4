"""REST endpoints for tier progression."""

from fastapi import APIRouter, Depends

from ..dependencies import get_engine
from ..engine import RewardsEngine
from ..models import PhaseProgress, UserPhaseState

router = APIRouter(prefix="/users/{user_id}/phase", tags=["phase"])


@router.get("", response_model=UserPhaseState)
async def get_phase_state(
    user_id: str, engine: RewardsEngine = Depends(get_engine)
) -> UserPhaseState:
    return await engine.get_phase_state(user_id)


@router.get("/progress", response_model=PhaseProgress)
async def get_phase_progress(
    user_id: str, engine: RewardsEngine = Depends(get_engine)
) -> PhaseProgress:
    """Progress toward the next tier, including the time limit status."""
    return await engine.get_phase_progress(user_id)
