"""REST endpoints for step sample ingestion and the audit trail."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..dependencies import get_engine
from ..engine import RewardsEngine
from ..models import AuditOutcome, AuditRecord, IngestResult

router = APIRouter(prefix="/users/{user_id}", tags=["samples"])


class SampleSubmission(BaseModel):
    """Raw sample as reported by a device SDK."""

    device_id: str = Field(min_length=1)
    payload: dict[str, Any]


@router.post("/samples", response_model=IngestResult)
async def ingest_sample(
    user_id: str,
    submission: SampleSubmission,
    engine: RewardsEngine = Depends(get_engine),
) -> IngestResult:
    """Validate, score and credit one step sample.

    Rejections are returned with ``accepted=false`` and a reason code; they
    are not HTTP errors.
    """
    return await engine.ingest_step(user_id, submission.device_id, submission.payload)


@router.get("/audit", response_model=list[AuditRecord])
async def get_audit_trail(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    outcome: Optional[AuditOutcome] = None,
    engine: RewardsEngine = Depends(get_engine),
) -> list[AuditRecord]:
    """Audit records for a user, newest first."""
    return await engine.get_audit_trail(user_id, limit=limit, outcome=outcome)
