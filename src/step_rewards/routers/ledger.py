"""REST endpoints for daily ledger entries, redemption and the wallet."""

import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, status

from ..dependencies import get_engine
from ..engine import RewardsEngine
from ..models import DailyLedgerEntry, RedemptionResult, Wallet

router = APIRouter(prefix="/users/{user_id}", tags=["ledger"])


@router.get("/days/{date}", response_model=DailyLedgerEntry)
async def get_ledger_entry(
    user_id: str,
    date: dt.date,
    engine: RewardsEngine = Depends(get_engine),
) -> DailyLedgerEntry:
    entry = await engine.get_ledger_entry(user_id, date)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No ledger entry for {date.isoformat()}",
        )
    return entry


@router.post("/days/{date}/redeem", response_model=RedemptionResult)
async def redeem_day(
    user_id: str,
    date: dt.date,
    engine: RewardsEngine = Depends(get_engine),
) -> RedemptionResult:
    """Redeem a day's earnings. Repeated calls return ``already_redeemed``."""
    return await engine.redeem_day(user_id, date)


@router.get("/wallet", response_model=Wallet)
async def get_wallet(user_id: str, engine: RewardsEngine = Depends(get_engine)) -> Wallet:
    return await engine.get_wallet(user_id)
