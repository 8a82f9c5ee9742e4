"""Daily step ledger: caps, unit conversion, earnings and redemption."""

import datetime as dt
from typing import Callable

import structlog

from .errors import DaySealedError
from .metrics import redemptions
from .models import (
    DailyLedgerEntry,
    PhaseDefinition,
    RedemptionResult,
    RedemptionStatus,
    RewardEvent,
    RewardEventType,
    WalletTransaction,
    utcnow,
)
from .phases import PhaseTable
from .storage import RewardsStore

logger = structlog.get_logger(__name__)


class DailyLedger:
    """Accumulates validated steps into per-day earnings.

    Earnings are always recomputed from the running raw total with the rate
    of the user's tier at computation time, so re-applying the same total
    yields the same entry.
    """

    def __init__(
        self,
        store: RewardsStore,
        phases: PhaseTable,
        daily_cap: int = 12000,
        steps_per_unit: int = 25,
        daily_goal: int = 10000,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.store = store
        self.phases = phases
        self.daily_cap = daily_cap
        self.steps_per_unit = steps_per_unit
        self.daily_goal = daily_goal
        self.clock = clock

    async def load(self, user_id: str, day: dt.date) -> DailyLedgerEntry:
        entry = await self.store.get_ledger_entry(user_id, day)
        return entry or DailyLedgerEntry(user_id=user_id, date=day)

    def accumulate(
        self, entry: DailyLedgerEntry, additional_steps: int, phase: PhaseDefinition
    ) -> list[RewardEvent]:
        """Add steps to a loaded entry and recompute its earnings in place.

        Returns goal and cap events the first time each threshold is crossed.
        """
        if entry.sealed:
            raise DaySealedError(entry.date)
        if additional_steps < 0:
            raise ValueError("additional_steps must be non-negative")

        entry.raw_steps += additional_steps
        entry.capped_steps = min(entry.raw_steps, self.daily_cap)
        entry.units_earned = entry.capped_steps // self.steps_per_unit
        entry.paisa_earned = entry.units_earned * phase.paisa_per_unit
        entry.tier_at_computation = phase.tier
        entry.updated_at = self.clock()

        events: list[RewardEvent] = []

        if not entry.goal_reached and entry.raw_steps >= self.daily_goal:
            entry.goal_reached = True
            events.append(
                RewardEvent(
                    event_type=RewardEventType.GOAL_ACHIEVED,
                    user_id=entry.user_id,
                    occurred_at=entry.updated_at,
                    data={"date": entry.date.isoformat(), "goal": self.daily_goal},
                )
            )

        if not entry.cap_reached and entry.raw_steps >= self.daily_cap:
            entry.cap_reached = True
            events.append(
                RewardEvent(
                    event_type=RewardEventType.DAILY_CAP_REACHED,
                    user_id=entry.user_id,
                    occurred_at=entry.updated_at,
                    data={
                        "date": entry.date.isoformat(),
                        "cap": self.daily_cap,
                        "message": (
                            f"Daily cap of {self.daily_cap:,} steps reached; "
                            "more steps today earn no extra coins"
                        ),
                    },
                )
            )

        return events

    async def apply_steps(
        self, user_id: str, day: dt.date, additional_steps: int
    ) -> DailyLedgerEntry:
        """Load, accumulate and persist in one go using the user's current tier."""
        entry = await self.load(user_id, day)
        state = await self.store.get_phase_state(user_id)
        phase = self.phases.get(state.current_tier if state else 1)

        self.accumulate(entry, additional_steps, phase)
        await self.store.save_ledger_entry(entry)
        return entry

    async def redeem(self, user_id: str, day: dt.date) -> RedemptionResult:
        """Move a day's earnings into the wallet exactly once."""
        entry = await self.store.get_ledger_entry(user_id, day)

        if entry is not None and entry.is_redeemed:
            status = RedemptionStatus.ALREADY_REDEEMED
        elif entry is not None and entry.forfeited:
            status = RedemptionStatus.EXPIRED
        elif entry is None or entry.paisa_earned == 0:
            status = RedemptionStatus.NO_COINS
        else:
            status = RedemptionStatus.SUCCESS

        if status != RedemptionStatus.SUCCESS:
            redemptions.labels(status=status.value).inc()
            logger.info("Redemption refused", user_id=user_id, date=day.isoformat(), status=status.value)
            return RedemptionResult(status=status, user_id=user_id, date=day)

        now = self.clock()
        entry.is_redeemed = True
        entry.redeemed_at = now
        entry.updated_at = now

        transaction = WalletTransaction(
            user_id=user_id,
            date=day,
            amount_paisa=entry.paisa_earned,
            description=f"Redeemed {entry.units_earned} units for {day.isoformat()}",
            created_at=now,
        )
        wallet = await self.store.commit_redemption(entry, transaction)

        redemptions.labels(status=status.value).inc()
        logger.info(
            "Day redeemed",
            user_id=user_id,
            date=day.isoformat(),
            amount_paisa=entry.paisa_earned,
            balance_paisa=wallet.balance_paisa,
        )
        return RedemptionResult(
            status=status,
            user_id=user_id,
            date=day,
            amount_paisa=entry.paisa_earned,
            wallet_balance_paisa=wallet.balance_paisa,
        )
