"""Local-midnight day rollover: sealing, streaks and forfeiture."""

import asyncio
import datetime as dt
from collections import defaultdict
from typing import Callable
from zoneinfo import ZoneInfo

import structlog
from croniter import croniter

from .locks import UserLockRegistry
from .logging import user_context
from .metrics import entries_forfeited, entries_sealed, rollover_runs
from .models import DailyLedgerEntry, RolloverReport, UserPhaseState, utcnow
from .storage import RewardsStore

logger = structlog.get_logger(__name__)


class RolloverScheduler:
    """Closes past days at local midnight in the configured timezone.

    Runs are idempotent: sealed entries are never re-sealed and forfeited
    entries are skipped, so a second run for the same boundary is a no-op.
    """

    def __init__(
        self,
        store: RewardsStore,
        locks: UserLockRegistry,
        timezone: str = "UTC",
        cron: str = "0 0 * * *",
        grace_seconds: int = 60,
        daily_goal: int = 10000,
        redemption_window_days: int = 7,
        retry_seconds: float = 60,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        self.store = store
        self.locks = locks
        self.tz = ZoneInfo(timezone)
        self.cron = cron
        self.grace = dt.timedelta(seconds=grace_seconds)
        self.daily_goal = daily_goal
        self.redemption_window = dt.timedelta(days=redemption_window_days)
        self.retry_delay = dt.timedelta(seconds=retry_seconds)
        self.clock = clock
        self._task: asyncio.Task | None = None

    def local_date(self, ts: dt.datetime) -> dt.date:
        return ts.astimezone(self.tz).date()

    def boundary_after(self, day: dt.date) -> dt.datetime:
        """Instant (UTC) at which ``day`` ends in local time."""
        next_midnight = dt.datetime.combine(day + dt.timedelta(days=1), dt.time(), tzinfo=self.tz)
        return next_midnight.astimezone(dt.UTC)

    def grace_target(self, sealed_day: dt.date, received_at: dt.datetime) -> dt.date | None:
        """Day to credit a sample for a sealed day, or None when the grace window has passed."""
        boundary = self.boundary_after(sealed_day)
        if boundary <= received_at <= boundary + self.grace:
            return sealed_day + dt.timedelta(days=1)
        return None

    def next_boundary(self, now: dt.datetime) -> dt.datetime:
        local_now = now.astimezone(self.tz)
        return croniter(self.cron, local_now).get_next(dt.datetime).astimezone(dt.UTC)

    def _update_streak(self, state: UserPhaseState, entry: DailyLedgerEntry) -> None:
        if entry.raw_steps >= self.daily_goal:
            if state.last_streak_date == entry.date - dt.timedelta(days=1):
                state.current_streak_days += 1
            else:
                state.current_streak_days = 1
            state.last_streak_date = entry.date
            state.longest_streak_days = max(state.longest_streak_days, state.current_streak_days)
        else:
            state.current_streak_days = 0

    async def _roll_user(
        self, user_id: str, days: list[dt.date], today: dt.date, now: dt.datetime
    ) -> tuple[int, int]:
        forfeit_before = today - self.redemption_window
        sealed = forfeited = 0

        with user_context(user_id):
            async with self.locks.hold(user_id):
                state = await self.store.get_phase_state(user_id)
                state_changed = False
                changed: list[DailyLedgerEntry] = []

                for day in sorted(days):
                    entry = await self.store.get_ledger_entry(user_id, day)
                    if entry is None:
                        continue
                    touched = False

                    if not entry.sealed:
                        entry.sealed = True
                        entry.sealed_at = now
                        touched = True
                        sealed += 1
                        if state is None:
                            state = UserPhaseState(user_id=user_id, phase_start_date=now)
                        self._update_streak(state, entry)
                        state_changed = True

                    stale = entry.date < forfeit_before
                    if stale and not entry.is_redeemed and not entry.forfeited:
                        entry.forfeited = True
                        touched = True
                        forfeited += 1

                    if touched:
                        entry.updated_at = now
                        changed.append(entry)

                if changed:
                    await self.store.save_rollover(changed, state if state_changed else None)

        return sealed, forfeited

    async def run(self, now: dt.datetime | None = None) -> RolloverReport:
        """Seal and forfeit every pending entry dated before the local date of ``now``."""
        now = now or self.clock()
        today = self.local_date(now)

        pending = await self.store.list_pending_entries(before=today)
        by_user: dict[str, list[dt.date]] = defaultdict(list)
        for entry in pending:
            by_user[entry.user_id].append(entry.date)

        report = RolloverReport(today=today, users=len(by_user), ran_at=now)
        for user_id, days in by_user.items():
            sealed, forfeited = await self._roll_user(user_id, days, today, now)
            report.entries_sealed += sealed
            report.entries_forfeited += forfeited

        rollover_runs.inc()
        entries_sealed.inc(report.entries_sealed)
        entries_forfeited.inc(report.entries_forfeited)
        logger.info(
            "Rollover completed",
            today=today.isoformat(),
            users=report.users,
            entries_sealed=report.entries_sealed,
            entries_forfeited=report.entries_forfeited,
        )
        return report

    async def _loop(self) -> None:
        # Catch up on boundaries missed while the service was down
        next_run = self.clock()
        while True:
            delay = (next_run - self.clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await self.run()
            except Exception as e:
                logger.error("Rollover run failed", error=str(e), exc_info=True)
                next_run = self.clock() + self.retry_delay
                logger.info("Rollover retry scheduled", at=next_run.isoformat())
                continue
            next_run = self.next_boundary(self.clock())
            logger.info("Next rollover scheduled", at=next_run.isoformat())

    def start(self) -> None:
        if self._task is None or self._task.done():
            logger.info("Starting rollover scheduler", cron=self.cron, timezone=str(self.tz))
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        logger.info("Stopping rollover scheduler")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
