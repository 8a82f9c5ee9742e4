"""Unit tests for the day rollover scheduler."""

import asyncio
import datetime as dt
from unittest.mock import AsyncMock, patch

import pytest

from step_rewards.errors import StorageUnavailable
from step_rewards.locks import UserLockRegistry
from step_rewards.models import DailyLedgerEntry, UserPhaseState
from step_rewards.rollover import RolloverScheduler

NOW = dt.datetime(2026, 3, 10, 0, 0, 5, tzinfo=dt.UTC)


@pytest.fixture()
def scheduler(store):
    return RolloverScheduler(store, UserLockRegistry(), clock=lambda: NOW)


def entry(day: dt.date, raw_steps: int = 0, **kwargs) -> DailyLedgerEntry:
    return DailyLedgerEntry(user_id="user-1", date=day, raw_steps=raw_steps, **kwargs)


class TestDayBoundaries:
    """Test local date and grace window computation."""

    def test_grace_window(self, scheduler):
        """Test late samples are moved to the next day only within 60 seconds."""
        sealed_day = dt.date(2026, 3, 9)

        assert scheduler.grace_target(
            sealed_day, dt.datetime(2026, 3, 10, 0, 0, 30, tzinfo=dt.UTC)
        ) == dt.date(2026, 3, 10)
        assert scheduler.grace_target(
            sealed_day, dt.datetime(2026, 3, 10, 0, 1, 0, tzinfo=dt.UTC)
        ) == dt.date(2026, 3, 10)
        assert scheduler.grace_target(
            sealed_day, dt.datetime(2026, 3, 10, 0, 1, 1, tzinfo=dt.UTC)
        ) is None

    def test_local_date_uses_timezone(self, store):
        """Test dates follow the configured zone."""
        scheduler = RolloverScheduler(store, UserLockRegistry(), timezone="Asia/Kolkata")

        assert scheduler.local_date(dt.datetime(2026, 3, 9, 19, 0, tzinfo=dt.UTC)) == dt.date(
            2026, 3, 10
        )
        assert scheduler.boundary_after(dt.date(2026, 3, 9)) == dt.datetime(
            2026, 3, 9, 18, 30, tzinfo=dt.UTC
        )

    def test_next_boundary(self, store):
        """Test the next boundary is the next local midnight."""
        utc = RolloverScheduler(store, UserLockRegistry())
        ist = RolloverScheduler(store, UserLockRegistry(), timezone="Asia/Kolkata")
        now = dt.datetime(2026, 3, 10, 12, 0, tzinfo=dt.UTC)

        assert utc.next_boundary(now) == dt.datetime(2026, 3, 11, 0, 0, tzinfo=dt.UTC)
        assert ist.next_boundary(now) == dt.datetime(2026, 3, 10, 18, 30, tzinfo=dt.UTC)


class TestRun:
    """Test sealing, streaks and forfeiture."""

    @pytest.mark.asyncio()
    async def test_seals_past_days_only(self, scheduler, store):
        """Test entries before today are sealed and today stays open."""
        await store.save_ledger_entry(entry(dt.date(2026, 3, 9), 500))
        await store.save_ledger_entry(entry(dt.date(2026, 3, 10), 500))

        report = await scheduler.run()

        assert report.entries_sealed == 1
        assert (await store.get_ledger_entry("user-1", dt.date(2026, 3, 9))).sealed is True
        assert (await store.get_ledger_entry("user-1", dt.date(2026, 3, 10))).sealed is False

    @pytest.mark.asyncio()
    async def test_idempotent(self, scheduler, store):
        """Test a second run for the same boundary changes nothing."""
        await store.save_ledger_entry(entry(dt.date(2026, 3, 9), 11_000))
        await scheduler.run()
        state_after_first = await store.get_phase_state("user-1")
        entry_after_first = await store.get_ledger_entry("user-1", dt.date(2026, 3, 9))

        report = await scheduler.run()

        assert report.entries_sealed == 0
        assert report.entries_forfeited == 0
        assert await store.get_phase_state("user-1") == state_after_first
        assert await store.get_ledger_entry("user-1", dt.date(2026, 3, 9)) == entry_after_first

    @pytest.mark.asyncio()
    async def test_streaks(self, scheduler, store):
        """Test goal days extend the streak and a missed goal resets it."""
        await store.save_phase_state(UserPhaseState(user_id="user-1"))
        await store.save_ledger_entry(entry(dt.date(2026, 3, 7), 10_000))
        await store.save_ledger_entry(entry(dt.date(2026, 3, 8), 12_500))
        await store.save_ledger_entry(entry(dt.date(2026, 3, 9), 500))

        await scheduler.run()

        state = await store.get_phase_state("user-1")
        assert state.current_streak_days == 0
        assert state.longest_streak_days == 2

    @pytest.mark.asyncio()
    async def test_streak_continues_across_runs(self, scheduler, store):
        """Test consecutive goal days sealed on separate runs extend the streak."""
        await store.save_ledger_entry(entry(dt.date(2026, 3, 8), 10_000))
        await scheduler.run(dt.datetime(2026, 3, 9, 0, 0, tzinfo=dt.UTC))
        await store.save_ledger_entry(entry(dt.date(2026, 3, 9), 10_000))
        await scheduler.run(NOW)

        state = await store.get_phase_state("user-1")
        assert state.current_streak_days == 2
        assert state.last_streak_date == dt.date(2026, 3, 9)

    @pytest.mark.asyncio()
    async def test_forfeits_stale_unredeemed_entries(self, scheduler, store):
        """Test unredeemed coins older than seven days are forfeited."""
        await store.save_ledger_entry(entry(dt.date(2026, 3, 2), paisa_earned=50, sealed=True))
        await store.save_ledger_entry(entry(dt.date(2026, 3, 3), paisa_earned=50, sealed=True))
        await store.save_ledger_entry(
            entry(dt.date(2026, 3, 1), paisa_earned=50, sealed=True, is_redeemed=True)
        )

        report = await scheduler.run()

        assert report.entries_forfeited == 1
        assert (await store.get_ledger_entry("user-1", dt.date(2026, 3, 2))).forfeited is True
        assert (await store.get_ledger_entry("user-1", dt.date(2026, 3, 3))).forfeited is False
        assert (await store.get_ledger_entry("user-1", dt.date(2026, 3, 1))).forfeited is False


class TestLoop:
    """Test the background loop."""

    @pytest.mark.asyncio()
    async def test_start_runs_catch_up_and_stop_cancels(self, scheduler):
        """Test the loop runs immediately on start and stops cleanly."""
        ran = asyncio.Event()

        async def fake_run(now=None):
            ran.set()

        with patch.object(scheduler, "run", side_effect=fake_run):
            scheduler.start()
            await asyncio.wait_for(ran.wait(), timeout=1)
            await scheduler.stop()

        assert scheduler._task is None

    @pytest.mark.asyncio()
    async def test_failed_run_is_logged(self, scheduler):
        """Test storage failures do not kill the loop."""
        calls = AsyncMock(side_effect=StorageUnavailable("down"))

        with patch.object(scheduler, "run", calls):
            scheduler.start()
            await asyncio.sleep(0.01)
            assert scheduler._task is not None and not scheduler._task.done()
            await scheduler.stop()

        calls.assert_awaited()

    @pytest.mark.asyncio()
    async def test_unexpected_error_is_retried(self, store):
        """Test errors outside the engine taxonomy keep the loop alive and retry soon."""
        store.list_pending_entries = AsyncMock(side_effect=ValueError("bad row"))
        scheduler = RolloverScheduler(
            store, UserLockRegistry(), retry_seconds=0.01, clock=lambda: NOW
        )

        scheduler.start()
        await asyncio.sleep(0.1)
        task = scheduler._task

        assert task is not None and not task.done()
        assert store.list_pending_entries.await_count >= 2
        await scheduler.stop()
