"""Unit tests for the stores and the storage guard."""

import asyncio
import datetime as dt
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from step_rewards.errors import StorageUnavailable
from step_rewards.models import (
    AuditOutcome,
    AuditRecord,
    DailyLedgerEntry,
    UserPhaseState,
)
from step_rewards.storage import GuardedStore, InMemoryStore, PostgresStore

DAY = dt.date(2026, 3, 10)


class TestInMemoryStore:
    """Test the in-memory store."""

    @pytest.mark.asyncio()
    async def test_save_progress(self, store):
        """Test ledger, phase state and audit are saved together."""
        entry = DailyLedgerEntry(user_id="user-1", date=DAY, raw_steps=100)
        state = UserPhaseState(user_id="user-1", cumulative_phase_steps=100)
        audit = AuditRecord(user_id="user-1", device_id="phone", outcome=AuditOutcome.CREDITED)

        await store.save_progress(entry, state, audit)

        assert (await store.get_ledger_entry("user-1", DAY)).raw_steps == 100
        assert (await store.get_phase_state("user-1")).cumulative_phase_steps == 100
        assert [r.record_id for r in await store.get_audit_trail("user-1")] == [audit.record_id]

    @pytest.mark.asyncio()
    async def test_returns_copies(self, store):
        """Test mutating a loaded model does not change the stored one."""
        await store.save_ledger_entry(DailyLedgerEntry(user_id="user-1", date=DAY))

        loaded = await store.get_ledger_entry("user-1", DAY)
        loaded.raw_steps = 999

        assert (await store.get_ledger_entry("user-1", DAY)).raw_steps == 0

    @pytest.mark.asyncio()
    async def test_audit_trail_filters(self, store):
        """Test audit records are newest first and filterable by outcome."""
        for outcome in (AuditOutcome.CREDITED, AuditOutcome.REJECTED, AuditOutcome.CREDITED):
            await store.append_audit(
                AuditRecord(user_id="user-1", device_id="phone", outcome=outcome)
            )
        await store.append_audit(
            AuditRecord(user_id="user-2", device_id="phone", outcome=AuditOutcome.REJECTED)
        )

        rejected = await store.get_audit_trail("user-1", outcome=AuditOutcome.REJECTED)
        latest = await store.get_audit_trail("user-1", limit=1)

        assert len(rejected) == 1
        assert latest[0].outcome == AuditOutcome.CREDITED

    @pytest.mark.asyncio()
    async def test_pending_entries(self, store):
        """Test only open or redeemable past entries are pending."""
        await store.save_ledger_entry(DailyLedgerEntry(user_id="u", date=dt.date(2026, 3, 8)))
        await store.save_ledger_entry(
            DailyLedgerEntry(user_id="u", date=dt.date(2026, 3, 7), sealed=True, is_redeemed=True)
        )
        await store.save_ledger_entry(DailyLedgerEntry(user_id="u", date=DAY))

        pending = await store.list_pending_entries(before=DAY)

        assert [e.date for e in pending] == [dt.date(2026, 3, 8)]

    @pytest.mark.asyncio()
    async def test_stale_write_keeps_one_way_flags(self, store):
        """Test an older copy of an entry cannot un-redeem, unseal or unforfeit it."""
        stale = DailyLedgerEntry(user_id="u", date=DAY, raw_steps=100, paisa_earned=4)
        redeemed_at = dt.datetime(2026, 3, 10, 18, 0, tzinfo=dt.UTC)
        closed = {
            "is_redeemed": True,
            "redeemed_at": redeemed_at,
            "sealed": True,
            "forfeited": True,
        }
        await store.save_ledger_entry(stale.model_copy(update=closed))

        await store.save_ledger_entry(stale)

        saved = await store.get_ledger_entry("u", DAY)
        assert saved.is_redeemed is True
        assert saved.redeemed_at == redeemed_at
        assert saved.sealed is True
        assert saved.forfeited is True


class SlowStore(InMemoryStore):
    async def get_devices(self, user_id):
        await asyncio.sleep(1)
        return []


class TestGuardedStore:
    """Test timeouts and failure mapping."""

    @pytest.mark.asyncio()
    async def test_timeout_raises_storage_unavailable(self):
        """Test slow calls are cut off after the timeout."""
        guarded = GuardedStore(SlowStore(), timeout=0.01)

        with pytest.raises(StorageUnavailable):
            await guarded.get_devices("user-1")

    @pytest.mark.asyncio()
    async def test_connection_error_mapped(self):
        """Test connection failures become StorageUnavailable."""
        inner = InMemoryStore()
        inner.get_phase_state = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        guarded = GuardedStore(inner, timeout=1)

        with pytest.raises(StorageUnavailable):
            await guarded.get_phase_state("user-1")
        inner.get_phase_state.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_other_errors_propagate(self):
        """Test programming errors are not disguised as outages."""
        inner = InMemoryStore()
        inner.get_wallet = AsyncMock(side_effect=KeyError("wallet"))
        guarded = GuardedStore(inner, timeout=1)

        with pytest.raises(KeyError):
            await guarded.get_wallet("user-1")

    @pytest.mark.asyncio()
    async def test_passthrough(self):
        """Test successful calls return the inner result."""
        guarded = GuardedStore(InMemoryStore(), timeout=1)

        assert await guarded.ping() is True


class TestPostgresStore:
    """Test the PostgreSQL store with a mocked pool."""

    @pytest.fixture()
    def mock_pool(self):
        conn = AsyncMock()
        conn.transaction = MagicMock()
        conn.transaction.return_value.__aenter__ = AsyncMock(return_value=None)
        conn.transaction.return_value.__aexit__ = AsyncMock(return_value=False)

        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        pool.close = AsyncMock()
        return pool, conn

    @pytest.mark.asyncio()
    async def test_start_creates_schema(self, mock_pool):
        """Test the pool is created and the schema applied."""
        pool, conn = mock_pool
        store = PostgresStore("postgresql://localhost/rewards")

        with patch(
            "step_rewards.storage.postgres.asyncpg.create_pool", AsyncMock(return_value=pool)
        ) as create_pool:
            await store.start()

        create_pool.assert_awaited_once()
        assert "CREATE TABLE IF NOT EXISTS reward_daily_ledger" in conn.execute.call_args[0][0]

    @pytest.mark.asyncio()
    async def test_save_progress_in_one_transaction(self, mock_pool):
        """Test ledger, state and audit writes share a transaction."""
        pool, conn = mock_pool
        store = PostgresStore("postgresql://localhost/rewards")
        store.pool = pool

        await store.save_progress(
            DailyLedgerEntry(user_id="user-1", date=DAY),
            UserPhaseState(user_id="user-1"),
            AuditRecord(user_id="user-1", device_id="phone", outcome=AuditOutcome.CREDITED),
        )

        conn.transaction.assert_called_once()
        assert conn.execute.await_count == 3

    @pytest.mark.asyncio()
    async def test_ledger_upsert_never_reverts_flags(self, mock_pool):
        """Test the upsert ORs redemption, sealing and forfeiture with the stored row."""
        pool, conn = mock_pool
        store = PostgresStore("postgresql://localhost/rewards")
        store.pool = pool

        await store.save_ledger_entry(DailyLedgerEntry(user_id="user-1", date=DAY))

        sql = conn.execute.call_args[0][0]
        assert "is_redeemed = reward_daily_ledger.is_redeemed OR EXCLUDED.is_redeemed" in sql
        assert "sealed = reward_daily_ledger.sealed OR EXCLUDED.sealed" in sql
        assert "forfeited = reward_daily_ledger.forfeited OR EXCLUDED.forfeited" in sql

    @pytest.mark.asyncio()
    async def test_not_connected(self):
        """Test calls before start fail with a connection error."""
        store = PostgresStore("postgresql://localhost/rewards")

        with pytest.raises(ConnectionError):
            await store.ping()
