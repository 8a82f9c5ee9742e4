"""PostgreSQL store on an asyncpg connection pool."""

import datetime as dt
from typing import Any

import asyncpg
import orjson
import structlog

from ..models import (
    AuditOutcome,
    AuditRecord,
    DailyLedgerEntry,
    DeviceProfile,
    UserPhaseState,
    Wallet,
    WalletTransaction,
    utcnow,
)
from .base import RewardsStore

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS reward_phase_states (
    user_id TEXT PRIMARY KEY,
    current_tier SMALLINT NOT NULL DEFAULT 1 CHECK (current_tier BETWEEN 1 AND 9),
    phase_start_date TIMESTAMPTZ NOT NULL,
    cumulative_phase_steps BIGINT NOT NULL DEFAULT 0,
    total_lifetime_steps BIGINT NOT NULL DEFAULT 0,
    current_streak_days INTEGER NOT NULL DEFAULT 0,
    longest_streak_days INTEGER NOT NULL DEFAULT 0,
    last_streak_date DATE
);

CREATE TABLE IF NOT EXISTS reward_daily_ledger (
    user_id TEXT NOT NULL,
    date DATE NOT NULL,
    raw_steps BIGINT NOT NULL DEFAULT 0,
    capped_steps INTEGER NOT NULL DEFAULT 0,
    units_earned INTEGER NOT NULL DEFAULT 0,
    paisa_earned INTEGER NOT NULL DEFAULT 0,
    tier_at_computation SMALLINT NOT NULL DEFAULT 1,
    device_steps JSONB NOT NULL DEFAULT '{}',
    limited_assessments JSONB NOT NULL DEFAULT '[]',
    goal_reached BOOLEAN NOT NULL DEFAULT FALSE,
    cap_reached BOOLEAN NOT NULL DEFAULT FALSE,
    is_redeemed BOOLEAN NOT NULL DEFAULT FALSE,
    redeemed_at TIMESTAMPTZ,
    sealed BOOLEAN NOT NULL DEFAULT FALSE,
    sealed_at TIMESTAMPTZ,
    forfeited BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, date)
);

CREATE TABLE IF NOT EXISTS reward_devices (
    user_id TEXT NOT NULL,
    device_id TEXT NOT NULL,
    device_type TEXT NOT NULL,
    is_primary BOOLEAN NOT NULL DEFAULT FALSE,
    last_sync_at TIMESTAMPTZ,
    battery_level SMALLINT,
    permission_revoked BOOLEAN NOT NULL DEFAULT FALSE,
    connected_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (user_id, device_id)
);

CREATE TABLE IF NOT EXISTS reward_wallets (
    user_id TEXT PRIMARY KEY,
    balance_paisa BIGINT NOT NULL DEFAULT 0,
    total_earned_paisa BIGINT NOT NULL DEFAULT 0,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS reward_wallet_transactions (
    transaction_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    date DATE NOT NULL,
    amount_paisa BIGINT NOT NULL,
    kind TEXT NOT NULL,
    description TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (user_id, date, kind)
);

CREATE TABLE IF NOT EXISTS reward_audit_records (
    record_id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    device_id TEXT NOT NULL,
    date DATE,
    recorded_at TIMESTAMPTZ NOT NULL,
    outcome TEXT NOT NULL,
    reason TEXT,
    message TEXT,
    sample JSONB,
    assessment JSONB,
    credited_steps INTEGER NOT NULL DEFAULT 0,
    raw_payload JSONB
);

CREATE INDEX IF NOT EXISTS idx_reward_audit_user_time
    ON reward_audit_records (user_id, recorded_at DESC);
"""

_UPSERT_LEDGER = """
INSERT INTO reward_daily_ledger (
    user_id, date, raw_steps, capped_steps, units_earned, paisa_earned,
    tier_at_computation, device_steps, limited_assessments, goal_reached,
    cap_reached, is_redeemed, redeemed_at, sealed, sealed_at, forfeited, updated_at
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb, $10, $11, $12, $13, $14, $15, $16, $17)
ON CONFLICT (user_id, date) DO UPDATE SET
    raw_steps = EXCLUDED.raw_steps,
    capped_steps = EXCLUDED.capped_steps,
    units_earned = EXCLUDED.units_earned,
    paisa_earned = EXCLUDED.paisa_earned,
    tier_at_computation = EXCLUDED.tier_at_computation,
    device_steps = EXCLUDED.device_steps,
    limited_assessments = EXCLUDED.limited_assessments,
    goal_reached = EXCLUDED.goal_reached,
    cap_reached = EXCLUDED.cap_reached,
    is_redeemed = reward_daily_ledger.is_redeemed OR EXCLUDED.is_redeemed,
    redeemed_at = COALESCE(reward_daily_ledger.redeemed_at, EXCLUDED.redeemed_at),
    sealed = reward_daily_ledger.sealed OR EXCLUDED.sealed,
    sealed_at = COALESCE(reward_daily_ledger.sealed_at, EXCLUDED.sealed_at),
    forfeited = reward_daily_ledger.forfeited OR EXCLUDED.forfeited,
    updated_at = EXCLUDED.updated_at
"""

_UPSERT_PHASE_STATE = """
INSERT INTO reward_phase_states (
    user_id, current_tier, phase_start_date, cumulative_phase_steps,
    total_lifetime_steps, current_streak_days, longest_streak_days, last_streak_date
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
ON CONFLICT (user_id) DO UPDATE SET
    current_tier = GREATEST(reward_phase_states.current_tier, EXCLUDED.current_tier),
    phase_start_date = EXCLUDED.phase_start_date,
    cumulative_phase_steps = EXCLUDED.cumulative_phase_steps,
    total_lifetime_steps = EXCLUDED.total_lifetime_steps,
    current_streak_days = EXCLUDED.current_streak_days,
    longest_streak_days = EXCLUDED.longest_streak_days,
    last_streak_date = EXCLUDED.last_streak_date
"""

_INSERT_AUDIT = """
INSERT INTO reward_audit_records (
    record_id, user_id, device_id, date, recorded_at, outcome, reason,
    message, sample, assessment, credited_steps, raw_payload
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10::jsonb, $11, $12::jsonb)
"""


def _json(value: Any) -> str | None:
    if value is None:
        return None
    return orjson.dumps(value).decode()


def _load(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return orjson.loads(value)
    return value


def _ledger_args(entry: DailyLedgerEntry) -> tuple:
    data = entry.model_dump(mode="json")
    return (
        entry.user_id,
        entry.date,
        entry.raw_steps,
        entry.capped_steps,
        entry.units_earned,
        entry.paisa_earned,
        entry.tier_at_computation,
        _json(data["device_steps"]),
        _json(data["limited_assessments"]),
        entry.goal_reached,
        entry.cap_reached,
        entry.is_redeemed,
        entry.redeemed_at,
        entry.sealed,
        entry.sealed_at,
        entry.forfeited,
        entry.updated_at,
    )


def _phase_args(state: UserPhaseState) -> tuple:
    return (
        state.user_id,
        state.current_tier,
        state.phase_start_date,
        state.cumulative_phase_steps,
        state.total_lifetime_steps,
        state.current_streak_days,
        state.longest_streak_days,
        state.last_streak_date,
    )


def _audit_args(record: AuditRecord) -> tuple:
    data = record.model_dump(mode="json")
    return (
        record.record_id,
        record.user_id,
        record.device_id,
        record.date,
        record.recorded_at,
        record.outcome.value,
        record.reason.value if record.reason else None,
        record.message,
        _json(data["sample"]),
        _json(data["assessment"]),
        record.credited_steps,
        _json(data["raw_payload"]),
    )


def _ledger_from_row(row: asyncpg.Record) -> DailyLedgerEntry:
    data = dict(row)
    data["device_steps"] = _load(data["device_steps"])
    data["limited_assessments"] = _load(data["limited_assessments"])
    return DailyLedgerEntry.model_validate(data)


def _audit_from_row(row: asyncpg.Record) -> AuditRecord:
    data = dict(row)
    for key in ("sample", "assessment", "raw_payload"):
        data[key] = _load(data[key])
    return AuditRecord.model_validate(data)


class PostgresStore(RewardsStore):
    """Store backed by PostgreSQL. Multi-statement writes run in one transaction."""

    def __init__(
        self,
        database_url: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
        application_name: str = "step-rewards",
    ):
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.application_name = application_name
        self.pool: asyncpg.Pool | None = None

    async def start(self) -> None:
        """Create the connection pool and ensure the schema exists."""
        logger.info("Starting database connection pool")

        try:
            self.pool = await asyncpg.create_pool(
                self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=30,
                server_settings={"application_name": self.application_name},
            )

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA)

            logger.info("Database connection pool started successfully")
        except Exception as e:
            logger.error("Failed to start database connection pool", error=str(e))
            raise

    async def stop(self) -> None:
        logger.info("Stopping database connection pool")
        if self.pool:
            await self.pool.close()
            self.pool = None
        logger.info("Database connection pool stopped")

    def _pool(self) -> asyncpg.Pool:
        if not self.pool:
            raise ConnectionError("Database not connected")
        return self.pool

    async def ping(self) -> bool:
        async with self._pool().acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def get_phase_state(self, user_id: str) -> UserPhaseState | None:
        async with self._pool().acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM reward_phase_states WHERE user_id = $1", user_id
            )
        return UserPhaseState.model_validate(dict(row)) if row else None

    async def save_phase_state(self, state: UserPhaseState) -> None:
        async with self._pool().acquire() as conn:
            await conn.execute(_UPSERT_PHASE_STATE, *_phase_args(state))

    async def get_ledger_entry(self, user_id: str, day: dt.date) -> DailyLedgerEntry | None:
        async with self._pool().acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM reward_daily_ledger WHERE user_id = $1 AND date = $2",
                user_id,
                day,
            )
        return _ledger_from_row(row) if row else None

    async def save_ledger_entry(self, entry: DailyLedgerEntry) -> None:
        async with self._pool().acquire() as conn:
            await conn.execute(_UPSERT_LEDGER, *_ledger_args(entry))

    async def list_pending_entries(self, before: dt.date) -> list[DailyLedgerEntry]:
        async with self._pool().acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM reward_daily_ledger
                WHERE date < $1
                AND (NOT sealed OR (NOT is_redeemed AND NOT forfeited))
                ORDER BY user_id, date
                """,
                before,
            )
        return [_ledger_from_row(row) for row in rows]

    async def save_progress(
        self, entry: DailyLedgerEntry, state: UserPhaseState, audit: AuditRecord
    ) -> None:
        async with self._pool().acquire() as conn:
            async with conn.transaction():
                await conn.execute(_UPSERT_LEDGER, *_ledger_args(entry))
                await conn.execute(_UPSERT_PHASE_STATE, *_phase_args(state))
                await conn.execute(_INSERT_AUDIT, *_audit_args(audit))

    async def save_rollover(
        self, entries: list[DailyLedgerEntry], state: UserPhaseState | None
    ) -> None:
        async with self._pool().acquire() as conn:
            async with conn.transaction():
                await conn.executemany(_UPSERT_LEDGER, [_ledger_args(e) for e in entries])
                if state is not None:
                    await conn.execute(_UPSERT_PHASE_STATE, *_phase_args(state))

    async def append_audit(self, record: AuditRecord) -> None:
        async with self._pool().acquire() as conn:
            await conn.execute(_INSERT_AUDIT, *_audit_args(record))

    async def get_audit_trail(
        self,
        user_id: str,
        limit: int = 100,
        outcome: AuditOutcome | None = None,
    ) -> list[AuditRecord]:
        query = "SELECT * FROM reward_audit_records WHERE user_id = $1"
        args: list[Any] = [user_id]
        if outcome is not None:
            query += " AND outcome = $2"
            args.append(outcome.value)
        query += f" ORDER BY recorded_at DESC LIMIT ${len(args) + 1}"
        args.append(limit)

        async with self._pool().acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [_audit_from_row(row) for row in rows]

    async def get_devices(self, user_id: str) -> list[DeviceProfile]:
        async with self._pool().acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM reward_devices WHERE user_id = $1 ORDER BY connected_at",
                user_id,
            )
        return [DeviceProfile.model_validate(dict(row)) for row in rows]

    async def save_devices(self, user_id: str, devices: list[DeviceProfile]) -> None:
        async with self._pool().acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM reward_devices WHERE user_id = $1", user_id)
                await conn.executemany(
                    """
                    INSERT INTO reward_devices (
                        user_id, device_id, device_type, is_primary, last_sync_at,
                        battery_level, permission_revoked, connected_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    [
                        (
                            user_id,
                            d.device_id,
                            d.device_type.value,
                            d.is_primary,
                            d.last_sync_at,
                            d.battery_level,
                            d.permission_revoked,
                            d.connected_at,
                        )
                        for d in devices
                    ],
                )

    async def commit_redemption(
        self, entry: DailyLedgerEntry, transaction: WalletTransaction
    ) -> Wallet:
        async with self._pool().acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchval(
                    """
                    UPDATE reward_daily_ledger
                    SET is_redeemed = TRUE, redeemed_at = $3, updated_at = $3
                    WHERE user_id = $1 AND date = $2 AND NOT is_redeemed
                    RETURNING date
                    """,
                    entry.user_id,
                    entry.date,
                    entry.redeemed_at or utcnow(),
                )
                if updated is None:
                    raise ValueError(f"ledger entry {entry.date} already redeemed")

                await conn.execute(
                    """
                    INSERT INTO reward_wallet_transactions (
                        transaction_id, user_id, date, amount_paisa, kind, description, created_at
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    """,
                    transaction.transaction_id,
                    transaction.user_id,
                    transaction.date,
                    transaction.amount_paisa,
                    transaction.kind,
                    transaction.description,
                    transaction.created_at,
                )
                row = await conn.fetchrow(
                    """
                    INSERT INTO reward_wallets (user_id, balance_paisa, total_earned_paisa, updated_at)
                    VALUES ($1, $2, $2, NOW())
                    ON CONFLICT (user_id) DO UPDATE SET
                        balance_paisa = reward_wallets.balance_paisa + EXCLUDED.balance_paisa,
                        total_earned_paisa = reward_wallets.total_earned_paisa + EXCLUDED.total_earned_paisa,
                        updated_at = NOW()
                    RETURNING *
                    """,
                    transaction.user_id,
                    transaction.amount_paisa,
                )
        return Wallet.model_validate(dict(row))

    async def get_wallet(self, user_id: str) -> Wallet:
        async with self._pool().acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM reward_wallets WHERE user_id = $1", user_id)
        return Wallet.model_validate(dict(row)) if row else Wallet(user_id=user_id)

    async def get_wallet_transactions(self, user_id: str) -> list[WalletTransaction]:
        async with self._pool().acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM reward_wallet_transactions WHERE user_id = $1 ORDER BY created_at",
                user_id,
            )
        return [WalletTransaction.model_validate(dict(row)) for row in rows]
