"""Timeout and failure mapping around any RewardsStore."""

import asyncio
import datetime as dt
from typing import Awaitable, TypeVar

import asyncpg
import structlog

from ..errors import StorageUnavailable
from ..metrics import storage_failures
from ..models import (
    AuditOutcome,
    AuditRecord,
    DailyLedgerEntry,
    DeviceProfile,
    UserPhaseState,
    Wallet,
    WalletTransaction,
)
from .base import RewardsStore

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Failures that mean the store could not be reached, not that the request was wrong
TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
)


class GuardedStore(RewardsStore):
    """Bounds every store call by ``timeout`` seconds.

    A timeout or connection failure raises StorageUnavailable after a
    single attempt. Callers retry with backoff.
    """

    def __init__(self, inner: RewardsStore, timeout: float = 2.0):
        self.inner = inner
        self.timeout = timeout

    async def _guard(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except TRANSIENT_ERRORS as e:
            storage_failures.labels(operation=operation).inc()
            logger.error(
                "Storage call failed",
                operation=operation,
                error=str(e) or type(e).__name__,
            )
            raise StorageUnavailable(f"storage {operation} failed: {type(e).__name__}") from e

    async def start(self) -> None:
        await self.inner.start()

    async def stop(self) -> None:
        await self.inner.stop()

    async def ping(self) -> bool:
        return await self._guard("ping", self.inner.ping())

    async def get_phase_state(self, user_id: str) -> UserPhaseState | None:
        return await self._guard("get_phase_state", self.inner.get_phase_state(user_id))

    async def save_phase_state(self, state: UserPhaseState) -> None:
        await self._guard("save_phase_state", self.inner.save_phase_state(state))

    async def get_ledger_entry(self, user_id: str, day: dt.date) -> DailyLedgerEntry | None:
        return await self._guard("get_ledger_entry", self.inner.get_ledger_entry(user_id, day))

    async def save_ledger_entry(self, entry: DailyLedgerEntry) -> None:
        await self._guard("save_ledger_entry", self.inner.save_ledger_entry(entry))

    async def list_pending_entries(self, before: dt.date) -> list[DailyLedgerEntry]:
        return await self._guard("list_pending_entries", self.inner.list_pending_entries(before))

    async def save_progress(
        self, entry: DailyLedgerEntry, state: UserPhaseState, audit: AuditRecord
    ) -> None:
        await self._guard("save_progress", self.inner.save_progress(entry, state, audit))

    async def save_rollover(
        self, entries: list[DailyLedgerEntry], state: UserPhaseState | None
    ) -> None:
        await self._guard("save_rollover", self.inner.save_rollover(entries, state))

    async def append_audit(self, record: AuditRecord) -> None:
        await self._guard("append_audit", self.inner.append_audit(record))

    async def get_audit_trail(
        self,
        user_id: str,
        limit: int = 100,
        outcome: AuditOutcome | None = None,
    ) -> list[AuditRecord]:
        return await self._guard(
            "get_audit_trail", self.inner.get_audit_trail(user_id, limit, outcome)
        )

    async def get_devices(self, user_id: str) -> list[DeviceProfile]:
        return await self._guard("get_devices", self.inner.get_devices(user_id))

    async def save_devices(self, user_id: str, devices: list[DeviceProfile]) -> None:
        await self._guard("save_devices", self.inner.save_devices(user_id, devices))

    async def commit_redemption(
        self, entry: DailyLedgerEntry, transaction: WalletTransaction
    ) -> Wallet:
        return await self._guard(
            "commit_redemption", self.inner.commit_redemption(entry, transaction)
        )

    async def get_wallet(self, user_id: str) -> Wallet:
        return await self._guard("get_wallet", self.inner.get_wallet(user_id))

    async def get_wallet_transactions(self, user_id: str) -> list[WalletTransaction]:
        return await self._guard(
            "get_wallet_transactions", self.inner.get_wallet_transactions(user_id)
        )
