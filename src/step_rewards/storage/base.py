"""Storage interface shared by the in-memory and PostgreSQL stores."""

import datetime as dt
from abc import ABC, abstractmethod

from ..models import (
    AuditOutcome,
    AuditRecord,
    DailyLedgerEntry,
    DeviceProfile,
    UserPhaseState,
    Wallet,
    WalletTransaction,
)


class RewardsStore(ABC):
    """Persistence for ledger entries, phase state, devices, wallets and audit records.

    Every method may raise on connection failures; callers wrap the store in
    GuardedStore to bound latency and map failures to StorageUnavailable.
    """

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def stop(self) -> None:
        """Release connections. No-op by default."""

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def get_phase_state(self, user_id: str) -> UserPhaseState | None:
        ...

    @abstractmethod
    async def save_phase_state(self, state: UserPhaseState) -> None:
        ...

    @abstractmethod
    async def get_ledger_entry(self, user_id: str, day: dt.date) -> DailyLedgerEntry | None:
        ...

    @abstractmethod
    async def save_ledger_entry(self, entry: DailyLedgerEntry) -> None:
        ...

    @abstractmethod
    async def list_pending_entries(self, before: dt.date) -> list[DailyLedgerEntry]:
        """Entries dated before ``before`` that are unsealed, or unredeemed and not forfeited."""

    @abstractmethod
    async def save_progress(
        self, entry: DailyLedgerEntry, state: UserPhaseState, audit: AuditRecord
    ) -> None:
        """Persist a ledger update, phase state and audit record atomically."""

    @abstractmethod
    async def save_rollover(
        self, entries: list[DailyLedgerEntry], state: UserPhaseState | None
    ) -> None:
        """Persist sealed/forfeited entries of one user with the updated streaks atomically."""

    @abstractmethod
    async def append_audit(self, record: AuditRecord) -> None:
        ...

    @abstractmethod
    async def get_audit_trail(
        self,
        user_id: str,
        limit: int = 100,
        outcome: AuditOutcome | None = None,
    ) -> list[AuditRecord]:
        """Audit records of a user, newest first."""

    @abstractmethod
    async def get_devices(self, user_id: str) -> list[DeviceProfile]:
        ...

    @abstractmethod
    async def save_devices(self, user_id: str, devices: list[DeviceProfile]) -> None:
        """Replace the whole device set of a user."""

    @abstractmethod
    async def commit_redemption(
        self, entry: DailyLedgerEntry, transaction: WalletTransaction
    ) -> Wallet:
        """Mark ``entry`` redeemed and credit the wallet atomically."""

    @abstractmethod
    async def get_wallet(self, user_id: str) -> Wallet:
        ...

    @abstractmethod
    async def get_wallet_transactions(self, user_id: str) -> list[WalletTransaction]:
        ...
