"""In-process store used when no database is configured and in tests."""

import datetime as dt

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


class InMemoryStore(RewardsStore):
    """Dict-backed store. Models are copied on the way in and out."""

    def __init__(self, max_audit_records: int = 10000):
        self.max_audit_records = max_audit_records
        self.phase_states: dict[str, UserPhaseState] = {}
        self.ledger: dict[tuple[str, dt.date], DailyLedgerEntry] = {}
        self.devices: dict[str, list[DeviceProfile]] = {}
        self.wallets: dict[str, Wallet] = {}
        self.transactions: list[WalletTransaction] = []
        self.audit_records: list[AuditRecord] = []

    async def ping(self) -> bool:
        return True

    async def get_phase_state(self, user_id: str) -> UserPhaseState | None:
        state = self.phase_states.get(user_id)
        return state.model_copy(deep=True) if state else None

    async def save_phase_state(self, state: UserPhaseState) -> None:
        self.phase_states[state.user_id] = state.model_copy(deep=True)

    async def get_ledger_entry(self, user_id: str, day: dt.date) -> DailyLedgerEntry | None:
        entry = self.ledger.get((user_id, day))
        return entry.model_copy(deep=True) if entry else None

    async def save_ledger_entry(self, entry: DailyLedgerEntry) -> None:
        key = (entry.user_id, entry.date)
        stored = entry.model_copy(deep=True)
        existing = self.ledger.get(key)
        if existing is not None:
            # Redemption, sealing and forfeiture never revert
            stored.is_redeemed = stored.is_redeemed or existing.is_redeemed
            stored.redeemed_at = existing.redeemed_at or stored.redeemed_at
            stored.sealed = stored.sealed or existing.sealed
            stored.sealed_at = existing.sealed_at or stored.sealed_at
            stored.forfeited = stored.forfeited or existing.forfeited
        self.ledger[key] = stored

    async def list_pending_entries(self, before: dt.date) -> list[DailyLedgerEntry]:
        return [
            entry.model_copy(deep=True)
            for (_, day), entry in sorted(self.ledger.items(), key=lambda kv: kv[0])
            if day < before
            and (not entry.sealed or (not entry.is_redeemed and not entry.forfeited))
        ]

    async def save_progress(
        self, entry: DailyLedgerEntry, state: UserPhaseState, audit: AuditRecord
    ) -> None:
        await self.save_ledger_entry(entry)
        await self.save_phase_state(state)
        await self.append_audit(audit)

    async def save_rollover(
        self, entries: list[DailyLedgerEntry], state: UserPhaseState | None
    ) -> None:
        for entry in entries:
            await self.save_ledger_entry(entry)
        if state is not None:
            await self.save_phase_state(state)

    async def append_audit(self, record: AuditRecord) -> None:
        self.audit_records.append(record.model_copy(deep=True))
        if len(self.audit_records) > self.max_audit_records:
            del self.audit_records[: len(self.audit_records) - self.max_audit_records]

    async def get_audit_trail(
        self,
        user_id: str,
        limit: int = 100,
        outcome: AuditOutcome | None = None,
    ) -> list[AuditRecord]:
        records = [
            r
            for r in reversed(self.audit_records)
            if r.user_id == user_id and (outcome is None or r.outcome == outcome)
        ]
        return [r.model_copy(deep=True) for r in records[:limit]]

    async def get_devices(self, user_id: str) -> list[DeviceProfile]:
        return [d.model_copy(deep=True) for d in self.devices.get(user_id, [])]

    async def save_devices(self, user_id: str, devices: list[DeviceProfile]) -> None:
        self.devices[user_id] = [d.model_copy(deep=True) for d in devices]

    async def commit_redemption(
        self, entry: DailyLedgerEntry, transaction: WalletTransaction
    ) -> Wallet:
        wallet = self.wallets.get(entry.user_id) or Wallet(user_id=entry.user_id)
        wallet.balance_paisa += transaction.amount_paisa
        wallet.total_earned_paisa += transaction.amount_paisa
        wallet.updated_at = utcnow()

        self.wallets[entry.user_id] = wallet
        self.transactions.append(transaction.model_copy(deep=True))
        await self.save_ledger_entry(entry)
        return wallet.model_copy(deep=True)

    async def get_wallet(self, user_id: str) -> Wallet:
        wallet = self.wallets.get(user_id) or Wallet(user_id=user_id)
        return wallet.model_copy(deep=True)

    async def get_wallet_transactions(self, user_id: str) -> list[WalletTransaction]:
        return [t.model_copy(deep=True) for t in self.transactions if t.user_id == user_id]
