"""Step rewards engine service object."""

import datetime as dt
import math
from typing import Any, Callable, Mapping

import structlog

from .config import Settings
from .errors import (
    DaySealedError,
    FraudBlocked,
    FutureTimestampError,
    MalformedSampleError,
    MotionViolationError,
    PermissionRevoked,
)
from .fraud_scorer import FraudScorer
from .ledger import DailyLedger
from .locks import UserLockRegistry
from .logging import user_context
from .metrics import (
    active_user_locks,
    fraud_scores,
    ingest_duration,
    samples_processed,
    tier_advances,
)
from .models import (
    AuditOutcome,
    AuditRecord,
    DailyLedgerEntry,
    DeviceProfile,
    DeviceType,
    FraudAction,
    FraudAssessment,
    IngestResult,
    PhaseProgress,
    ReasonCode,
    ReconciliationResult,
    RedemptionResult,
    RewardEventType,
    RolloverReport,
    SampleSource,
    StepSample,
    UserPhaseState,
    Wallet,
    utcnow,
)
from .motion_validator import SPEED_EXCEEDED_REASON, MotionValidator
from .normalizer import normalize
from .notifications import FireAndForget, LoggingDispatcher, NotificationDispatcher
from .phases import PhaseStateMachine, PhaseTable
from .reconciler import DeviceReconciler, find_primary
from .rollover import RolloverScheduler
from .storage import GuardedStore, RewardsStore
from .windows import SampleWindows

logger = structlog.get_logger(__name__)

_REJECTION_REASONS = {
    MotionViolationError: ReasonCode.SPEED_EXCEEDED,
    FraudBlocked: ReasonCode.FRAUD_BLOCKED,
    FutureTimestampError: ReasonCode.FUTURE_TIMESTAMP,
    DaySealedError: ReasonCode.DAY_SEALED,
}


def _outcome_label(result: IngestResult) -> str:
    if not result.accepted:
        return AuditOutcome.REJECTED.value
    if result.reason == ReasonCode.FRAUD_LIMITED:
        return AuditOutcome.LIMITED.value
    if result.credited_steps == 0 and result.reason is not None:
        return AuditOutcome.UNCREDITED.value
    return AuditOutcome.CREDITED.value


class RewardsEngine:
    """Validates step samples and turns them into daily earnings and tier progress.

    All work for one user is serialized by a per-user lock; different users
    proceed in parallel. StorageUnavailable is the only error that escapes
    ``ingest_step``; every other failure becomes a structured rejection that
    is also written to the audit trail.
    """

    def __init__(
        self,
        store: RewardsStore,
        settings: Settings,
        phases: PhaseTable | None = None,
        clock: Callable[[], dt.datetime] = utcnow,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.settings = settings
        self.clock = clock
        self.max_clock_skew = dt.timedelta(seconds=settings.max_clock_skew_seconds)
        self.store = (
            store
            if isinstance(store, GuardedStore)
            else GuardedStore(store, timeout=settings.storage_timeout_seconds)
        )
        self.phases = phases or PhaseTable()
        self.state_machine = PhaseStateMachine(self.phases)
        self.locks = UserLockRegistry()
        self.windows = SampleWindows(
            size=settings.fraud_window_size, max_users=settings.fraud_window_max_users
        )
        self.validator = MotionValidator(
            max_speed_kmh=settings.max_speed_kmh,
            max_gps_accuracy_meters=settings.max_gps_accuracy_meters,
        )
        self.scorer = FraudScorer(
            high_avg_steps=settings.fraud_high_avg_steps,
            max_speed_kmh=settings.max_speed_kmh,
            speed_violation_limit=settings.fraud_speed_violation_limit,
            round_number_limit=settings.fraud_round_number_limit,
            rapid_pair_limit=settings.fraud_rapid_pair_limit,
            rapid_gap_seconds=settings.fraud_rapid_gap_seconds,
            block_threshold=settings.fraud_block_threshold,
            limit_threshold=settings.fraud_limit_threshold,
        )
        self.ledger = DailyLedger(
            self.store,
            self.phases,
            daily_cap=settings.daily_step_cap,
            steps_per_unit=settings.steps_per_unit,
            daily_goal=settings.daily_goal_steps,
            clock=clock,
        )
        self.reconciler = DeviceReconciler(tolerance_steps=settings.conflict_tolerance_steps)
        self.rollover = RolloverScheduler(
            self.store,
            self.locks,
            timezone=settings.timezone,
            cron=settings.rollover_cron,
            grace_seconds=settings.rollover_grace_seconds,
            daily_goal=settings.daily_goal_steps,
            redemption_window_days=settings.redemption_window_days,
            clock=clock,
        )
        self.notifier = FireAndForget(dispatcher or LoggingDispatcher())

    # Ingestion

    async def ingest_step(
        self, user_id: str, device_id: str, raw_payload: Mapping[str, Any]
    ) -> IngestResult:
        with ingest_duration.time(), user_context(user_id, device_id):
            async with self.locks.hold(user_id):
                active_user_locks.set(len(self.locks))
                result = await self._ingest_locked(user_id, device_id, raw_payload)

        active_user_locks.set(len(self.locks))
        samples_processed.labels(
            outcome=_outcome_label(result),
            reason=result.reason.value if result.reason else "none",
        ).inc()

        for event in result.events:
            if event.event_type == RewardEventType.TIER_ADVANCED:
                tier_advances.labels(to_tier=str(event.data["to_tier"])).inc()
            self.notifier.submit(event)

        return result

    async def _reject(
        self,
        user_id: str,
        device_id: str,
        reason: ReasonCode,
        message: str,
        sample: StepSample | None = None,
        assessment: FraudAssessment | None = None,
        day: dt.date | None = None,
        raw_payload: Mapping[str, Any] | None = None,
        fallback_to_manual: bool = False,
    ) -> IngestResult:
        await self.store.append_audit(
            AuditRecord(
                user_id=user_id,
                device_id=device_id,
                date=day,
                recorded_at=self.clock(),
                outcome=AuditOutcome.REJECTED,
                reason=reason,
                message=message,
                sample=sample,
                assessment=assessment,
                raw_payload=dict(raw_payload) if raw_payload is not None else None,
            )
        )
        logger.info(
            "Sample rejected",
            user_id=user_id,
            device_id=device_id,
            reason=reason.value,
            score=assessment.score if assessment else None,
        )
        return IngestResult(
            accepted=False,
            reason=reason,
            message=message,
            date=day,
            assessment=assessment,
            fallback_to_manual=fallback_to_manual,
        )

    async def _resolve_entry(
        self, user_id: str, sample: StepSample, received_at: dt.datetime
    ) -> DailyLedgerEntry:
        """Open ledger entry the sample is credited to.

        Only today's entry accepts steps. Samples for yesterday that arrive
        within the grace window after midnight are credited to today; every
        other day counts as sealed whether or not rollover has reached it.

        Raises:
            FutureTimestampError: if the sample is dated beyond the allowed clock skew.
            DaySealedError: if the sample's day no longer accepts steps.
        """
        if sample.timestamp > received_at + self.max_clock_skew:
            raise FutureTimestampError(sample.timestamp)

        today = self.rollover.local_date(received_at)
        day = self.rollover.local_date(sample.timestamp)
        if day > today:
            day = today
        elif day < today:
            target = self.rollover.grace_target(day, received_at)
            if target != today:
                raise DaySealedError(day)
            day = target

        entry = await self.ledger.load(user_id, day)
        if entry.sealed:
            raise DaySealedError(day)
        return entry

    async def _ingest_locked(
        self, user_id: str, device_id: str, raw_payload: Mapping[str, Any]
    ) -> IngestResult:
        received_at = self.clock()

        try:
            sample = normalize(raw_payload, device_id, received_at)
        except MalformedSampleError as e:
            payload = raw_payload if isinstance(raw_payload, Mapping) else {"value": repr(raw_payload)}
            return await self._reject(
                user_id, device_id, ReasonCode.MALFORMED_SAMPLE, str(e), raw_payload=payload
            )

        devices = await self.store.get_devices(user_id)
        device = next((d for d in devices if d.device_id == device_id), None)
        if device is None:
            device_type = (
                DeviceType.WATCH if sample.source == SampleSource.WEARABLE else DeviceType.PHONE
            )
            devices, device = self.reconciler.connect(
                devices, user_id, device_id, device_type, received_at
            )

        assessment: FraudAssessment | None = None
        try:
            if device.permission_revoked and sample.source != SampleSource.MANUAL:
                raise PermissionRevoked(device_id)

            device.last_sync_at = received_at
            if sample.battery_level is not None:
                device.battery_level = sample.battery_level
            await self.store.save_devices(user_id, devices)

            motion = self.validator.validate(sample)
            sample = sample.model_copy(update={"location_status": motion.location_status})

            # Rejected samples still count toward the pattern window
            window = self.windows.push(user_id, sample)
            assessment = self.scorer.score(window)
            fraud_scores.observe(assessment.score)
            sample = sample.model_copy(update={"fraud_score": assessment.score})

            if motion.hard_reject:
                raise MotionViolationError(motion.reason or SPEED_EXCEEDED_REASON, sample.speed_kmh)
            if assessment.action == FraudAction.BLOCK:
                raise FraudBlocked(assessment)

            entry = await self._resolve_entry(user_id, sample, received_at)
        except PermissionRevoked as e:
            return await self._reject(
                user_id,
                device_id,
                ReasonCode.PERMISSION_REVOKED,
                f"{e}; enter steps manually",
                sample=sample,
                fallback_to_manual=True,
            )
        except (MotionViolationError, FraudBlocked, FutureTimestampError, DaySealedError) as e:
            return await self._reject(
                user_id,
                device_id,
                _REJECTION_REASONS[type(e)],
                str(e),
                sample=sample,
                assessment=assessment,
                day=e.day if isinstance(e, DaySealedError) else None,
            )

        state = await self.store.get_phase_state(user_id)
        if state is None:
            state = self.state_machine.new_state(user_id, received_at)

        sample = sample.model_copy(update={"accepted": True})
        entry.device_steps[device_id] = entry.device_steps.get(device_id, 0) + sample.steps

        primary = find_primary(devices)
        if primary is not None and primary.device_id != device_id:
            entry.updated_at = received_at
            audit = AuditRecord(
                user_id=user_id,
                device_id=device_id,
                date=entry.date,
                recorded_at=received_at,
                outcome=AuditOutcome.UNCREDITED,
                reason=ReasonCode.NON_PRIMARY_DEVICE,
                message=f"steps recorded for reconciliation; primary is {primary.device_id}",
                sample=sample,
                assessment=assessment,
            )
            await self.store.save_progress(entry, state, audit)
            return IngestResult(
                accepted=True,
                reason=ReasonCode.NON_PRIMARY_DEVICE,
                message=audit.message,
                date=entry.date,
                assessment=assessment,
                ledger=entry,
                tier=state.current_tier,
            )

        if assessment.action == FraudAction.LIMIT:
            ledger_steps = math.floor(sample.steps * self.settings.limit_credit_factor)
            phase_steps = 0
            entry.limited_assessments.append(assessment)
            outcome, reason = AuditOutcome.LIMITED, ReasonCode.FRAUD_LIMITED
            message = (
                f"fraud score {assessment.score}; credited {ledger_steps} of {sample.steps} steps"
            )
        else:
            ledger_steps = phase_steps = sample.steps
            outcome, reason = AuditOutcome.CREDITED, None
            message = motion.reason

        phase = self.phases.get(state.current_tier)
        events = self.ledger.accumulate(entry, ledger_steps, phase)
        state.total_lifetime_steps += ledger_steps
        events.extend(self.state_machine.credit(state, phase_steps, received_at))

        audit = AuditRecord(
            user_id=user_id,
            device_id=device_id,
            date=entry.date,
            recorded_at=received_at,
            outcome=outcome,
            reason=reason,
            message=message,
            sample=sample,
            assessment=assessment,
            credited_steps=ledger_steps,
        )
        await self.store.save_progress(entry, state, audit)

        logger.debug(
            "Sample credited",
            user_id=user_id,
            device_id=device_id,
            date=entry.date.isoformat(),
            credited_steps=ledger_steps,
            score=assessment.score,
            tier=state.current_tier,
        )
        return IngestResult(
            accepted=True,
            reason=reason,
            message=message,
            credited_steps=ledger_steps,
            date=entry.date,
            assessment=assessment,
            ledger=entry,
            tier=state.current_tier,
            events=events,
        )

    # Ledger and phase queries

    async def redeem_day(self, user_id: str, day: dt.date) -> RedemptionResult:
        with user_context(user_id):
            async with self.locks.hold(user_id):
                return await self.ledger.redeem(user_id, day)

    async def get_phase_state(self, user_id: str) -> UserPhaseState:
        state = await self.store.get_phase_state(user_id)
        return state or self.state_machine.new_state(user_id, self.clock())

    async def get_phase_progress(self, user_id: str) -> PhaseProgress:
        state = await self.get_phase_state(user_id)
        return self.state_machine.progress(state, self.clock())

    async def get_ledger_entry(self, user_id: str, day: dt.date) -> DailyLedgerEntry | None:
        return await self.store.get_ledger_entry(user_id, day)

    async def get_wallet(self, user_id: str) -> Wallet:
        return await self.store.get_wallet(user_id)

    async def get_audit_trail(
        self, user_id: str, limit: int = 100, outcome: AuditOutcome | None = None
    ) -> list[AuditRecord]:
        return await self.store.get_audit_trail(user_id, limit=limit, outcome=outcome)

    # Devices

    async def reconcile_devices(self, user_id: str) -> ReconciliationResult:
        """Compare today's per-device counts against the primary device."""
        today = self.rollover.local_date(self.clock())
        devices = await self.store.get_devices(user_id)
        entry = await self.store.get_ledger_entry(user_id, today)
        per_device = entry.device_steps if entry else {}
        return self.reconciler.reconcile(devices, per_device, today)

    async def list_devices(self, user_id: str) -> list[DeviceProfile]:
        return await self.store.get_devices(user_id)

    async def connect_device(
        self, user_id: str, device_id: str, device_type: DeviceType
    ) -> DeviceProfile:
        async with self.locks.hold(user_id):
            devices = await self.store.get_devices(user_id)
            devices, device = self.reconciler.connect(
                devices, user_id, device_id, device_type, self.clock()
            )
            await self.store.save_devices(user_id, devices)
            return device

    async def disconnect_device(self, user_id: str, device_id: str) -> list[DeviceProfile]:
        async with self.locks.hold(user_id):
            devices = await self.store.get_devices(user_id)
            devices = self.reconciler.disconnect(devices, device_id)
            await self.store.save_devices(user_id, devices)
            logger.info("Device disconnected", user_id=user_id, device_id=device_id)
            return devices

    async def promote_primary(self, user_id: str, device_id: str) -> list[DeviceProfile]:
        async with self.locks.hold(user_id):
            devices = await self.store.get_devices(user_id)
            devices = self.reconciler.promote_primary(devices, device_id)
            await self.store.save_devices(user_id, devices)
            logger.info("Primary device changed", user_id=user_id, device_id=device_id)
            return devices

    async def _set_permission(self, user_id: str, device_id: str, revoked: bool) -> DeviceProfile:
        async with self.locks.hold(user_id):
            devices = await self.store.get_devices(user_id)
            device = self.reconciler.set_permission(devices, device_id, revoked)
            await self.store.save_devices(user_id, devices)
            logger.info(
                "Device permission updated",
                user_id=user_id,
                device_id=device_id,
                permission_revoked=revoked,
            )
            return device

    async def revoke_permission(self, user_id: str, device_id: str) -> DeviceProfile:
        return await self._set_permission(user_id, device_id, revoked=True)

    async def restore_permission(self, user_id: str, device_id: str) -> DeviceProfile:
        return await self._set_permission(user_id, device_id, revoked=False)

    # Lifecycle

    async def run_rollover(self, now: dt.datetime | None = None) -> RolloverReport:
        return await self.rollover.run(now)

    async def close(self) -> None:
        await self.rollover.stop()
        await self.notifier.drain()
