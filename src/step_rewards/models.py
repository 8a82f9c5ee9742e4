"""Data models for step validation, ledger and phase progression."""

import datetime as dt
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class SampleSource(str, Enum):
    """Where a raw sample came from."""

    NATIVE_HEALTH = "native-health"
    WEARABLE = "wearable"
    MANUAL = "manual"
    WEB_FALLBACK = "web-fallback"


class DeviceType(str, Enum):
    """Kinds of step-reporting devices."""

    PHONE = "phone"
    WATCH = "watch"
    FITNESS_BAND = "fitness-band"


class LocationStatus(str, Enum):
    """How far a sample's location data can be trusted."""

    OK = "ok"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class ReasonCode(str, Enum):
    """Structured reasons attached to ingestion outcomes."""

    MALFORMED_SAMPLE = "malformed_sample"
    SPEED_EXCEEDED = "speed_exceeded"
    GPS_ACCURACY_INSUFFICIENT = "gps_accuracy_insufficient"
    LOCATION_UNAVAILABLE = "location_unavailable"
    FRAUD_BLOCKED = "fraud_blocked"
    FRAUD_LIMITED = "fraud_limited"
    PERMISSION_REVOKED = "permission_revoked"
    DAY_SEALED = "day_sealed"
    FUTURE_TIMESTAMP = "future_timestamp"
    NON_PRIMARY_DEVICE = "non_primary_device"


class StepSample(BaseModel):
    """One canonical step observation."""

    model_config = ConfigDict(frozen=True)

    steps: int = Field(ge=0)
    timestamp: dt.datetime
    received_at: dt.datetime = Field(description="Server time the sample was ingested")
    source: SampleSource
    device_id: str
    speed_kmh: float | None = Field(default=None, description="Speed in km/h")
    gps_accuracy_meters: float | None = Field(
        default=None, description="Horizontal GPS accuracy in meters"
    )
    battery_level: int | None = Field(default=None, ge=0, le=100)
    location_status: LocationStatus = LocationStatus.OK
    fraud_score: int = Field(default=0, ge=0, le=100)
    accepted: bool = False

    @property
    def has_location(self) -> bool:
        return self.speed_kmh is not None or self.gps_accuracy_meters is not None


class MotionCheck(BaseModel):
    """Result of motion validation for a single sample."""

    valid: bool
    reason_code: ReasonCode | None = None
    reason: str | None = None
    location_status: LocationStatus = LocationStatus.OK

    @property
    def hard_reject(self) -> bool:
        return self.reason_code == ReasonCode.SPEED_EXCEEDED


class FraudAction(str, Enum):
    ALLOW = "allow"
    LIMIT = "limit"
    BLOCK = "block"


class FraudReasonCode(str, Enum):
    HIGH_STEP_FREQUENCY = "high_step_frequency"
    HIGH_SPEED_VIOLATIONS = "high_speed_violations"
    ROUND_NUMBER_PATTERN = "round_number_pattern"
    RAPID_ENTRY_PATTERN = "rapid_entry_pattern"


class FraudReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: FraudReasonCode
    points: int
    detail: float | None = None


class FraudAssessment(BaseModel):
    """Versioned result of scoring a sample window."""

    model_config = ConfigDict(frozen=True)

    schema_version: str = "1"
    score: int = Field(ge=0, le=100)
    reasons: list[FraudReason] = Field(default_factory=list)
    action: FraudAction
    window_size: int = 0

    @property
    def reason_codes(self) -> list[FraudReasonCode]:
        return [r.code for r in self.reasons]


class DeviceProfile(BaseModel):
    """A step-reporting device owned by a user."""

    user_id: str
    device_id: str
    device_type: DeviceType
    is_primary: bool = False
    last_sync_at: dt.datetime | None = None
    battery_level: int | None = Field(default=None, ge=0, le=100)
    permission_revoked: bool = False
    connected_at: dt.datetime = Field(default_factory=utcnow)


class PhaseDefinition(BaseModel):
    """Static configuration of one progression tier."""

    model_config = ConfigDict(frozen=True)

    tier: int = Field(ge=1, le=9)
    name: str
    paisa_per_unit: int = Field(gt=0)
    step_requirement: int = Field(gt=0)
    time_limit_days: int = Field(gt=0)


class UserPhaseState(BaseModel):
    """Progression state of one user."""

    user_id: str
    current_tier: int = Field(default=1, ge=1, le=9)
    phase_start_date: dt.datetime = Field(default_factory=utcnow)
    cumulative_phase_steps: int = Field(default=0, ge=0)
    total_lifetime_steps: int = Field(default=0, ge=0)
    current_streak_days: int = Field(default=0, ge=0)
    longest_streak_days: int = Field(default=0, ge=0)
    last_streak_date: dt.date | None = None


class DailyLedgerEntry(BaseModel):
    """Per-user, per-day accumulation of credited steps and earnings."""

    user_id: str
    date: dt.date
    raw_steps: int = Field(default=0, ge=0)
    capped_steps: int = Field(default=0, ge=0)
    units_earned: int = Field(default=0, ge=0)
    paisa_earned: int = Field(default=0, ge=0)
    tier_at_computation: int = Field(default=1, ge=1, le=9)
    device_steps: dict[str, int] = Field(default_factory=dict)
    limited_assessments: list[FraudAssessment] = Field(default_factory=list)
    goal_reached: bool = False
    cap_reached: bool = False
    is_redeemed: bool = False
    redeemed_at: dt.datetime | None = None
    sealed: bool = False
    sealed_at: dt.datetime | None = None
    forfeited: bool = False
    updated_at: dt.datetime = Field(default_factory=utcnow)


class RedemptionStatus(str, Enum):
    SUCCESS = "success"
    ALREADY_REDEEMED = "already_redeemed"
    NO_COINS = "no_coins"
    EXPIRED = "expired"


class RedemptionResult(BaseModel):
    status: RedemptionStatus
    user_id: str
    date: dt.date
    amount_paisa: int = 0
    wallet_balance_paisa: int | None = None


class Wallet(BaseModel):
    user_id: str
    balance_paisa: int = 0
    total_earned_paisa: int = 0
    updated_at: dt.datetime = Field(default_factory=utcnow)


class WalletTransaction(BaseModel):
    transaction_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    date: dt.date
    amount_paisa: int
    kind: str = "daily_redeem"
    description: str | None = None
    created_at: dt.datetime = Field(default_factory=utcnow)


class AuditOutcome(str, Enum):
    CREDITED = "credited"
    LIMITED = "limited"
    UNCREDITED = "uncredited"
    REJECTED = "rejected"


class AuditRecord(BaseModel):
    """Audit trail entry for one ingested sample."""

    record_id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    device_id: str
    date: dt.date | None = None
    recorded_at: dt.datetime = Field(default_factory=utcnow)
    outcome: AuditOutcome
    reason: ReasonCode | None = None
    message: str | None = None
    sample: StepSample | None = None
    assessment: FraudAssessment | None = None
    credited_steps: int = 0
    raw_payload: dict[str, Any] | None = None


class SyncConflict(BaseModel):
    """Non-primary device disagreeing with the primary beyond tolerance."""

    device_id: str
    device_type: DeviceType
    reported_steps: int
    delta: int


class ReconciliationResult(BaseModel):
    primary_device_id: str | None
    authoritative_steps: int
    conflicts: list[SyncConflict] = Field(default_factory=list)
    date: dt.date | None = None


class RewardEventType(str, Enum):
    TIER_ADVANCED = "tier_advanced"
    GOAL_ACHIEVED = "goal_achieved"
    DAILY_CAP_REACHED = "daily_cap_reached"


class RewardEvent(BaseModel):
    """Notification-worthy event produced by the engine."""

    schema_version: str = Field(default="1.0.0")
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: RewardEventType
    user_id: str
    occurred_at: dt.datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)


class PhaseProgress(BaseModel):
    """Progress of a user inside the current tier."""

    current_phase: PhaseDefinition
    next_phase: PhaseDefinition | None
    cumulative_phase_steps: int
    progress_percentage: float = Field(ge=0.0, le=100.0)
    steps_to_next: int
    days_in_phase: int
    days_remaining: int
    time_limit_exceeded: bool
    is_eligible_for_advancement: bool
    blocked_reason: str | None = None


class IngestResult(BaseModel):
    """Outcome of ingesting one raw sample."""

    accepted: bool
    reason: ReasonCode | None = None
    message: str | None = None
    credited_steps: int = 0
    date: dt.date | None = None
    assessment: FraudAssessment | None = None
    ledger: DailyLedgerEntry | None = None
    tier: int | None = None
    fallback_to_manual: bool = False
    events: list[RewardEvent] = Field(default_factory=list)


class RolloverReport(BaseModel):
    """Summary of one rollover run."""

    today: dt.date
    users: int = 0
    entries_sealed: int = 0
    entries_forfeited: int = 0
    ran_at: dt.datetime = Field(default_factory=utcnow)
