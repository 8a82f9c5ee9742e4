"""Error taxonomy for the rewards engine."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FraudAssessment


class RewardsEngineError(Exception):
    """Base class for all engine errors."""


class MalformedSampleError(RewardsEngineError):
    """Raw payload could not be turned into a step sample."""


class MotionViolationError(RewardsEngineError):
    """Sample reports physically implausible motion."""

    def __init__(self, message: str, speed_kmh: float | None = None):
        super().__init__(message)
        self.speed_kmh = speed_kmh


class FraudBlocked(RewardsEngineError):
    """Fraud score exceeded the block threshold."""

    def __init__(self, assessment: FraudAssessment):
        super().__init__(f"sample blocked with fraud score {assessment.score}")
        self.assessment = assessment


class PermissionRevoked(RewardsEngineError):
    """Health-data permission was withdrawn for a device."""

    def __init__(self, device_id: str):
        super().__init__(f"health permission revoked for device {device_id}")
        self.device_id = device_id


class StorageUnavailable(RewardsEngineError):
    """Storage call failed or timed out. Safe to retry with backoff."""


class DaySealedError(RewardsEngineError):
    """Ledger entry for the day has been sealed by rollover."""

    def __init__(self, day: date):
        super().__init__(f"ledger for {day.isoformat()} is sealed")
        self.day = day


class FutureTimestampError(RewardsEngineError):
    """Sample is dated later than the server clock allows."""

    def __init__(self, timestamp: datetime):
        super().__init__(f"sample timestamp {timestamp.isoformat()} is in the future")
        self.timestamp = timestamp


class UnknownDeviceError(RewardsEngineError):
    """Device is not connected for the user."""

    def __init__(self, device_id: str):
        super().__init__(f"device {device_id} is not connected")
        self.device_id = device_id


class PrimaryDeviceRequiredError(RewardsEngineError):
    """Operation would leave the user's device set without a primary."""


class PhaseConfigError(RewardsEngineError):
    """Phase table violates ordering constraints."""
