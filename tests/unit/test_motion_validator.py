"""Unit tests for motion validation."""

import datetime as dt

import pytest

from step_rewards.models import LocationStatus, ReasonCode, SampleSource, StepSample
from step_rewards.motion_validator import MotionValidator


def make_sample(**kwargs) -> StepSample:
    fields = {
        "steps": 100,
        "timestamp": dt.datetime(2026, 3, 10, 12, 0, tzinfo=dt.UTC),
        "received_at": dt.datetime(2026, 3, 10, 12, 0, 5, tzinfo=dt.UTC),
        "source": SampleSource.NATIVE_HEALTH,
        "device_id": "phone-1",
    }
    fields.update(kwargs)
    return StepSample(**fields)


@pytest.fixture()
def validator():
    return MotionValidator()


class TestSpeedBound:
    """Test the human locomotion speed bound."""

    def test_speed_above_bound_is_hard_rejection(self, validator):
        """Test 30 km/h is rejected outright."""
        check = validator.validate(make_sample(speed_kmh=30.0, gps_accuracy_meters=10.0))

        assert check.valid is False
        assert check.hard_reject is True
        assert check.reason_code == ReasonCode.SPEED_EXCEEDED
        assert "speed exceeds human locomotion bound" in check.reason

    def test_speed_at_bound_is_valid(self, validator):
        """Test exactly 25 km/h passes."""
        check = validator.validate(make_sample(speed_kmh=25.0, gps_accuracy_meters=10.0))

        assert check.valid is True
        assert check.location_status == LocationStatus.OK

    def test_speed_checked_before_accuracy(self, validator):
        """Test the first failing rule wins."""
        check = validator.validate(make_sample(speed_kmh=40.0, gps_accuracy_meters=500.0))

        assert check.reason_code == ReasonCode.SPEED_EXCEEDED


class TestLocationQuality:
    """Test GPS accuracy and missing location handling."""

    def test_poor_accuracy_degrades_without_blocking(self, validator):
        """Test accuracy worse than 100 m marks the location degraded."""
        check = validator.validate(make_sample(speed_kmh=5.0, gps_accuracy_meters=150.0))

        assert check.valid is False
        assert check.hard_reject is False
        assert check.reason_code == ReasonCode.GPS_ACCURACY_INSUFFICIENT
        assert check.location_status == LocationStatus.DEGRADED

    def test_missing_location_is_neutral(self, validator):
        """Test samples without location are valid but flagged unavailable."""
        check = validator.validate(make_sample())

        assert check.valid is True
        assert check.location_status == LocationStatus.UNAVAILABLE

    def test_custom_thresholds(self):
        """Test thresholds come from the constructor."""
        validator = MotionValidator(max_speed_kmh=15.0, max_gps_accuracy_meters=50.0)

        assert validator.validate(make_sample(speed_kmh=16.0)).hard_reject is True
        assert validator.validate(make_sample(gps_accuracy_meters=60.0)).location_status == (
            LocationStatus.DEGRADED
        )
