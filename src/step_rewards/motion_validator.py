"""Physical plausibility checks for step samples."""

from .models import LocationStatus, MotionCheck, ReasonCode, StepSample

SPEED_EXCEEDED_REASON = "speed exceeds human locomotion bound"
GPS_INSUFFICIENT_REASON = "GPS accuracy insufficient"


class MotionValidator:
    """Rejects samples moving faster than a human can walk or run.

    Rules are evaluated in order and the first failure wins. Poor GPS
    accuracy does not block a sample, it only marks the location as
    degraded so fraud scoring ignores it.
    """

    def __init__(self, max_speed_kmh: float = 25.0, max_gps_accuracy_meters: float = 100.0):
        self.max_speed_kmh = max_speed_kmh
        self.max_gps_accuracy_meters = max_gps_accuracy_meters

    def validate(self, sample: StepSample) -> MotionCheck:
        if sample.speed_kmh is not None and sample.speed_kmh > self.max_speed_kmh:
            return MotionCheck(
                valid=False,
                reason_code=ReasonCode.SPEED_EXCEEDED,
                reason=(
                    f"{SPEED_EXCEEDED_REASON}: {sample.speed_kmh:.1f} km/h "
                    f"> {self.max_speed_kmh:g} km/h"
                ),
                location_status=LocationStatus.OK,
            )

        if (
            sample.gps_accuracy_meters is not None
            and sample.gps_accuracy_meters > self.max_gps_accuracy_meters
        ):
            return MotionCheck(
                valid=False,
                reason_code=ReasonCode.GPS_ACCURACY_INSUFFICIENT,
                reason=(
                    f"{GPS_INSUFFICIENT_REASON}: {sample.gps_accuracy_meters:.0f} m "
                    f"> {self.max_gps_accuracy_meters:g} m"
                ),
                location_status=LocationStatus.DEGRADED,
            )

        if not sample.has_location:
            return MotionCheck(valid=True, location_status=LocationStatus.UNAVAILABLE)

        return MotionCheck(valid=True)
