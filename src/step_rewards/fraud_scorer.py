"""Rule-based fraud scoring over a rolling window of samples."""

from typing import Sequence

from .models import (
    FraudAction,
    FraudAssessment,
    FraudReason,
    FraudReasonCode,
    LocationStatus,
    StepSample,
)

HIGH_FREQUENCY_POINTS = 30
HIGH_SPEED_POINTS = 40
ROUND_NUMBER_POINTS = 20
RAPID_ENTRY_POINTS = 25


class FraudScorer:
    """Scores a user's recent samples with additive heuristics.

    The newest sample is expected last in the window. Scoring is a pure
    function of the window and thresholds.
    """

    def __init__(
        self,
        high_avg_steps: int = 2000,
        max_speed_kmh: float = 25.0,
        speed_violation_limit: int = 3,
        round_number_limit: int = 2,
        rapid_pair_limit: int = 3,
        rapid_gap_seconds: float = 1.0,
        block_threshold: int = 70,
        limit_threshold: int = 40,
    ):
        self.high_avg_steps = high_avg_steps
        self.max_speed_kmh = max_speed_kmh
        self.speed_violation_limit = speed_violation_limit
        self.round_number_limit = round_number_limit
        self.rapid_pair_limit = rapid_pair_limit
        self.rapid_gap_seconds = rapid_gap_seconds
        self.block_threshold = block_threshold
        self.limit_threshold = limit_threshold

    def score(self, window: Sequence[StepSample]) -> FraudAssessment:
        reasons: list[FraudReason] = []

        if window:
            avg_steps = sum(s.steps for s in window) / len(window)
            if avg_steps > self.high_avg_steps:
                reasons.append(
                    FraudReason(
                        code=FraudReasonCode.HIGH_STEP_FREQUENCY,
                        points=HIGH_FREQUENCY_POINTS,
                        detail=round(avg_steps, 2),
                    )
                )

        # Only samples with trustworthy location count toward speed violations
        speeding = sum(
            1
            for s in window
            if s.location_status == LocationStatus.OK
            and s.speed_kmh is not None
            and s.speed_kmh > self.max_speed_kmh
        )
        if speeding > self.speed_violation_limit:
            reasons.append(
                FraudReason(
                    code=FraudReasonCode.HIGH_SPEED_VIOLATIONS,
                    points=HIGH_SPEED_POINTS,
                    detail=speeding,
                )
            )

        round_numbers = sum(1 for s in window if s.steps > 0 and s.steps % 1000 == 0)
        if round_numbers > self.round_number_limit:
            reasons.append(
                FraudReason(
                    code=FraudReasonCode.ROUND_NUMBER_PATTERN,
                    points=ROUND_NUMBER_POINTS,
                    detail=round_numbers,
                )
            )

        rapid_pairs = sum(
            1
            for prev, cur in zip(window, window[1:])
            if abs((cur.received_at - prev.received_at).total_seconds()) < self.rapid_gap_seconds
        )
        if rapid_pairs > self.rapid_pair_limit:
            reasons.append(
                FraudReason(
                    code=FraudReasonCode.RAPID_ENTRY_PATTERN,
                    points=RAPID_ENTRY_POINTS,
                    detail=rapid_pairs,
                )
            )

        total = min(max(sum(r.points for r in reasons), 0), 100)
        return FraudAssessment(
            score=total,
            reasons=reasons,
            action=self.action_for(total),
            window_size=len(window),
        )

    def action_for(self, score: int) -> FraudAction:
        if score > self.block_threshold:
            return FraudAction.BLOCK
        if score > self.limit_threshold:
            return FraudAction.LIMIT
        return FraudAction.ALLOW
