"""Phase table and the tier progression state machine."""

import datetime as dt
import json
from pathlib import Path
from typing import Iterable

import structlog

from .errors import PhaseConfigError
from .models import (
    PhaseDefinition,
    PhaseProgress,
    RewardEvent,
    RewardEventType,
    UserPhaseState,
)

logger = structlog.get_logger(__name__)

MAX_TIER = 9

DEFAULT_PHASES: tuple[PhaseDefinition, ...] = (
    PhaseDefinition(tier=1, name="Paisa Phase", paisa_per_unit=1, step_requirement=200_000, time_limit_days=60),
    PhaseDefinition(tier=2, name="Coin Phase", paisa_per_unit=2, step_requirement=300_000, time_limit_days=60),
    PhaseDefinition(tier=3, name="Token Phase", paisa_per_unit=3, step_requirement=400_000, time_limit_days=60),
    PhaseDefinition(tier=4, name="Gem Phase", paisa_per_unit=5, step_requirement=500_000, time_limit_days=60),
    PhaseDefinition(tier=5, name="Diamond Phase", paisa_per_unit=7, step_requirement=600_000, time_limit_days=60),
    PhaseDefinition(tier=6, name="Crown Phase", paisa_per_unit=10, step_requirement=800_000, time_limit_days=60),
    PhaseDefinition(tier=7, name="Emperor Phase", paisa_per_unit=15, step_requirement=1_000_000, time_limit_days=60),
    PhaseDefinition(tier=8, name="Legend Phase", paisa_per_unit=20, step_requirement=1_200_000, time_limit_days=60),
    PhaseDefinition(tier=9, name="Immortal Phase", paisa_per_unit=30, step_requirement=1_500_000, time_limit_days=60),
)


class PhaseTable:
    """Ordered, validated list of phase definitions."""

    def __init__(self, phases: Iterable[PhaseDefinition] = DEFAULT_PHASES):
        self._phases = tuple(phases)
        self._validate()

    def _validate(self) -> None:
        tiers = [p.tier for p in self._phases]
        if tiers != list(range(1, MAX_TIER + 1)):
            raise PhaseConfigError(f"expected tiers 1..{MAX_TIER} in order, got {tiers}")

        for prev, cur in zip(self._phases, self._phases[1:]):
            if cur.step_requirement <= prev.step_requirement:
                raise PhaseConfigError(
                    f"step_requirement must strictly increase (tier {cur.tier})"
                )
            if cur.paisa_per_unit < prev.paisa_per_unit:
                raise PhaseConfigError(
                    f"paisa_per_unit must not decrease (tier {cur.tier})"
                )

    @classmethod
    def from_file(cls, path: str | Path) -> "PhaseTable":
        """Load a phase table from a JSON list of phase objects."""
        try:
            raw = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PhaseConfigError(f"cannot read phase table {path}: {e}") from e

        if not isinstance(raw, list):
            raise PhaseConfigError("phase table must be a JSON list")

        try:
            phases = [PhaseDefinition(**item) for item in raw]
        except (TypeError, ValueError) as e:
            raise PhaseConfigError(f"invalid phase definition: {e}") from e

        logger.info("Loaded phase table", path=str(path), phases=len(phases))
        return cls(phases)

    def get(self, tier: int) -> PhaseDefinition:
        if not 1 <= tier <= MAX_TIER:
            raise PhaseConfigError(f"unknown tier {tier}")
        return self._phases[tier - 1]

    def next_after(self, tier: int) -> PhaseDefinition | None:
        if tier >= MAX_TIER:
            return None
        return self._phases[tier]

    def __iter__(self):
        return iter(self._phases)

    def __len__(self) -> int:
        return len(self._phases)


class PhaseStateMachine:
    """Advances users through tiers bounded by steps and elapsed time.

    Tiers never decrease. When a tier's time limit passes without the
    requirement being met the user stays in the tier and keeps accumulating.
    """

    def __init__(self, table: PhaseTable):
        self.table = table

    def new_state(self, user_id: str, now: dt.datetime) -> UserPhaseState:
        return UserPhaseState(user_id=user_id, current_tier=1, phase_start_date=now)

    @staticmethod
    def days_since_phase_start(state: UserPhaseState, now: dt.datetime) -> int:
        return max((now - state.phase_start_date).days, 0)

    def can_advance(self, state: UserPhaseState, now: dt.datetime) -> bool:
        if state.current_tier >= MAX_TIER:
            return False
        phase = self.table.get(state.current_tier)
        return (
            state.cumulative_phase_steps >= phase.step_requirement
            and self.days_since_phase_start(state, now) <= phase.time_limit_days
        )

    def credit(
        self, state: UserPhaseState, steps: int, now: dt.datetime
    ) -> list[RewardEvent]:
        """Add progression steps to ``state`` and apply any tier advance.

        Mutates ``state`` in place and returns the produced events.
        """
        if steps < 0:
            raise ValueError("steps must be non-negative")

        state.cumulative_phase_steps += steps
        events: list[RewardEvent] = []

        if self.can_advance(state, now):
            from_phase = self.table.get(state.current_tier)
            to_phase = self.table.get(state.current_tier + 1)

            state.current_tier = to_phase.tier
            state.cumulative_phase_steps = 0
            state.phase_start_date = now

            events.append(
                RewardEvent(
                    event_type=RewardEventType.TIER_ADVANCED,
                    user_id=state.user_id,
                    occurred_at=now,
                    data={
                        "from_tier": from_phase.tier,
                        "to_tier": to_phase.tier,
                        "phase_name": to_phase.name,
                        "paisa_per_unit": to_phase.paisa_per_unit,
                    },
                )
            )
            logger.info(
                "Tier advanced",
                user_id=state.user_id,
                from_tier=from_phase.tier,
                to_tier=to_phase.tier,
            )

        return events

    def progress(self, state: UserPhaseState, now: dt.datetime) -> PhaseProgress:
        current = self.table.get(state.current_tier)
        nxt = self.table.next_after(state.current_tier)
        days_in_phase = self.days_since_phase_start(state, now)
        time_limit_exceeded = days_in_phase > current.time_limit_days

        if nxt is None:
            return PhaseProgress(
                current_phase=current,
                next_phase=None,
                cumulative_phase_steps=state.cumulative_phase_steps,
                progress_percentage=100.0,
                steps_to_next=0,
                days_in_phase=days_in_phase,
                days_remaining=0,
                time_limit_exceeded=False,
                is_eligible_for_advancement=False,
                blocked_reason=f"{current.name} is the final phase",
            )

        requirement = current.step_requirement
        steps_to_next = max(requirement - state.cumulative_phase_steps, 0)
        eligible = self.can_advance(state, now)

        blocked_reason = None
        if not eligible:
            if time_limit_exceeded:
                blocked_reason = (
                    f"Time limit of {current.time_limit_days} days passed; "
                    f"keep walking in {current.name}"
                )
            else:
                blocked_reason = f"Need {steps_to_next:,} more steps to unlock {nxt.name}"

        return PhaseProgress(
            current_phase=current,
            next_phase=nxt,
            cumulative_phase_steps=state.cumulative_phase_steps,
            progress_percentage=min(state.cumulative_phase_steps / requirement * 100, 100.0),
            steps_to_next=steps_to_next,
            days_in_phase=days_in_phase,
            days_remaining=max(current.time_limit_days - days_in_phase, 0),
            time_limit_exceeded=time_limit_exceeded,
            is_eligible_for_advancement=eligible,
            blocked_reason=blocked_reason,
        )
