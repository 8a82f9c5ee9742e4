"""Unit tests for the phase table and tier progression."""

import datetime as dt
import json

import pytest

from step_rewards.errors import PhaseConfigError
from step_rewards.models import PhaseDefinition, RewardEventType, UserPhaseState
from step_rewards.phases import DEFAULT_PHASES, MAX_TIER, PhaseStateMachine, PhaseTable

NOW = dt.datetime(2026, 3, 10, 12, 0, tzinfo=dt.UTC)


@pytest.fixture()
def machine():
    return PhaseStateMachine(PhaseTable())


def state_at(tier: int = 1, cumulative: int = 0, days_ago: int = 0) -> UserPhaseState:
    return UserPhaseState(
        user_id="user-1",
        current_tier=tier,
        cumulative_phase_steps=cumulative,
        phase_start_date=NOW - dt.timedelta(days=days_ago),
    )


class TestPhaseTable:
    """Test phase table loading and validation."""

    def test_default_table(self):
        """Test the built-in nine tiers."""
        table = PhaseTable()

        assert len(table) == MAX_TIER
        assert table.get(1).paisa_per_unit == 1
        assert table.get(1).step_requirement == 200_000
        assert table.get(9).paisa_per_unit == 30
        assert table.next_after(9) is None
        assert table.next_after(1).tier == 2

    def test_requirement_must_increase(self):
        """Test non-increasing step requirements are rejected."""
        phases = list(DEFAULT_PHASES)
        phases[3] = phases[3].model_copy(update={"step_requirement": 100})

        with pytest.raises(PhaseConfigError):
            PhaseTable(phases)

    def test_missing_tier(self):
        """Test tables must cover all nine tiers."""
        with pytest.raises(PhaseConfigError):
            PhaseTable(DEFAULT_PHASES[:8])

    def test_from_file(self, tmp_path):
        """Test loading a JSON override."""
        path = tmp_path / "phases.json"
        path.write_text(
            json.dumps(
                [
                    p.model_dump() | {"time_limit_days": 90}
                    for p in DEFAULT_PHASES
                ]
            )
        )

        table = PhaseTable.from_file(path)

        assert all(p.time_limit_days == 90 for p in table)

    def test_from_file_invalid(self, tmp_path):
        """Test unreadable files raise PhaseConfigError."""
        path = tmp_path / "phases.json"
        path.write_text('{"tier": 1}')

        with pytest.raises(PhaseConfigError):
            PhaseTable.from_file(path)

    def test_unknown_tier(self):
        """Test looking up tier 10 fails."""
        with pytest.raises(PhaseConfigError):
            PhaseTable().get(10)


class TestCredit:
    """Test tier advancement."""

    def test_reaching_requirement_advances(self, machine):
        """Test 199,999 plus one step advances tier 1 to 2 and resets progress."""
        state = state_at(cumulative=199_999, days_ago=30)

        events = machine.credit(state, 1, NOW)

        assert state.current_tier == 2
        assert state.cumulative_phase_steps == 0
        assert state.phase_start_date == NOW
        assert len(events) == 1
        assert events[0].event_type == RewardEventType.TIER_ADVANCED
        assert events[0].data["from_tier"] == 1
        assert events[0].data["to_tier"] == 2

    def test_overshoot_is_not_carried(self, machine):
        """Test steps beyond the requirement do not count toward the next tier."""
        state = state_at(cumulative=199_000)

        machine.credit(state, 5_000, NOW)

        assert state.current_tier == 2
        assert state.cumulative_phase_steps == 0

    def test_below_requirement(self, machine):
        """Test progress accumulates without advancing."""
        state = state_at(cumulative=1_000)

        events = machine.credit(state, 500, NOW)

        assert events == []
        assert state.current_tier == 1
        assert state.cumulative_phase_steps == 1_500

    def test_time_limit_exceeded_keeps_tier(self, machine):
        """Test no advance and no regression once the time limit has passed."""
        state = state_at(tier=3, cumulative=399_999, days_ago=61)

        events = machine.credit(state, 1, NOW)

        assert events == []
        assert state.current_tier == 3
        assert state.cumulative_phase_steps == 400_000

    def test_time_limit_boundary_day_is_allowed(self, machine):
        """Test day 60 itself is still within the limit."""
        state = state_at(cumulative=199_999, days_ago=60)

        machine.credit(state, 1, NOW)

        assert state.current_tier == 2

    def test_final_tier_is_terminal(self, machine):
        """Test tier 9 never advances."""
        state = state_at(tier=9, cumulative=1_499_999)

        events = machine.credit(state, 10_000_000, NOW)

        assert events == []
        assert state.current_tier == 9

    def test_tier_is_monotonic(self, machine):
        """Test repeated credits never decrease the tier."""
        state = state_at()
        tiers = []
        now = NOW
        for _ in range(40):
            now += dt.timedelta(days=1)
            machine.credit(state, 150_000, now)
            tiers.append(state.current_tier)

        assert tiers == sorted(tiers)
        assert tiers[-1] == MAX_TIER

    def test_negative_steps_rejected(self, machine):
        """Test negative credit is a programming error."""
        with pytest.raises(ValueError):
            machine.credit(state_at(), -1, NOW)


class TestProgress:
    """Test the progression view."""

    def test_progress_within_phase(self, machine):
        """Test percentage, steps to next and days remaining."""
        progress = machine.progress(state_at(cumulative=50_000, days_ago=10), NOW)

        assert progress.progress_percentage == 25.0
        assert progress.steps_to_next == 150_000
        assert progress.days_in_phase == 10
        assert progress.days_remaining == 50
        assert progress.is_eligible_for_advancement is False
        assert progress.next_phase.name == "Coin Phase"
        assert progress.blocked_reason == "Need 150,000 more steps to unlock Coin Phase"

    def test_progress_after_time_limit(self, machine):
        """Test the time limit is reported once exceeded."""
        progress = machine.progress(state_at(cumulative=10, days_ago=75), NOW)

        assert progress.time_limit_exceeded is True
        assert progress.days_remaining == 0
        assert "Time limit" in progress.blocked_reason

    def test_progress_final_phase(self, machine):
        """Test the final phase has no next phase."""
        progress = machine.progress(state_at(tier=9), NOW)

        assert progress.next_phase is None
        assert progress.progress_percentage == 100.0
        assert progress.blocked_reason == "Immortal Phase is the final phase"

    def test_phase_definition_bounds(self):
        """Test tiers outside 1..9 are invalid."""
        with pytest.raises(ValueError):
            PhaseDefinition(
                tier=10, name="X", paisa_per_unit=1, step_requirement=1, time_limit_days=1
            )
