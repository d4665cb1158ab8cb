"""
Unit tests for calmplan/generator.py

Two-phase answer parsing, the greedy fallback fill and the
service-then-fallback flow.
"""

import json
import random

import pytest

from calmplan.exceptions import CandidateParseError, DecisionServiceError
from calmplan.generator import (
    build_generation_prompt, fallback_slots_for, generate_activities, meal_name,
    parse_candidate_fragments, parse_candidates_strict, parse_generation_response,
    rule_based_activities,
)
from calmplan.intervals import find_windows, merge_intervals
from calmplan.models import (
    ActivityCategory as C, IntensityTier, Level, LoadBand, Provenance, SizeClass,
    Strategy, StrategyContext, Window,
)
from calmplan.strategy import rule_based_strategy
from calmplan.validator import validate_placements

from conftest import PLAN_DAY, at, block


def _activity(type_, title, start, end, **extra):
    return {"type": type_, "title": title, "startTime": start, "endTime": end, **extra}


def moderate_day():
    """Busy 10:00-18:00 inside 06:00-22:00."""
    blocks = [block(10, 0, 18, 0, "Work")]
    windows = find_windows(merge_intervals(blocks, 5), at(6), at(22))
    ctx = StrategyContext(
        tier=IntensityTier.MEDIUM, ratio=0.5, band=LoadBand.MODERATE, mood_score=6,
        total_available_minutes=sum(w.duration for w in windows), window_count=len(windows),
    )
    return blocks, windows, ctx


# ========================================================================
# Parsing
# ========================================================================


class TestStrictParse:
    """Test parse_candidates_strict"""

    def test_complete_array(self):
        text = json.dumps([
            _activity("BREATHING", "Box Breathing", "07:00", "07:10", isCalming=True),
            _activity("GYM", "Leg Day", "19:00", "20:00", description="Squats"),
        ])
        candidates = parse_candidates_strict(text, PLAN_DAY)
        assert [c.category for c in candidates] == [C.BREATHING, C.GYM]
        assert candidates[0].start_time == at(7)
        assert candidates[0].end_time == at(7, 10)
        assert candidates[0].duration_seconds == 600
        assert candidates[0].is_calming is True
        assert candidates[1].description == "Squats"

    def test_fenced_array(self):
        text = "```json\n" + json.dumps([_activity("YOGA", "Flow", "08:00", "08:30")]) + "\n```"
        assert len(parse_candidates_strict(text, PLAN_DAY)) == 1

    def test_iso_times(self):
        text = json.dumps([_activity("YOGA", "Flow", "2026-03-10T08:00:00", "2026-03-10T08:30:00")])
        candidate = parse_candidates_strict(text, PLAN_DAY)[0]
        assert candidate.start_time == at(8)

    def test_calming_flag_defaults_from_category(self):
        text = json.dumps([_activity("NATURE", "Walk", "08:00", "08:20")])
        assert parse_candidates_strict(text, PLAN_DAY)[0].is_calming is True

    def test_incomplete_entries_skipped(self):
        text = json.dumps([
            {"type": "YOGA", "title": "No times"},
            _activity("SKYDIVING", "Jump", "08:00", "08:30"),
            _activity("YOGA", "Bad clock", "eight", "08:30"),
            _activity("STRETCH", "Stretch", "09:00", "09:10"),
        ])
        candidates = parse_candidates_strict(text, PLAN_DAY)
        assert [c.category for c in candidates] == [C.STRETCH]

    def test_no_array(self):
        with pytest.raises(CandidateParseError):
            parse_candidates_strict("I could not plan anything today.", PLAN_DAY)

    def test_truncated_array(self):
        text = '[{"type": "YOGA", "title": "Flow", "startTime": "08:00", "endTime": "08:30"}, {"type": "GY'
        with pytest.raises(CandidateParseError):
            parse_candidates_strict(text, PLAN_DAY)

    def test_parse_error_is_a_service_error(self):
        assert issubclass(CandidateParseError, DecisionServiceError)


class TestFragmentParse:
    """Test parse_candidate_fragments"""

    def test_salvages_complete_objects_from_truncated_answer(self):
        text = (
            '[{"type": "YOGA", "title": "Flow", "startTime": "08:00", "endTime": "08:30"}, '
            '{"type": "BREATHING", "title": "Calm", "startTime": "09:00", "endTime": "09:05"}, '
            '{"type": "GYM", "title": "Lifts", "startTi'
        )
        candidates = parse_candidate_fragments(text, PLAN_DAY)
        assert [c.category for c in candidates] == [C.YOGA, C.BREATHING]

    def test_nothing_to_salvage(self):
        assert parse_candidate_fragments('[{"title": "no type"', PLAN_DAY) == []


class TestParseGenerationResponse:
    """Test the strict-then-fragment pipeline"""

    def test_strict_first(self):
        text = json.dumps([_activity("YOGA", "Flow", "08:00", "08:30")])
        assert len(parse_generation_response(text, PLAN_DAY)) == 1

    def test_falls_back_to_fragments(self):
        text = '[{"type": "YOGA", "title": "Flow", "startTime": "08:00", "endTime": "08:30"}, {"type": '
        assert len(parse_generation_response(text, PLAN_DAY)) == 1

    def test_nothing_usable(self):
        with pytest.raises(DecisionServiceError):
            parse_generation_response("Sorry, no.", PLAN_DAY)


# ========================================================================
# Fallback fill
# ========================================================================


class TestRuleBasedActivities:
    """Test the greedy fallback fill"""

    def test_balanced_day(self):
        blocks, windows, ctx = moderate_day()
        strategy = rule_based_strategy(ctx)
        activities = rule_based_activities(strategy, ctx, windows)

        assert len(activities) == strategy.target_count
        assert activities[0].category == C.WORKOUT
        assert activities[0].start_time == at(6, 15)
        assert activities[1].title == "Mindful Breakfast"
        assert len({a.category for a in activities}) == len(activities)

    def test_fallback_output_passes_validation(self):
        blocks, windows, ctx = moderate_day()
        activities = rule_based_activities(rule_based_strategy(ctx), ctx, windows)

        outcome = validate_placements(activities, blocks, windows, LoadBand.MODERATE)
        assert outcome.rejected_count == 0
        assert len(outcome.accepted) == len(activities)

    def test_stress_relief_uses_small_windows_for_breathing(self):
        windows = [
            Window(start=at(9), end=at(9, 20), duration=20, size_class=SizeClass.SMALL),
            Window(start=at(12), end=at(13), duration=60, size_class=SizeClass.LARGE),
        ]
        ctx = StrategyContext(
            tier=IntensityTier.HIGH, ratio=0.9, band=LoadBand.OVERLOADED,
            stress_level=Level.HIGH, total_available_minutes=80, window_count=2,
        )
        strategy = rule_based_strategy(ctx)
        activities = rule_based_activities(strategy, ctx, windows)

        by_category = {a.category: a for a in activities}
        assert by_category[C.BREATHING].start_time == at(9, 2)
        assert by_category[C.YOGA].start_time == at(12, 10)
        assert not any(a.category.is_vigorous for a in activities)
        assert len(activities) <= strategy.target_count

    def test_stress_relief_with_only_large_windows_keeps_breathing_and_hydration(self):
        """No window is small enough for the quick slots; the generic fill places them instead"""
        blocks = [block(7, 0, 9, 0), block(10, 30, 15, 0), block(16, 30, 20, 30)]
        windows = find_windows(merge_intervals(blocks, 5), at(7), at(22))
        assert [w.duration for w in windows] == [80, 80, 85]

        ctx = StrategyContext(
            tier=IntensityTier.MEDIUM, ratio=0.7, band=LoadBand.BUSY, stress_level=Level.HIGH,
            total_available_minutes=245, window_count=3,
        )
        strategy = rule_based_strategy(ctx)
        activities = rule_based_activities(strategy, ctx, windows)

        categories = [a.category for a in activities]
        assert C.BREATHING in categories
        assert C.HYDRATION in categories
        assert len(set(categories)) == len(categories)
        assert not any(a.category.is_vigorous for a in activities)
        assert validate_placements(activities, blocks, windows, LoadBand.BUSY).rejected_count == 0

    def test_never_exceeds_target(self):
        windows = find_windows([], at(6), at(22))
        ctx = StrategyContext(tier=IntensityTier.LOW, ratio=0.0, band=LoadBand.OPEN, total_available_minutes=960)
        strategy = Strategy(categories=[C.BREATHING, C.YOGA, C.MEAL, C.NATURE], target_count=2)
        assert len(rule_based_activities(strategy, ctx, windows)) == 2

    def test_no_windows(self):
        ctx = StrategyContext(tier=IntensityTier.HIGH, ratio=1.0, band=LoadBand.OVERLOADED)
        strategy = Strategy(categories=[C.BREATHING], target_count=3)
        assert rule_based_activities(strategy, ctx, []) == []

    def test_only_strategy_or_support_categories(self):
        blocks, windows, ctx = moderate_day()
        strategy = Strategy(categories=[C.BREATHING, C.STRETCH], target_count=6)
        activities = rule_based_activities(strategy, ctx, windows)
        allowed = {C.BREATHING, C.STRETCH, C.TRANSITION, C.SENSORY, C.ENERGY_BOOST}
        assert activities
        assert {a.category for a in activities} <= allowed


@pytest.mark.parametrize("hour,expected", [
    (7, "Breakfast"), (10, "Snack"), (12, "Lunch"), (15, "Snack"), (19, "Dinner"), (22, "Snack"),
])
def test_meal_name(hour, expected):
    assert meal_name(at(hour)) == expected


def test_fallback_modes():
    base = dict(tier=IntensityTier.MEDIUM, ratio=0.4, band=LoadBand.MODERATE)
    assert fallback_slots_for(StrategyContext(**base, stress_level=Level.HIGH))[0] == "stress-relief"
    assert fallback_slots_for(StrategyContext(**base, mood_score=3))[0] == "mood-lift"
    assert fallback_slots_for(StrategyContext(**base, energy_level=Level.LOW))[0] == "energy-restoration"
    assert fallback_slots_for(StrategyContext(**base))[0] == "balanced"


def test_prompt_lists_blocked_times_and_windows():
    blocks, windows, ctx = moderate_day()
    strategy = Strategy(categories=[C.YOGA, C.MEAL], target_count=4)
    prompt = build_generation_prompt(strategy, ctx, windows, blocks)
    assert "10:00-18:00 (Work)" in prompt
    assert "06:15-09:40" in prompt
    assert "YOGA, MEAL" in prompt


# ========================================================================
# Service then fallback
# ========================================================================


class TestGenerateActivities:
    """Test generate_activities"""

    @pytest.mark.asyncio
    async def test_disabled_service_uses_fallback(self):
        blocks, windows, ctx = moderate_day()
        strategy = rule_based_strategy(ctx, random.Random(1))
        result = await generate_activities(strategy, ctx, windows, blocks, PLAN_DAY)
        assert result.provenance == Provenance.FROM_FALLBACK
        assert result.value

    @pytest.mark.asyncio
    async def test_no_windows_yields_empty(self, mock_client):
        ctx = StrategyContext(tier=IntensityTier.HIGH, ratio=1.0, band=LoadBand.OVERLOADED)
        strategy = Strategy(categories=[C.BREATHING], target_count=3)
        result = await generate_activities(strategy, ctx, [], [], PLAN_DAY, client=mock_client)
        assert result.value == []
        mock_client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_service_answer_used_and_limited(self, mock_client):
        blocks, windows, ctx = moderate_day()
        strategy = Strategy(categories=[C.YOGA, C.BREATHING], target_count=2)
        mock_client.complete.return_value = json.dumps([
            _activity("YOGA", "Flow", "07:00", "07:30"),
            _activity("GYM", "Not in strategy", "08:00", "09:00"),
            _activity("BREATHING", "Calm", "08:00", "08:10"),
            _activity("BREATHING", "Calm again", "19:00", "19:10"),
        ])
        result = await generate_activities(
            strategy, ctx, windows, blocks, PLAN_DAY, client=mock_client, config=mock_client.config
        )
        assert result.from_service
        assert [c.title for c in result.value] == ["Flow", "Calm"]
        assert mock_client.complete.call_args.kwargs["timeout"] == 30.0

    @pytest.mark.asyncio
    async def test_truncated_answer_salvaged(self, mock_client):
        blocks, windows, ctx = moderate_day()
        strategy = Strategy(categories=[C.YOGA], target_count=3)
        mock_client.complete.return_value = '[{"type": "YOGA", "title": "Flow", "startTime": "07:00", "endTime": "07:30"}, {"ty'
        result = await generate_activities(strategy, ctx, windows, blocks, PLAN_DAY, client=mock_client)
        assert result.from_service
        assert len(result.value) == 1

    @pytest.mark.asyncio
    async def test_off_strategy_answer_falls_back(self, mock_client):
        blocks, windows, ctx = moderate_day()
        strategy = Strategy(categories=[C.YOGA], target_count=3)
        mock_client.complete.return_value = json.dumps([_activity("GYM", "Lifts", "07:00", "08:00")])
        result = await generate_activities(strategy, ctx, windows, blocks, PLAN_DAY, client=mock_client)
        assert result.provenance == Provenance.FROM_FALLBACK
        assert all(c.category in (C.YOGA, C.TRANSITION, C.SENSORY, C.ENERGY_BOOST) for c in result.value)

    @pytest.mark.asyncio
    async def test_service_failure_falls_back(self, mock_client):
        blocks, windows, ctx = moderate_day()
        strategy = rule_based_strategy(ctx)
        mock_client.complete.side_effect = DecisionServiceError("Decision service cancelled")
        result = await generate_activities(strategy, ctx, windows, blocks, PLAN_DAY, client=mock_client)
        assert result.provenance == Provenance.FROM_FALLBACK
        assert result.error == "Decision service cancelled"
        assert result.value
