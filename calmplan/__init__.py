"""
calmplan - Wellness activity planning
Fits short wellness activities into the free time of a busy calendar day.
"""

__version__ = "0.1.0"

from .exceptions import InputError, DecisionServiceError, CandidateParseError
from .models import (
    ActivityCategory, ActivityCandidate, BusyBlock, DecisionResult, IntensityResult,
    IntensityTier, Level, LoadBand, MoodEstimate, MoodPattern, PlanRequest, PlanResult,
    Provenance, RunRecord, Strategy, ValidatedActivity, Window,
)
from .intervals import merge_intervals, find_windows, adaptive_buffer, usable_range
from .intensity import calculate_intensity, intensity_for_day
from .mood import estimate_mood, adjust_for_sentiment
from .strategy import select_strategy, rule_based_strategy
from .generator import generate_activities, rule_based_activities
from .validator import validate_placements
from .agents import PlanningEngine, get_planning_engine, to_calendar_event


__all__ = [
    "__version__",
    # Errors
    "InputError",
    "DecisionServiceError",
    "CandidateParseError",
    # Models
    "ActivityCategory",
    "ActivityCandidate",
    "BusyBlock",
    "DecisionResult",
    "IntensityResult",
    "IntensityTier",
    "Level",
    "LoadBand",
    "MoodEstimate",
    "MoodPattern",
    "PlanRequest",
    "PlanResult",
    "Provenance",
    "RunRecord",
    "Strategy",
    "ValidatedActivity",
    "Window",
    # Pipeline stages
    "merge_intervals",
    "find_windows",
    "adaptive_buffer",
    "usable_range",
    "calculate_intensity",
    "intensity_for_day",
    "estimate_mood",
    "adjust_for_sentiment",
    "select_strategy",
    "rule_based_strategy",
    "generate_activities",
    "rule_based_activities",
    "validate_placements",
    # Engine
    "PlanningEngine",
    "get_planning_engine",
    "to_calendar_event",
]
