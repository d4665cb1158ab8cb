"""
calmplan - Activity Generator
Stage 2 of planning: concrete, timed activity candidates for a strategy.
The decision service proposes; a greedy window fill is the fallback.
"""

import asyncio
import json
import logging
import math
import re
from datetime import datetime, date, timedelta
from typing import Optional, List, Dict, Any, Sequence, Set, NamedTuple, Tuple

from .ai_client import DecisionServiceClient, strip_code_fences
from .config import DecisionServiceConfig, get_decision_config
from .exceptions import DecisionServiceError, CandidateParseError
from .intervals import (
    adaptive_buffer, usable_range, format_time, parse_time, minutes_between,
)
from .models import (
    ActivityCandidate, ActivityCategory, BusyBlock, DecisionResult, IntensityTier,
    Level, Provenance, Strategy, StrategyContext, SUPPORT_CATEGORIES, Window,
)

logger = logging.getLogger(__name__)

C = ActivityCategory

_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_FRAGMENT_RE = re.compile(r"\{[^{}]*\"type\"[^{}]*\}")


# ============================================
# SESSION CATALOGUE
# ============================================

class Session(NamedTuple):
    minutes: int
    title: str
    description: str


# Typical session per category, used when filling beyond the mode's own slots
DEFAULT_SESSIONS: Dict[ActivityCategory, Session] = {
    C.BREATHING: Session(10, "Box Breathing", "Inhale 4, hold 4, exhale 4, hold 4"),
    C.HYDRATION: Session(5, "Water + Snack", "Drink a full glass of water, grab a light snack"),
    C.LIGHT_WALK: Session(15, "Park Stroll", "Easy-paced walk outside, no phone"),
    C.STRETCH: Session(10, "Full Body Stretch", "Neck, shoulders, hips and hamstrings"),
    C.YOGA: Session(30, "Vinyasa Flow", "Flowing yoga sequence linking breath and movement"),
    C.SWIMMING: Session(45, "Lap Swimming", "Steady freestyle and backstroke laps"),
    C.WORKOUT: Session(30, "Active Session", "Strength, cardio or mobility - your choice"),
    C.GYM: Session(60, "Strength Training", "Compound lifts with full rest between sets"),
    C.ROCK_CLIMBING: Session(75, "Bouldering Session", "Indoor climbing focused on technique"),
    C.CYCLING: Session(45, "Spin Class", "Interval ride at a sustainable effort"),
    C.RUNNING: Session(30, "Tempo Run", "Comfortably hard pace with warm-up and cool-down"),
    C.MEAL: Session(30, "Healthy Meal", "Protein and vegetables, eaten away from screens"),
    C.NATURE: Session(20, "Garden Walk", "Notice trees, sky and birds"),
    C.CREATIVE: Session(30, "Journaling", "Free writing, sketching or music practice"),
    C.SOCIAL: Session(30, "Call Family", "Catch up with someone you care about"),
    C.LEARNING: Session(30, "Read a Book", "Read, take a short course or listen to a podcast"),
    C.ORGANIZATION: Session(15, "Plan Tomorrow", "Clear the desk and review the calendar"),
    C.TRANSITION: Session(5, "5-min Transition Buffer", "Mental reset: step away, stretch, shift focus"),
    C.SENSORY: Session(10, "10-min Sensory Reset", "Find a quiet space, dim lights, noise-canceling headphones if available"),
    C.ENERGY_BOOST: Session(5, "5-min Energy Boost", "Cold water splash, light stretches, or 10 jumping jacks"),
}


class FallbackSlot(NamedTuple):
    """One entry of a fallback priority list. The first admissible choice is used."""
    choices: Tuple[ActivityCategory, ...]
    minutes: int
    title: str
    description: str
    min_window: int = 0
    max_window: Optional[int] = None


STRESS_RELIEF_SLOTS = (
    FallbackSlot((C.BREATHING,), 5, "{minutes}-min Quick Calm",
                 "Ultra-quick breathing: 3 deep breaths, reset your nervous system", 5, 29),
    FallbackSlot((C.HYDRATION,), 8, "{minutes}-min Water Break",
                 "Drink water slowly, hydration reduces stress", 10, 29),
    FallbackSlot((C.YOGA, C.NATURE, C.SENSORY), 20, "{minutes}-min Calm Session",
                 "Slow, quiet time to let your nervous system settle", 20),
)

MOOD_LIFT_SLOTS = (
    FallbackSlot((C.NATURE,), 20, "20-min Nature Walk",
                 "Walk outside, notice trees, sky, birds. Nature improves mood significantly.", 45),
    FallbackSlot((C.SOCIAL,), 15, "15-min Friend Check-in",
                 "Text or call a friend. Social connection lifts mood.", 30),
    FallbackSlot((C.CREATIVE,), 20, "20-min Creative Expression",
                 "Doodle, journal, play music - whatever feels creative to you", 35),
    FallbackSlot((C.WORKOUT, C.LIGHT_WALK), 15, "15-min Movement",
                 "Gentle exercise releases endorphins. Walk, stretch, or dance.", 25),
    FallbackSlot((C.BREATHING,), 10, "10-min Meditation",
                 "Guided meditation helps process emotions", 20),
)

ENERGY_RESTORE_SLOTS = (
    FallbackSlot((C.HYDRATION,), 10, "Water + Snack Break",
                 "Drink water and have a healthy snack for energy", 20),
    FallbackSlot((C.ENERGY_BOOST,), 5, "5-min Energy Boost",
                 "Cold water splash, light stretches, or 10 jumping jacks", 25),
    FallbackSlot((C.MEAL,), 25, "Nourishing {meal}",
                 "Protein + complex carbs for sustained energy", 35),
    FallbackSlot((C.BREATHING,), 10, "Restorative Breathing",
                 "Gentle breathing to restore energy without exhaustion", 20),
)

BALANCED_SLOTS = (
    FallbackSlot((C.WORKOUT, C.GYM, C.YOGA), 30, "{minutes}-min Active Session",
                 "Yoga, strength training, or cardio - your choice", 60),
    FallbackSlot((C.MEAL,), 25, "Mindful {meal}",
                 "Eat slowly, savor flavors, no screens", 35),
    FallbackSlot((C.ORGANIZATION,), 15, "15-min Tidy & Plan",
                 "Clear desk, review calendar, plan tomorrow", 30),
    FallbackSlot((C.LEARNING,), 15, "15-min Learning",
                 "Read article, watch tutorial, or listen to podcast", 25),
    FallbackSlot((C.BREATHING,), 10, "10-min Mindfulness",
                 "Meditation or breathing exercise for mental clarity", 20),
    FallbackSlot((C.TRANSITION,), 5, "5-min Transition Buffer",
                 "Mental reset: step away, stretch, shift focus", 12),
)


def meal_name(start: datetime) -> str:
    hour = start.hour
    if 6 <= hour < 10:
        return "Breakfast"
    if 11 <= hour < 14:
        return "Lunch"
    if 17 <= hour < 21:
        return "Dinner"
    return "Snack"


def fallback_slots_for(ctx: StrategyContext) -> Tuple[str, Tuple[FallbackSlot, ...]]:
    """Pick the priority list that matches the day's context."""
    if ctx.stress_level == Level.HIGH or ctx.tier == IntensityTier.HIGH:
        return "stress-relief", STRESS_RELIEF_SLOTS
    if ctx.mood_score < 4:
        return "mood-lift", MOOD_LIFT_SLOTS
    if ctx.energy_level == Level.LOW:
        return "energy-restoration", ENERGY_RESTORE_SLOTS
    return "balanced", BALANCED_SLOTS


# ============================================
# RULE-BASED FALLBACK
# ============================================

def _fits(slot: FallbackSlot, window_minutes: int) -> bool:
    if window_minutes < slot.min_window:
        return False
    return slot.max_window is None or window_minutes <= slot.max_window


def _can_host(window: Window, slot: FallbackSlot) -> bool:
    usable = usable_range(window)
    return (
        usable is not None
        and _fits(slot, window.duration)
        and usable.minutes >= slot.choices[0].min_minutes
    )


def _generic_slots(
    strategy: Strategy,
    mode_slots: Sequence[FallbackSlot],
    windows: Sequence[Window],
) -> List[FallbackSlot]:
    # A mode category is left to its mode slot only when some window can host that slot
    reserved = {
        slot.choices[0] for slot in mode_slots
        if any(_can_host(w, slot) for w in windows)
    }
    slots = []
    for category in strategy.categories:
        if category in reserved:
            continue
        session = DEFAULT_SESSIONS[category]
        slots.append(FallbackSlot((category,), session.minutes, session.title, session.description))
    return slots


def _pick(
    slots: Sequence[FallbackSlot],
    allowed: Set[ActivityCategory],
    used: Set[ActivityCategory],
    spent: Set[int],
    window_minutes: int,
    remaining_minutes: float,
) -> Optional[Tuple[int, ActivityCategory]]:
    for index, slot in enumerate(slots):
        if index in spent:
            continue
        if not _fits(slot, window_minutes):
            continue
        for category in slot.choices:
            if category in allowed and category not in used and category.min_minutes <= remaining_minutes:
                return index, category
    return None


def rule_based_activities(
    strategy: Strategy,
    ctx: StrategyContext,
    windows: Sequence[Window],
) -> List[ActivityCandidate]:
    """
    Greedy fill: largest windows first, at most one activity per category.

    Inside a window activities are packed from the start of its usable
    range, each followed by the window's adaptive buffer.
    """
    mode, mode_slots = fallback_slots_for(ctx)
    slots = list(mode_slots) + _generic_slots(strategy, mode_slots, windows)
    allowed = set(strategy.categories) | set(SUPPORT_CATEGORIES)
    used: Set[ActivityCategory] = set()
    spent: Set[int] = set()
    activities: List[ActivityCandidate] = []

    ordered = sorted(windows, key=lambda w: (-w.duration, not w.in_energy_window, w.start))

    for window in ordered:
        if len(activities) >= strategy.target_count:
            break

        usable = usable_range(window)
        if usable is None:
            continue
        buffer = timedelta(minutes=adaptive_buffer(window.duration))
        cursor = usable.start

        while len(activities) < strategy.target_count:
            remaining = minutes_between(cursor, usable.end)
            picked = _pick(slots, allowed, used, spent, window.duration, remaining)
            if picked is None:
                break
            index, category = picked
            slot = slots[index]

            minutes = max(category.min_minutes, min(slot.minutes, category.max_minutes))
            minutes = min(minutes, math.floor(remaining))
            start = cursor
            end = start + timedelta(minutes=minutes)

            activities.append(ActivityCandidate(
                category=category,
                title=slot.title.format(minutes=minutes, meal=meal_name(start)),
                start_time=start,
                end_time=end,
                duration_seconds=minutes * 60,
                description=slot.description,
                is_calming=category.is_calming,
            ))
            used.add(category)
            spent.add(index)
            cursor = end + buffer

    logger.info(f"Generated {len(activities)} fallback activities ({mode} mode)")
    return activities


# ============================================
# RESPONSE PARSING
# ============================================

def _parse_clock(value: Any, day: date) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).strip()
    if "T" in text or len(text) > 8:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    return datetime.combine(day, parse_time(text))


def candidate_from_payload(payload: Dict[str, Any], day: date) -> Optional[ActivityCandidate]:
    """
    Build a candidate from one proposed activity, or None if it is unusable.

    Requires type, title, startTime and endTime. Times may be HH:MM on the
    planning day or ISO datetimes.
    """
    if not isinstance(payload, dict):
        return None

    category = ActivityCategory.parse(payload.get("type"))
    title = payload.get("title")
    if category is None or not title or not payload.get("startTime") or not payload.get("endTime"):
        logger.warning(f"Skipping proposed activity with missing or unknown fields: {str(payload)[:100]}")
        return None

    try:
        start = _parse_clock(payload["startTime"], day)
        end = _parse_clock(payload["endTime"], day)
    except (TypeError, ValueError) as e:
        logger.warning(f"Invalid time format for proposed activity {title!r}: {e}")
        return None

    calming = payload.get("isCalming", payload.get("isBreathing"))
    return ActivityCandidate(
        category=category,
        title=str(title),
        start_time=start,
        end_time=end,
        duration_seconds=int((end - start).total_seconds()),
        description=str(payload.get("description") or ""),
        is_calming=bool(calming) if calming is not None else category.is_calming,
    )


def parse_candidates_strict(text: str, day: date) -> List[ActivityCandidate]:
    """
    Phase 1: the answer holds one complete JSON array.

    Raises:
        CandidateParseError: no array, or the array is not valid JSON
    """
    cleaned = strip_code_fences(text)
    match = _ARRAY_RE.search(cleaned)
    if not match:
        raise CandidateParseError("No JSON array found in response")

    try:
        items = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise CandidateParseError(f"JSON array found but failed to parse: {e}") from e
    if not isinstance(items, list):
        raise CandidateParseError("Top-level JSON value is not an array")

    candidates = [c for c in (candidate_from_payload(item, day) for item in items) if c is not None]
    logger.info(f"Parsed complete JSON array with {len(candidates)} of {len(items)} activities")
    return candidates


def parse_candidate_fragments(text: str, day: date) -> List[ActivityCandidate]:
    """
    Phase 2: salvage individual well-formed activity objects from a
    truncated or otherwise broken answer.
    """
    cleaned = strip_code_fences(text)
    candidates = []
    for match in _FRAGMENT_RE.finditer(cleaned):
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse activity fragment: {match.group(0)[:100]}")
            continue
        candidate = candidate_from_payload(payload, day)
        if candidate is not None:
            candidates.append(candidate)

    if candidates:
        logger.info(f"Extracted {len(candidates)} activities from incomplete response")
    return candidates


def parse_generation_response(text: str, day: date) -> List[ActivityCandidate]:
    """Strict parse, then fragment salvage."""
    try:
        candidates = parse_candidates_strict(text, day)
    except CandidateParseError as e:
        logger.warning(f"{e}; trying fragment extraction")
        candidates = parse_candidate_fragments(text, day)

    if not candidates:
        raise DecisionServiceError("No valid activities found in response")
    return candidates


# ============================================
# DECISION SERVICE PATH
# ============================================

def _describe_blocks(busy_blocks: Sequence[BusyBlock]) -> str:
    if not busy_blocks:
        return "None"
    ordered = sorted(busy_blocks, key=lambda b: b.start)
    return ", ".join(f"{format_time(b.start)}-{format_time(b.end)} ({b.label})" for b in ordered)


def _describe_windows(windows: Sequence[Window]) -> str:
    parts = []
    for window in windows:
        usable = usable_range(window)
        if usable is None:
            continue
        peak = " PEAK ENERGY" if window.in_energy_window else ""
        parts.append(
            f"{format_time(usable.start)}-{format_time(usable.end)} "
            f"({math.floor(usable.minutes)} min, leave {adaptive_buffer(window.duration)} min between activities{peak})"
        )
    return "\n".join(f"- {p}" for p in parts) or "None"


def build_generation_prompt(
    strategy: Strategy,
    ctx: StrategyContext,
    windows: Sequence[Window],
    busy_blocks: Sequence[BusyBlock],
) -> str:
    types = ", ".join(c.value for c in strategy.categories)
    durations = "\n".join(
        f"- {c.value}: {c.min_minutes}-{c.max_minutes} min (e.g. \"{DEFAULT_SESSIONS[c].title}\")"
        for c in strategy.categories
    )

    return f"""Generate {strategy.target_count} wellness activities.

Mood {ctx.mood_score}/10, energy {ctx.energy_level.value}, stress {ctx.stress_level.value}, schedule {round(ctx.ratio * 100)}% busy.

BLOCKED TIMES (existing calendar events - DO NOT SCHEDULE DURING THESE):
{_describe_blocks(busy_blocks)}

AVAILABLE WINDOWS ONLY (schedule activities ONLY within these times):
{_describe_windows(windows)}

CRITICAL RULES:
1. Activities MUST be scheduled within the available windows shown above
2. Activities MUST NOT overlap with blocked times or with each other
3. Leave the stated number of minutes between activities in the same window
4. If an activity cannot fit in any window, DO NOT include it

ACTIVITY TYPES TO USE: {types}
PRIORITY: {strategy.priority_label}

DURATIONS:
{durations}

If several fitness types are listed, use different ones. Give concrete, varied titles.

OUTPUT (JSON array only):
[
  {{"type": "SWIMMING", "title": "Lap Swimming", "startTime": "14:00", "endTime": "14:45", "durationSec": 2700, "description": "45 minutes freestyle and backstroke", "isCalming": false}}
]"""


async def generate_activities(
    strategy: Strategy,
    ctx: StrategyContext,
    windows: Sequence[Window],
    busy_blocks: Sequence[BusyBlock],
    day: date,
    client: Optional[DecisionServiceClient] = None,
    config: Optional[DecisionServiceConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> DecisionResult[List[ActivityCandidate]]:
    """
    Produce up to `strategy.target_count` candidates.

    Returns:
        DecisionResult tagged from_service, or from_fallback with the
        greedy fill when the service is unavailable or unusable.
    """
    if not windows:
        logger.info("No available windows - nothing to generate")
        return DecisionResult([], Provenance.FROM_FALLBACK, "no windows")

    if client is None:
        return DecisionResult(
            rule_based_activities(strategy, ctx, windows), Provenance.FROM_FALLBACK, "decision service disabled"
        )

    cfg = config or get_decision_config()
    try:
        text = await client.complete(
            build_generation_prompt(strategy, ctx, windows, busy_blocks),
            timeout=cfg.generation_timeout_seconds,
            temperature=cfg.generation_temperature,
            max_tokens=cfg.generation_max_tokens,
            cancel_event=cancel_event,
        )
        candidates = parse_generation_response(text, day)

        admissible = set(strategy.categories)
        kept = [c for c in candidates if c.category in admissible]
        if len(kept) < len(candidates):
            logger.warning(f"Dropped {len(candidates) - len(kept)} proposed activities outside the strategy")
        if not kept:
            raise DecisionServiceError("No proposed activities match the strategy")
    except DecisionServiceError as e:
        logger.warning(f"Activity generation failed, falling back to rule-based generation: {e}")
        return DecisionResult(rule_based_activities(strategy, ctx, windows), Provenance.FROM_FALLBACK, str(e))

    return DecisionResult(kept[:strategy.target_count], Provenance.FROM_SERVICE)
