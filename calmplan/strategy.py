"""
calmplan - Strategy Selector
Stage 1 of planning: which activity categories suit today, and how many.
Asks the decision service first; the rule table below is the fallback.
"""

import asyncio
import logging
import random
from typing import Optional, List, Dict, Any, NamedTuple, Tuple

from .ai_client import DecisionServiceClient, extract_json_object
from .config import DecisionServiceConfig, get_decision_config
from .exceptions import DecisionServiceError
from .models import (
    ActivityCategory, DecisionResult, Level, LoadBand, Provenance,
    SERVICE_VOCABULARY, Strategy, StrategyContext,
)

logger = logging.getLogger(__name__)

C = ActivityCategory


# ============================================
# RULE TABLE
# ============================================

class BandRule(NamedTuple):
    categories: Tuple[ActivityCategory, ...]
    target_range: Tuple[int, int]
    priority_label: str


BAND_RULES: Dict[LoadBand, BandRule] = {
    # Overloaded: essential wellness only, no fitness
    LoadBand.OVERLOADED: BandRule(
        (C.BREATHING, C.HYDRATION, C.LIGHT_WALK, C.STRETCH),
        (3, 5),
        "essential-wellness",
    ),
    # Busy: quick recharge, light movement only
    LoadBand.BUSY: BandRule(
        (C.BREATHING, C.HYDRATION, C.LIGHT_WALK, C.STRETCH, C.YOGA, C.MEAL),
        (5, 7),
        "quick-recharge",
    ),
    # Moderate: balanced wellness with structured fitness
    LoadBand.MODERATE: BandRule(
        (C.BREATHING, C.WORKOUT, C.GYM, C.YOGA, C.MEAL, C.NATURE, C.CREATIVE, C.STRETCH, C.HYDRATION),
        (8, 10),
        "balanced",
    ),
    # Open: everything, fitness types diversified per day
    LoadBand.OPEN: BandRule(
        (C.MEAL, C.CREATIVE, C.NATURE, C.SOCIAL, C.LEARNING, C.BREATHING, C.ORGANIZATION, C.STRETCH, C.HYDRATION),
        (10, 15),
        "comprehensive-varied",
    ),
}

FITNESS_OPTIONS = (C.GYM, C.ROCK_CLIMBING, C.SWIMMING, C.CYCLING, C.YOGA, C.RUNNING, C.WORKOUT)
VIGOROUS = (C.GYM, C.ROCK_CLIMBING, C.RUNNING, C.CYCLING, C.WORKOUT)
STRESS_RELIEF = (C.BREATHING, C.NATURE, C.HYDRATION, C.YOGA, C.SWIMMING)
ENERGY_RESTORE = (C.HYDRATION, C.MEAL, C.BREATHING)
GENTLE_FITNESS = (C.SWIMMING, C.YOGA)

HIGH_STRESS_TARGET_CAP = 8
MINUTES_PER_ACTIVITY = 30


def _dedupe(categories: List[ActivityCategory]) -> List[ActivityCategory]:
    return list(dict.fromkeys(categories))


def pick_fitness_variety(rng: random.Random) -> List[ActivityCategory]:
    """Three or four different fitness types for an open day."""
    return rng.sample(FITNESS_OPTIONS, rng.randint(3, 4))


def _target_for(ctx: StrategyContext, target_range: Tuple[int, int]) -> int:
    low, high = target_range
    target = low if ctx.mood_score <= 4 else high
    capacity = ctx.total_available_minutes // MINUTES_PER_ACTIVITY
    return max(low, min(target, capacity))


def rule_based_strategy(ctx: StrategyContext, rng: Optional[random.Random] = None) -> Strategy:
    """
    Deterministic strategy from the band table plus stress/energy adjustments.

    Args:
        ctx: Planning context
        rng: Random source for fitness diversification on open days

    Returns:
        Strategy with de-duplicated categories
    """
    rule = BAND_RULES[ctx.band]
    categories = list(rule.categories)
    target = _target_for(ctx, rule.target_range)
    label = rule.priority_label

    if ctx.band == LoadBand.OPEN:
        selected = pick_fitness_variety(rng or random.Random())
        categories = selected + categories
        logger.info(f"Open schedule - selected diverse fitness: {', '.join(c.value for c in selected)}")

    high_stress = ctx.stress_level == Level.HIGH

    if high_stress:
        categories = [c for c in categories if not c.is_vigorous]
        categories = list(STRESS_RELIEF) + categories
        target = min(target, HIGH_STRESS_TARGET_CAP)
        label = "stress-relief"

    if ctx.energy_level == Level.LOW:
        categories = [c for c in categories if not c.is_vigorous and c != C.SOCIAL]
        categories = list(ENERGY_RESTORE) + categories
        for gentle in GENTLE_FITNESS:
            if gentle not in categories:
                categories.append(gentle)
        label = "energy-restoration"

    elif ctx.energy_level == Level.HIGH:
        # Stress relief wins over an energy boost
        if not high_stress:
            for vigorous in VIGOROUS:
                if vigorous not in categories:
                    categories.insert(0, vigorous)
        for social in (C.SOCIAL, C.CREATIVE):
            if social not in categories:
                categories.append(social)

    return Strategy(categories=_dedupe(categories), target_count=target, priority_label=label)


# ============================================
# DECISION SERVICE PATH
# ============================================

def build_strategy_prompt(ctx: StrategyContext) -> str:
    vocabulary = ", ".join(c.value for c in SERVICE_VOCABULARY)
    extra = f"\n- User note: {ctx.user_context}" if ctx.user_context else ""

    return f"""Analyze this user's schedule and recommend activity types.

CONTEXT:
- Schedule: {round(ctx.ratio * 100)}% busy ({ctx.tier.value} intensity)
- Mood: {ctx.mood_score}/10, Energy: {ctx.energy_level.value}, Stress: {ctx.stress_level.value}
- Available: {ctx.total_available_minutes} min across {ctx.window_count} time gaps{extra}

ACTIVITY TYPES: {vocabulary}

RULES:
- Overloaded (>75% busy): 3-5 activities, BREATHING, HYDRATION, LIGHT_WALK, STRETCH (no intense fitness)
- Busy (51-75%): 5-7 activities, add STRETCH, MEAL, YOGA
- Moderate (26-50%): 8-10 activities, add WORKOUT, GYM, CREATIVE, NATURE
- Open (<=25%): 10-15 activities, vary fitness types, add SOCIAL, LEARNING
- High stress: prioritize BREATHING, NATURE, HYDRATION, YOGA, SWIMMING (avoid intense fitness)
- Low energy: avoid WORKOUT/GYM/RUNNING, prioritize HYDRATION, MEAL, gentle SWIMMING/YOGA
- High energy: include varied intense fitness

Return ONLY the JSON object:
{{"activityTypes": ["BREATHING", "GYM", "SWIMMING"], "count": 12, "priority": "varied-fitness"}}"""


def parse_strategy_response(text: str) -> Strategy:
    """
    Validate a strategy answer.

    Raises:
        DecisionServiceError: when categories are missing/unknown or the count is not a positive integer
    """
    payload: Dict[str, Any] = extract_json_object(text, "activityTypes")

    raw_types = payload.get("activityTypes")
    if not isinstance(raw_types, list) or not raw_types:
        raise DecisionServiceError("Invalid strategy: missing activityTypes array")

    categories = []
    for raw in raw_types:
        category = ActivityCategory.parse(raw)
        if category is None:
            logger.warning(f"Ignoring unknown activity type from decision service: {raw!r}")
            continue
        categories.append(category)
    if not categories:
        raise DecisionServiceError("Invalid strategy: no known activity types")

    count = payload.get("count")
    if isinstance(count, float) and count.is_integer():
        count = int(count)
    if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
        raise DecisionServiceError(f"Invalid strategy: count must be a positive integer, got {count!r}")

    priority = payload.get("priority") or "balanced"
    return Strategy(categories=_dedupe(categories), target_count=count, priority_label=str(priority))


async def select_strategy(
    ctx: StrategyContext,
    client: Optional[DecisionServiceClient] = None,
    rng: Optional[random.Random] = None,
    config: Optional[DecisionServiceConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> DecisionResult[Strategy]:
    """
    Choose today's strategy.

    Returns:
        DecisionResult tagged from_service, or from_fallback when the
        service is disabled, fails, times out, is cancelled or answers badly.
    """
    if client is None:
        return DecisionResult(rule_based_strategy(ctx, rng), Provenance.FROM_FALLBACK, "decision service disabled")

    cfg = config or get_decision_config()
    try:
        text = await client.complete(
            build_strategy_prompt(ctx),
            timeout=cfg.strategy_timeout_seconds,
            temperature=cfg.strategy_temperature,
            max_tokens=cfg.strategy_max_tokens,
            cancel_event=cancel_event,
        )
        strategy = parse_strategy_response(text)
    except DecisionServiceError as e:
        logger.warning(f"Strategy determination failed, using rule-based strategy: {e}")
        return DecisionResult(rule_based_strategy(ctx, rng), Provenance.FROM_FALLBACK, str(e))

    logger.info(
        f"Strategy determined: {strategy.priority_label}, {strategy.target_count} activities "
        f"from {', '.join(c.value for c in strategy.categories)}"
    )
    return DecisionResult(strategy, Provenance.FROM_SERVICE)
