"""
calmplan - Mood Correlator
Estimates mood, energy and stress from how busy yesterday and today are,
optionally nudged by a check-in sentiment score.
"""

import logging
import math
from typing import Optional

from .config import IntensityThresholds
from .models import (
    IntensityResult, IntensityTier, Level, MoodEstimate, MoodPattern, Sentiment,
)

logger = logging.getLogger(__name__)

MIN_SCORE = 1
MAX_SCORE = 10

STRONG_SENTIMENT = 0.5
CONFIDENT = 0.7


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def clamp_score(score: float, low: int = MIN_SCORE, high: int = MAX_SCORE) -> int:
    return int(max(low, min(high, score)))


# ============================================
# PATTERN TABLE
# ============================================

def _burnout(yesterday: IntensityResult, today: IntensityResult, thresholds: IntensityThresholds) -> MoodEstimate:
    avg = (yesterday.ratio + today.ratio) / 2
    # How far into the overloaded band the two days sit, 0..1
    excess = (avg - thresholds.overloaded) / (1 - thresholds.overloaded)
    excess = max(0.0, min(1.0, excess))
    return MoodEstimate(
        mood_score=clamp_score(5 - round_half_up(2 * excess), 3, 5),
        energy_level=Level.LOW,
        stress_level=Level.HIGH,
        reasoning="Consistent high schedule intensity detected. Burnout risk - need rest and breathing breaks.",
        pattern=MoodPattern.BURNOUT,
    )


def _recovery(today: IntensityResult) -> MoodEstimate:
    return MoodEstimate(
        mood_score=clamp_score(6 + math.floor((1 - today.ratio) * 4), 6, 9),
        energy_level=Level.MODERATE,
        stress_level=Level.LOW,
        reasoning="Recovery day after busy period. Good opportunity for self-care and wellness activities.",
        pattern=MoodPattern.RECOVERY,
    )


def _ramp_up(yesterday: IntensityResult) -> MoodEstimate:
    return MoodEstimate(
        mood_score=clamp_score(6 + math.floor((1 - yesterday.ratio) * 3), 6, 8),
        energy_level=Level.HIGH,
        stress_level=Level.MODERATE,
        reasoning="Well-rested from lighter schedule. Good energy to tackle busy day ahead.",
        pattern=MoodPattern.RAMP_UP,
    )


def _optimal(yesterday: IntensityResult, today: IntensityResult) -> MoodEstimate:
    return MoodEstimate(
        mood_score=clamp_score(7 + math.floor((2 - yesterday.ratio - today.ratio) * 3), 7, 10),
        energy_level=Level.HIGH,
        stress_level=Level.LOW,
        reasoning="Balanced, light schedule. Optimal state for productivity and wellness.",
        pattern=MoodPattern.OPTIMAL,
    )


def _stable(yesterday: IntensityResult, today: IntensityResult) -> MoodEstimate:
    avg = (yesterday.ratio + today.ratio) / 2
    return MoodEstimate(
        mood_score=7 if avg <= 0.5 else 6,
        energy_level=Level.MODERATE,
        stress_level=Level.MODERATE,
        reasoning="Steady, moderate schedule. Maintaining consistent pace.",
        pattern=MoodPattern.STABLE,
    )


def _mixed(yesterday: IntensityResult, today: IntensityResult) -> MoodEstimate:
    avg = (yesterday.ratio + today.ratio) / 2
    if avg > 0.6:
        energy, stress = Level.LOW, Level.HIGH
    elif avg > 0.35:
        energy, stress = Level.MODERATE, Level.MODERATE
    else:
        energy, stress = Level.HIGH, Level.LOW

    return MoodEstimate(
        mood_score=clamp_score(round_half_up(8 - avg * 6)),
        energy_level=energy,
        stress_level=stress,
        reasoning=f"Mixed schedule pattern. Average intensity: {round_half_up(avg * 100)}%",
        pattern=MoodPattern.MIXED,
    )


_SINGLE_DAY_LEVELS = {
    IntensityTier.HIGH: (Level.MODERATE, Level.HIGH),
    IntensityTier.MEDIUM: (Level.MODERATE, Level.MODERATE),
    IntensityTier.LOW: (Level.HIGH, Level.LOW),
}


def _single_day(today: IntensityResult) -> MoodEstimate:
    energy, stress = _SINGLE_DAY_LEVELS[today.tier]
    return MoodEstimate(
        mood_score=clamp_score(round_half_up(9 - today.ratio * 7)),
        energy_level=energy,
        stress_level=stress,
        reasoning=(
            f"Based on today's {today.tier.value} schedule intensity "
            f"({round_half_up(today.ratio * 100)}% busy)."
        ),
        pattern=MoodPattern.SINGLE_DAY,
    )


# ============================================
# PUBLIC API
# ============================================

def adjust_for_sentiment(estimate: MoodEstimate, score: float, confidence: float) -> MoodEstimate:
    """
    Blend a check-in sentiment into an estimate.

    Args:
        estimate: Estimate from schedule intensity
        score: Sentiment in [-1, 1]
        confidence: Confidence in [0, 1]

    Returns:
        New MoodEstimate; the score stays within [1, 10]
    """
    score = max(-1.0, min(1.0, score))
    confidence = max(0.0, min(1.0, confidence))

    adjustment = round_half_up(score * 3 * confidence)
    energy = estimate.energy_level
    stress = estimate.stress_level

    if confidence > CONFIDENT:
        if score > STRONG_SENTIMENT:
            energy = Level.HIGH
            stress = Level.MODERATE if stress == Level.HIGH else Level.LOW
        elif score < -STRONG_SENTIMENT:
            energy = Level.MODERATE if energy == Level.HIGH else Level.LOW
            stress = Level.HIGH

    tone = "positive" if score > 0 else "negative"
    return estimate.model_copy(update={
        "mood_score": clamp_score(estimate.mood_score + adjustment),
        "energy_level": energy,
        "stress_level": stress,
        "reasoning": f"{estimate.reasoning} Adjusted by sentiment analysis ({tone} tone detected).",
    })


def estimate_mood(
    today: IntensityResult,
    yesterday: Optional[IntensityResult] = None,
    sentiment: Optional[Sentiment] = None,
    thresholds: Optional[IntensityThresholds] = None,
) -> MoodEstimate:
    """
    Estimate mood from today's (and optionally yesterday's) intensity.

    Patterns by (yesterday tier, today tier):
        high/high     burnout      3-5, low energy, high stress
        high/low      recovery     6-9
        low/high      ramp-up      6-8
        low/low       optimal      7-10
        medium/medium stable       6-7
        otherwise     mixed        round(8 - avg*6)
    Without yesterday the score is round(9 - ratio*7).
    """
    thresholds = thresholds or IntensityThresholds()

    if yesterday is None:
        estimate = _single_day(today)
    else:
        pair = (yesterday.tier, today.tier)
        if pair == (IntensityTier.HIGH, IntensityTier.HIGH):
            estimate = _burnout(yesterday, today, thresholds)
        elif pair == (IntensityTier.HIGH, IntensityTier.LOW):
            estimate = _recovery(today)
        elif pair == (IntensityTier.LOW, IntensityTier.HIGH):
            estimate = _ramp_up(yesterday)
        elif pair == (IntensityTier.LOW, IntensityTier.LOW):
            estimate = _optimal(yesterday, today)
        elif pair == (IntensityTier.MEDIUM, IntensityTier.MEDIUM):
            estimate = _stable(yesterday, today)
        else:
            estimate = _mixed(yesterday, today)

    if sentiment is not None and sentiment.score != 0:
        estimate = adjust_for_sentiment(estimate, sentiment.score, sentiment.confidence)

    logger.info(
        f"Mood estimate: {estimate.pattern.value}, score {estimate.mood_score}, "
        f"energy {estimate.energy_level.value}, stress {estimate.stress_level.value}"
    )
    return estimate
