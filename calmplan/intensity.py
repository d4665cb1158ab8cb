"""
calmplan - Schedule intensity
How full a day's active hours are, as a ratio, tier and load band.
"""

import logging
from datetime import datetime, time
from typing import Optional, Sequence, Tuple

from .config import IntensityThresholds
from .exceptions import InputError
from .intervals import merge_intervals, minutes_between, resolve_active_bounds, time_to_minutes
from .models import IntensityResult, IntensityTier, LoadBand, TimeInterval

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_MINUTES = 16 * 60


def classify(ratio: float, thresholds: Optional[IntensityThresholds] = None) -> Tuple[IntensityTier, LoadBand]:
    """Map a ratio to its tier and band using the threshold table."""
    thresholds = thresholds or IntensityThresholds()

    if ratio > thresholds.overloaded:
        return IntensityTier.HIGH, LoadBand.OVERLOADED
    if ratio > thresholds.busy:
        return IntensityTier.MEDIUM, LoadBand.BUSY
    if ratio > thresholds.moderate:
        return IntensityTier.MEDIUM, LoadBand.MODERATE
    return IntensityTier.LOW, LoadBand.OPEN


def calculate_intensity(
    busy_minutes: float,
    active_minutes: float,
    thresholds: Optional[IntensityThresholds] = None,
) -> IntensityResult:
    """
    Compute the intensity of a day.

    Args:
        busy_minutes: Merged busy minutes inside the active hours
        active_minutes: Waking minutes of the day (must be positive)
        thresholds: Threshold table (defaults to 0.75 / 0.50 / 0.25)

    Returns:
        IntensityResult with the ratio clamped to [0, 1]
    """
    if active_minutes is None or active_minutes <= 0:
        raise InputError(f"Active minutes must be positive, got {active_minutes}")
    if busy_minutes < 0:
        raise InputError(f"Busy minutes cannot be negative, got {busy_minutes}")

    ratio = min(1.0, max(0.0, busy_minutes / active_minutes))
    tier, band = classify(ratio, thresholds)

    return IntensityResult(
        tier=tier,
        ratio=ratio,
        busy_minutes=busy_minutes,
        total_minutes=active_minutes,
        band=band,
    )


def active_minutes_from_sleep(
    wake_time: Optional[time],
    bed_time: Optional[time],
    default: int = DEFAULT_ACTIVE_MINUTES,
) -> int:
    """Waking minutes between wake and bed time, handling bed times after midnight."""
    if wake_time is None or bed_time is None:
        return default

    total = time_to_minutes(bed_time) - time_to_minutes(wake_time)
    if total < 0:
        total += 24 * 60
    return total


def busy_minutes_within(blocks: Sequence[TimeInterval], start: datetime, end: datetime) -> float:
    """Union of busy time clipped to [start, end), so double-booked minutes count once."""
    busy = 0.0
    for interval in merge_intervals(blocks, 0):
        clip_start = max(interval.start, start)
        clip_end = min(interval.end, end)
        if clip_start < clip_end:
            busy += minutes_between(clip_start, clip_end)
    return busy


def intensity_for_day(
    blocks: Sequence[TimeInterval],
    day_start: datetime,
    day_end: datetime,
    wake_time: Optional[time] = None,
    bed_time: Optional[time] = None,
    thresholds: Optional[IntensityThresholds] = None,
    default_active_minutes: int = DEFAULT_ACTIVE_MINUTES,
) -> IntensityResult:
    """
    Intensity for one day of busy blocks.

    Busy time is only counted within waking hours when a sleep schedule is
    known; otherwise within the requested day bounds.
    """
    if wake_time and bed_time:
        count_start, count_end = resolve_active_bounds(day_start, day_end, wake_time, bed_time)
    else:
        if day_start is None or day_end is None or day_end <= day_start:
            raise InputError("Valid day bounds are required")
        count_start, count_end = day_start, day_end

    active = active_minutes_from_sleep(wake_time, bed_time, default_active_minutes)
    busy = busy_minutes_within(blocks, count_start, count_end)
    result = calculate_intensity(busy, active, thresholds)

    logger.info(
        f"Schedule: {result.tier.value} intensity ({round(result.ratio * 100)}% busy, "
        f"{round(busy)} of {active} active min)"
    )
    return result


def intensity_from_durations(
    durations_seconds: Sequence[float],
    active_minutes: float = DEFAULT_ACTIVE_MINUTES,
    thresholds: Optional[IntensityThresholds] = None,
) -> IntensityResult:
    """
    Intensity from plain event durations, as reported by a check-in history.

    Used to describe a past day (e.g. yesterday) where only durations are known.
    """
    busy = sum(d for d in durations_seconds if d > 0) / 60
    return calculate_intensity(busy, active_minutes, thresholds)
