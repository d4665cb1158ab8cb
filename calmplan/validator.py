"""
calmplan - Placement Validator
Last line of defence between candidates and the calendar. Every rule is
checked here regardless of which stage (service or fallback) produced
the candidate.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Sequence, NamedTuple, Tuple

from .intervals import adaptive_buffer, usable_range, minutes_between
from .models import (
    ActivityCandidate, BusyBlock, LoadBand, TimeInterval, ValidatedActivity, Window,
)

logger = logging.getLogger(__name__)

DEFAULT_CAPS: Dict[str, int] = {
    LoadBand.OVERLOADED.value: 5,
    LoadBand.BUSY.value: 7,
    LoadBand.MODERATE.value: 10,
    LoadBand.OPEN.value: 15,
}


class ValidationOutcome(NamedTuple):
    accepted: List[ValidatedActivity]
    rejected_count: int


# ============================================
# INDIVIDUAL RULES
# ============================================

def _gap_minutes(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> float:
    """Clear minutes between two disjoint intervals (negative if they overlap)."""
    if a_start >= b_end:
        return minutes_between(b_end, a_start)
    return minutes_between(a_end, b_start)


def check_sanity(candidate: ActivityCandidate) -> Optional[str]:
    if not candidate.title or not candidate.title.strip():
        return "missing title"
    if candidate.end_time <= candidate.start_time:
        return "end is not after start"

    minutes = minutes_between(candidate.start_time, candidate.end_time)
    category = candidate.category
    if not category.min_minutes <= minutes <= category.max_minutes:
        return (
            f"{round(minutes)} min is outside the {category.value} range "
            f"{category.min_minutes}-{category.max_minutes} min"
        )
    return None


def find_host_window(candidate: ActivityCandidate, windows: Sequence[Window]) -> Optional[Window]:
    """The window whose usable range fully contains the candidate."""
    for window in windows:
        usable = usable_range(window)
        if usable is None:
            continue
        if usable.start <= candidate.start_time and candidate.end_time <= usable.end:
            return window
    return None


def check_busy_spacing(
    candidate: ActivityCandidate,
    busy_blocks: Sequence[TimeInterval],
    buffer_minutes: float,
) -> Optional[str]:
    """Reject overlap with any busy block, or a gap to one that is below the buffer."""
    interval = candidate.interval
    for block in busy_blocks:
        label = getattr(block, "label", "busy block")
        if interval.overlaps(block):
            return f"overlaps {label}"
        gap = _gap_minutes(interval.start, interval.end, block.start, block.end)
        if gap < buffer_minutes:
            return f"only {round(gap)} min from {label}, needs {buffer_minutes}"
    return None


def check_activity_spacing(
    candidate: ActivityCandidate,
    buffer_minutes: float,
    accepted: Sequence[ValidatedActivity],
) -> Optional[str]:
    """Spacing between two activities is the larger of their two buffers."""
    interval = candidate.interval
    for other in accepted:
        if interval.overlaps(other.interval):
            return f"overlaps {other.title!r}"
        needed = max(buffer_minutes, other.buffer_minutes)
        gap = _gap_minutes(interval.start, interval.end, other.start_time, other.end_time)
        if gap < needed:
            return f"only {round(gap)} min from {other.title!r}, needs {needed}"
    return None


# ============================================
# VALIDATION PASS
# ============================================

def cap_for(band: LoadBand, caps: Optional[Dict[str, int]] = None) -> int:
    return (caps or DEFAULT_CAPS)[band.value]


def validate_placements(
    candidates: Sequence[ActivityCandidate],
    busy_blocks: Sequence[BusyBlock],
    windows: Sequence[Window],
    band: LoadBand,
    caps: Optional[Dict[str, int]] = None,
) -> ValidationOutcome:
    """
    Filter candidates down to a safe, non-overlapping set.

    Rules, in order: sane fields and duration, fits a usable window,
    clear of every original busy block by the window's buffer, clear of
    every already-accepted activity. Acceptance stops at the band's cap.
    Never raises; each rejection is logged and counted.

    Returns:
        ValidationOutcome with accepted activities in chronological order
    """
    cap = cap_for(band, caps)
    accepted: List[ValidatedActivity] = []
    rejected = 0

    for candidate in candidates:
        reason, buffer = _evaluate(candidate, busy_blocks, windows, accepted)

        if reason is None and len(accepted) >= cap:
            reason = f"{band.value} day cap of {cap} reached"

        if reason is not None:
            rejected += 1
            logger.warning(f"Rejected {candidate.category.value} {candidate.title!r}: {reason}")
            continue

        accepted.append(ValidatedActivity(**candidate.model_dump(), buffer_minutes=buffer))

    accepted.sort(key=lambda a: a.start_time)
    logger.info(f"Validation: {len(accepted)} accepted, {rejected} rejected (cap {cap})")
    return ValidationOutcome(accepted, rejected)


def _evaluate(
    candidate: ActivityCandidate,
    busy_blocks: Sequence[BusyBlock],
    windows: Sequence[Window],
    accepted: Sequence[ValidatedActivity],
) -> Tuple[Optional[str], int]:
    reason = check_sanity(candidate)
    if reason:
        return reason, 0

    window = find_host_window(candidate, windows)
    if window is None:
        return "does not fit inside any available window", 0
    buffer = adaptive_buffer(window.duration)

    reason = check_busy_spacing(candidate, busy_blocks, buffer)
    if reason:
        return reason, buffer

    return check_activity_spacing(candidate, buffer, accepted), buffer
