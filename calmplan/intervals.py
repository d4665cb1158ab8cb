"""
calmplan - Interval merging and gap analysis
Turns busy blocks into merged busy intervals and the free windows between them.
"""

import logging
import math
from datetime import datetime, date, time, timedelta
from typing import Optional, List, Sequence, Tuple

from .exceptions import InputError
from .models import TimeInterval, Window, SizeClass, EnergyWindow

logger = logging.getLogger(__name__)


# ============================================
# UTILITY FUNCTIONS
# ============================================

def time_to_minutes(t: time) -> int:
    """Convert time to minutes since midnight."""
    return t.hour * 60 + t.minute


def parse_time(time_str: str) -> time:
    """Parse time string (HH:MM) to time object."""
    parts = time_str.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Expected HH:MM, got {time_str!r}")
    return time(int(parts[0]), int(parts[1]))


def format_time(dt: datetime) -> str:
    """Format a datetime as HH:MM."""
    return dt.strftime("%H:%M")


def at_time(day: date, t: time) -> datetime:
    return datetime.combine(day, t)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def ensure_valid_interval(interval: TimeInterval) -> None:
    """Raise InputError unless start < end."""
    if interval.end <= interval.start:
        label = getattr(interval, "label", "interval")
        raise InputError(
            f"Malformed {label}: end {interval.end.isoformat()} is not after start {interval.start.isoformat()}"
        )


# ============================================
# MERGING
# ============================================

def merge_intervals(blocks: Sequence[TimeInterval], buffer_minutes: float = 0) -> List[TimeInterval]:
    """
    Merge busy intervals that overlap or sit closer than `buffer_minutes`.

    A gap smaller than the buffer cannot be entered cleanly, so it is
    folded into the surrounding busy time. Labels are dropped; the result
    is sorted and pairwise separated by more than the buffer.
    """
    if buffer_minutes < 0:
        raise InputError(f"Buffer must be non-negative, got {buffer_minutes}")

    for block in blocks:
        ensure_valid_interval(block)

    buffer = timedelta(minutes=buffer_minutes)
    merged: List[TimeInterval] = []

    for block in sorted(blocks, key=lambda b: (b.start, b.end)):
        if merged and block.start <= merged[-1].end + buffer:
            last = merged[-1]
            if block.end > last.end:
                merged[-1] = TimeInterval(start=last.start, end=block.end)
        else:
            merged.append(TimeInterval(start=block.start, end=block.end))

    if len(merged) != len(blocks):
        logger.debug(f"Merged {len(blocks)} busy blocks into {len(merged)} intervals ({buffer_minutes} min buffer)")

    return merged


# ============================================
# ACTIVE HOURS
# ============================================

def resolve_active_bounds(
    day_start: datetime,
    day_end: datetime,
    wake_time: Optional[time] = None,
    bed_time: Optional[time] = None,
    default_wake_hour: int = 7,
    default_bed_hour: int = 22,
) -> Tuple[datetime, datetime]:
    """
    Clamp the requested day to the user's active hours.

    Falls back to 07:00-22:00 when no sleep schedule is known. A bed time
    at or before the wake time means the user sleeps after midnight, so
    the day end is kept.
    """
    if day_start is None or day_end is None:
        raise InputError("Day bounds are required")
    if day_end <= day_start:
        raise InputError("Day end must be after day start")

    day = day_start.date()
    wake = wake_time or time(default_wake_hour, 0)
    bed = bed_time or time(default_bed_hour, 0)

    start = max(day_start, at_time(day, wake))
    if time_to_minutes(bed) > time_to_minutes(wake):
        end = min(day_end, at_time(day, bed))
    else:
        end = day_end

    if end <= start:
        raise InputError(
            f"Active hours {wake.strftime('%H:%M')}-{bed.strftime('%H:%M')} leave no time in the requested day"
        )

    return start, end


# ============================================
# GAP ANALYSIS
# ============================================

def _in_energy_window(start: datetime, end: datetime, energy_windows: Sequence[EnergyWindow]) -> bool:
    day = start.date()
    for ew in energy_windows:
        ew_start = at_time(day, ew.start)
        ew_end = at_time(day, ew.end)
        if start < ew_end and end > ew_start:
            return True
    return False


def _make_window(start: datetime, end: datetime, energy_windows: Sequence[EnergyWindow]) -> Window:
    duration = math.floor(minutes_between(start, end))
    # Trim sub-minute remainders so duration == end - start exactly
    end = start + timedelta(minutes=duration)
    return Window(
        start=start,
        end=end,
        duration=duration,
        size_class=SizeClass.for_minutes(duration),
        in_energy_window=_in_energy_window(start, end, energy_windows),
    )


def find_windows(
    merged: Sequence[TimeInterval],
    day_start: datetime,
    day_end: datetime,
    buffer_minutes: float = 5,
    min_window_minutes: float = 5,
    energy_windows: Sequence[EnergyWindow] = (),
) -> List[Window]:
    """
    Find free windows between merged busy intervals.

    Each busy interval is padded by `buffer_minutes` on both sides before
    gaps are measured. Gaps shorter than `min_window_minutes` are ignored.

    Returns:
        Windows in chronological order, non-overlapping, all inside the day.
    """
    if day_end <= day_start:
        raise InputError("Day end must be after day start")

    buffer = timedelta(minutes=buffer_minutes)
    windows: List[Window] = []
    cursor = day_start

    for interval in sorted(merged, key=lambda i: i.start):
        gap_end = min(interval.start - buffer, day_end)
        if minutes_between(cursor, gap_end) >= min_window_minutes:
            windows.append(_make_window(cursor, gap_end, energy_windows))
        cursor = max(cursor, interval.end + buffer)

    if minutes_between(cursor, day_end) >= min_window_minutes:
        windows.append(_make_window(cursor, day_end, energy_windows))

    counts = {size: sum(1 for w in windows if w.size_class == size) for size in SizeClass}
    logger.info(
        f"Found {len(windows)} available windows: "
        + ", ".join(f"{counts[size]} {size.value}" for size in SizeClass)
    )

    return windows


# ============================================
# ADAPTIVE BUFFER
# ============================================

def adaptive_buffer(window_minutes: float) -> int:
    """Buffer kept clear at both edges of a window, scaled to its size."""
    if window_minutes >= 120:
        return 15
    if window_minutes >= 60:
        return 10
    if window_minutes >= 30:
        return 5
    return 2


def usable_range(window: Window) -> Optional[TimeInterval]:
    """The part of a window that activities may occupy, or None if the buffer eats it."""
    buffer = timedelta(minutes=adaptive_buffer(window.duration))
    start = window.start + buffer
    end = window.end - buffer
    if end <= start:
        return None
    return TimeInterval(start=start, end=end)


def total_available_minutes(windows: Sequence[Window]) -> int:
    return sum(w.duration for w in windows)
