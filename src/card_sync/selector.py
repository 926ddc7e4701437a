"""
Deterministic rotation over the active and inactive card pools.

Selection is a pure function of the pools, the day index and the quotas:
no cursor is persisted, so re-running a day picks the same cards and every
card in a pool comes up at least once every ceil(pool_size / quota) days.
"""

import math
from datetime import date
from typing import List, Optional

from .models import CoveragePool, SelectionBatch


def compute_day_index(today: Optional[date] = None, offset: int = 0) -> int:
    """
    Derive the rotation cursor from a calendar date.

    Uses the proleptic Gregorian ordinal so consecutive days always map to
    consecutive indices, including across a year boundary.

    Args:
        today: Date to derive from (default: today)
        offset: Shift applied for testing or replay

    Returns:
        Day index
    """
    if today is None:
        today = date.today()
    return today.toordinal() + int(offset)


def rotation_window(pool: List[str], day_index: int, quota: int) -> List[str]:
    """
    Return today's window of a sorted pool.

    The pool is cut into ceil(len / quota) windows of `quota` ids; the last
    window wraps around to the start of the pool so every window is full.
    A quota larger than the pool takes the whole pool.
    """
    size = len(pool)
    per_day = min(quota, size)
    if per_day <= 0:
        return []

    window_count = math.ceil(size / per_day)
    start = (day_index % window_count) * per_day
    return [pool[(start + i) % size] for i in range(per_day)]


def select(
    pool_active: List[str],
    pool_inactive: List[str],
    day_index: int,
    active_quota: int,
    total_quota: int,
) -> List[str]:
    """
    Choose today's record ids from both pools.

    Args:
        pool_active: Sorted ids of cards accepting applications
        pool_inactive: Sorted ids of the remaining cards
        day_index: Rotation cursor
        active_quota: Slots reserved for the active pool
        total_quota: Total slots for the run

    Returns:
        Active window followed by the inactive window, at most total_quota ids
    """
    if total_quota <= 0:
        return []

    selected = rotation_window(pool_active, day_index, min(active_quota, total_quota))

    # Slots the active pool did not use go to the inactive pool
    remaining = total_quota - len(selected)
    selected.extend(rotation_window(pool_inactive, day_index, remaining))

    return selected[:total_quota]


def build_selection(
    pool: CoveragePool,
    day_index: int,
    active_quota: int,
    total_quota: int,
) -> SelectionBatch:
    """Run select() over a CoveragePool and wrap the result."""
    chosen = select(pool.active, pool.inactive, day_index, active_quota, total_quota)
    return SelectionBatch(day_index=day_index, chosen_ids=chosen)
