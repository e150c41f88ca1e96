"""
Concurrency limit policies.

A policy maps the current time to a concurrency limit. The limit is read once
per pool run and stays fixed for that run.
"""

from datetime import datetime
from typing import Callable, Optional

from shared.config import settings

ConcurrencyPolicy = Callable[[datetime], int]
Clock = Callable[[], datetime]


def default_clock() -> datetime:
    """Local wall-clock time; congestion windows are expressed in local hours."""
    return datetime.now()


def is_congested_hour(hour: int, start: int, end: int) -> bool:
    """
    Check whether `hour` falls in the [start, end) congestion window.

    The window wraps midnight when start > end (e.g. 23 -> 9).
    """
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def hourly_concurrency_policy(
    normal_limit: Optional[int] = None,
    congested_limit: Optional[int] = None,
    congested_start_hour: Optional[int] = None,
    congested_end_hour: Optional[int] = None
) -> ConcurrencyPolicy:
    """
    Build a policy that lowers the limit during congested hours.

    Defaults come from CONCURRENCY_* / CONGESTED_* settings (3 normally,
    1 between 23:00 and 09:00).
    """
    normal = normal_limit if normal_limit is not None else settings.concurrency_normal_limit
    congested = congested_limit if congested_limit is not None else settings.concurrency_congested_limit
    start = congested_start_hour if congested_start_hour is not None else settings.congested_start_hour
    end = congested_end_hour if congested_end_hour is not None else settings.congested_end_hour

    def policy(now: datetime) -> int:
        return congested if is_congested_hour(now.hour, start, end) else normal

    return policy


def fixed_concurrency_policy(limit: int) -> ConcurrencyPolicy:
    """Policy that ignores the clock."""
    if limit < 1:
        raise ValueError("Concurrency limit must be >= 1")

    def policy(now: datetime) -> int:
        return limit

    return policy
