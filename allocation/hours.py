"""
Working-hours calculator.
Counts business hours (weekdays, 09:00-17:00) in an interval, honoring per-issue manual overrides.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

WORKDAY_START_HOUR = 9
WORKDAY_END_HOUR = 17
STEP = timedelta(hours=1)


def manual_override(issue_key: str, manual_adjustments: Optional[Dict[str, float]]) -> Optional[float]:
    """Return the operator-supplied hours for an issue, or None when there is no override.
    A value of exactly 0 counts as no override.
    """
    if not manual_adjustments:
        return None
    value = manual_adjustments.get(issue_key)
    if not value:
        return None
    return float(value)


def is_working_hour(moment: datetime) -> bool:
    """True when the clock hour containing moment falls on a weekday between 09:00 and 17:00."""
    if moment.weekday() >= 5:
        return False
    return WORKDAY_START_HOUR <= moment.hour < WORKDAY_END_HOUR


def compute_hours(issue_key: str, manual_adjustments: Optional[Dict[str, float]], start: Optional[datetime], end: Optional[datetime]) -> float:
    """
    Return the working hours spent on an issue between start and end.

    A nonzero manual adjustment replaces the computed value outright. Otherwise the interval
    is walked in one-hour steps from start, each step counting 1.0 when its own clock hour is
    a working hour. Steps keep start's UTC offset. Empty or reversed intervals yield 0.0.
    """
    override = manual_override(issue_key, manual_adjustments)
    if override is not None:
        return override
    if start is None or end is None:
        return 0.0

    hours = 0.0
    current = start
    while current < end:
        if is_working_hour(current):
            hours += 1.0
        current += STEP
    return hours
