import time

from recovery_mode.core.config import (
    DAY_IN_SECONDS,
    HOUR_IN_SECONDS,
    MINUTE_IN_SECONDS,
    MONTH_IN_SECONDS,
    WEEK_IN_SECONDS,
    YEAR_IN_SECONDS,
)


def current_time() -> int:
    """Current unix timestamp in whole seconds."""
    return int(time.time())


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def human_time_diff(start: int, end: int | None = None) -> str:
    """
    Describe the distance between two timestamps, e.g. "4 hours".

    Args:
        start: Unix timestamp the difference is measured from
        end: Unix timestamp to measure to, defaults to now
    """
    if end is None:
        end = current_time()
    diff = abs(end - start)

    if diff < HOUR_IN_SECONDS:
        return _plural(max(round(diff / MINUTE_IN_SECONDS), 1), "min", "mins")
    if diff < DAY_IN_SECONDS:
        return _plural(max(round(diff / HOUR_IN_SECONDS), 1), "hour", "hours")
    if diff < WEEK_IN_SECONDS:
        return _plural(max(round(diff / DAY_IN_SECONDS), 1), "day", "days")
    if diff < MONTH_IN_SECONDS:
        return _plural(max(round(diff / WEEK_IN_SECONDS), 1), "week", "weeks")
    if diff < YEAR_IN_SECONDS:
        return _plural(max(round(diff / MONTH_IN_SECONDS), 1), "month", "months")
    return _plural(max(round(diff / YEAR_IN_SECONDS), 1), "year", "years")
