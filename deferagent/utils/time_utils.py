"""
Conversions between epoch timestamps, durations and the phrases shown to users.
"""
import datetime
from typing import Optional

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 60 * 60
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR

VERY_SOON = "very soon"

LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEADLINE_DATE_FORMAT = "%b %d, %Y at %I:%M%p"
HEADING_DATE_FORMAT = "%b %d, %Y"


def convert_seconds(seconds: int) -> str:
    """
    Formats a duration as ``DDd:HHh:MMm:SSs`` for log output. Negative values render as zero.

    :param seconds: Duration in seconds
    :type seconds: int
    :return: Formatted duration
    :rtype: str
    """
    seconds = max(int(seconds), 0)
    days, rest = divmod(seconds, SECONDS_PER_DAY)
    hours, rest = divmod(rest, SECONDS_PER_HOUR)
    minutes, secs = divmod(rest, SECONDS_PER_MINUTE)
    return f"{days:02d}d:{hours:02d}h:{minutes:02d}m:{secs:02d}s"


def _pluralize(count: int, unit: str) -> str:
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def remaining_time_phrase(remaining: int) -> str:
    """
    Renders time left before the deadline in the coarsest sensible unit.

    More than two days is counted in days, more than two hours in hours and
    more than a minute in minutes; anything shorter is "very soon".

    :param remaining: Seconds until the deadline
    :type remaining: int
    :return: e.g. "3 days", "5 hours", "1 minute" or "very soon"
    :rtype: str
    """
    if remaining > 2 * SECONDS_PER_DAY:
        return _pluralize(remaining // SECONDS_PER_DAY, "day")
    if remaining > 2 * SECONDS_PER_HOUR:
        return _pluralize(remaining // SECONDS_PER_HOUR, "hour")
    if remaining > SECONDS_PER_MINUTE:
        return _pluralize(remaining // SECONDS_PER_MINUTE, "minute")
    return VERY_SOON


def format_timestamp(epoch: Optional[int], fmt: str = LOG_DATE_FORMAT) -> str:
    """Formats an epoch timestamp in local time, or "never" when absent."""
    if epoch is None:
        return "never"
    return datetime.datetime.fromtimestamp(epoch).strftime(fmt)


def shift_out_of_workday(deadline: int, start_hour: int, end_hour: int) -> int:
    """
    Moves a deadline that lands inside the workday to the end of that workday.

    The check uses the local hour of the deadline: ``start_hour <= hour < end_hour``.
    Deadlines outside the window are returned unchanged.

    :param deadline: Deadline as epoch seconds
    :type deadline: int
    :param start_hour: First hour of the workday (0-22)
    :type start_hour: int
    :param end_hour: Hour the workday ends (1-23)
    :type end_hour: int
    :return: The possibly shifted deadline
    :rtype: int
    """
    local = datetime.datetime.fromtimestamp(deadline)
    if start_hour <= local.hour < end_hour:
        shifted = local.replace(hour=end_hour, minute=0, second=0, microsecond=0)
        return int(shifted.timestamp())
    return deadline
