# File: utils/dt_utils.py
"""Date and time helpers for Family Stars.

Kept free of ``homeassistant`` imports so the engines that use them can be
tested as plain functions. The integration sets the family's timezone once at
setup; "today" for recurring tasks and due-date defaults is computed in it.
Remote timestamps (PostgREST ``timestamptz`` strings) are parsed with dateutil.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from dateutil.parser import isoparse

if TYPE_CHECKING:
    from datetime import tzinfo

DEFAULT_TIME_ZONE: tzinfo = ZoneInfo("UTC")


def set_default_timezone(tz: tzinfo) -> None:
    """Use ``tz`` as the family's local timezone from now on."""
    global DEFAULT_TIME_ZONE  # noqa: PLW0603
    DEFAULT_TIME_ZONE = tz


def get_default_timezone() -> tzinfo:
    """Return the family's local timezone."""
    return DEFAULT_TIME_ZONE


def dt_now_utc() -> datetime:
    """Return the current datetime in UTC (timezone-aware)."""
    return datetime.now(UTC)


def dt_now_iso() -> str:
    """Return the current UTC datetime as an ISO 8601 string.

    Example:
        "2025-04-07T19:30:00+00:00"
    """
    return dt_now_utc().isoformat()


def as_utc(dt_obj: datetime) -> datetime:
    """Convert a datetime to UTC. Naive values are taken as default-timezone local."""
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=DEFAULT_TIME_ZONE)
    return dt_obj.astimezone(UTC)


def as_local(dt_obj: datetime, tz: tzinfo | None = None) -> datetime:
    """Convert a datetime to local timezone. Naive values are taken as UTC."""
    tz_info = tz or DEFAULT_TIME_ZONE
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=UTC)
    return dt_obj.astimezone(tz_info)


def start_of_local_day(dt_obj: datetime, tz: tzinfo | None = None) -> datetime:
    """Return local midnight of the day ``dt_obj`` falls on."""
    tz_info = tz or DEFAULT_TIME_ZONE
    local_dt = as_local(dt_obj, tz_info)
    return local_dt.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_local_day(dt_obj: datetime, tz: tzinfo | None = None) -> datetime:
    """Get the last representable instant (23:59:59.999999) of the local day.

    DST-safe: built from the local calendar date rather than by adding 24h to
    the start of day, so 23h and 25h days both end at local 23:59:59.999999.

    Args:
        dt_obj: Datetime object (can be in any timezone)
        tz: Optional timezone override. Uses DEFAULT_TIME_ZONE if not provided.

    Returns:
        Datetime at 23:59:59.999999 in local timezone (timezone-aware)
    """
    tz_info = tz or DEFAULT_TIME_ZONE
    local_dt = as_local(dt_obj, tz_info)
    return local_dt.replace(hour=23, minute=59, second=59, microsecond=999999)


def local_date_of(dt_obj: datetime, tz: tzinfo | None = None) -> date:
    """Return the calendar date of an instant as seen in local time."""
    return as_local(dt_obj, tz).date()


# ==============================================================================
# Parsing / Formatting
# ==============================================================================


def dt_parse(dt_input: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 value into a timezone-aware datetime.

    Accepts the shapes PostgREST emits for timestamptz columns
    ("2025-04-07T19:30:00.123456+00:00", "2025-04-07 19:30:00+00") as well as
    datetime objects. Naive values are interpreted in DEFAULT_TIME_ZONE.

    Returns:
        Aware datetime, or None if the input is empty or unparseable.
    """
    if not dt_input:
        return None

    if isinstance(dt_input, datetime):
        result = dt_input
    elif isinstance(dt_input, str):
        try:
            result = isoparse(dt_input.replace(" ", "T", 1))
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if result.tzinfo is None:
        result = result.replace(tzinfo=DEFAULT_TIME_ZONE)
    return result


def dt_to_utc(dt_input: str | datetime | None) -> datetime | None:
    """Parse a datetime value and convert it to UTC.

    Example:
        "2025-04-07T14:30:00-05:00" -> datetime(2025, 4, 7, 19, 30, tzinfo=UTC)
    """
    result = dt_parse(dt_input)
    if result is None:
        return None
    return result.astimezone(UTC)


def dt_to_iso(dt_obj: datetime | None) -> str | None:
    """Serialize an aware datetime as a UTC ISO 8601 string."""
    if dt_obj is None:
        return None
    return as_utc(dt_obj).isoformat()
