"""
Office-hours evaluation in an organization's local time.
"""

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rivvi.shared.clock import utcnow
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_FULL_DAY_END = 23 * 60 + 59


def _minutes(value: str) -> int:
    hours, _, minutes = value.partition(":")
    return int(hours) * 60 + int(minutes or 0)


def normalize_office_hours(office_hours: dict[str, Any] | None) -> dict[str, Any] | None:
    """Weekend days that are not configured are stored as null."""
    if office_hours is None:
        return None
    return {
        **office_hours,
        "saturday": office_hours.get("saturday"),
        "sunday": office_hours.get("sunday"),
    }


def is_within_office_hours(
    timezone: str | None,
    office_hours: dict[str, Any] | None,
    now: datetime | None = None,
) -> bool:
    """Whether ``now`` falls inside the configured hours for its weekday.

    No timezone or no office hours means calls may go out at any time. A day
    without configuration, or configured 00:00-00:00, is closed; 00:00-23:59
    is open all day.
    """
    if not timezone or not office_hours:
        return True

    try:
        zone = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown organization timezone, allowing calls", extra={"timezone": timezone})
        return True

    local_now = (now or utcnow()).astimezone(zone)
    day_name = DAY_NAMES[local_now.weekday()]
    day_config = office_hours.get(day_name)
    if not day_config or not day_config.get("start") or not day_config.get("end"):
        return False

    try:
        start = _minutes(day_config["start"])
        end = _minutes(day_config["end"])
    except ValueError:
        logger.warning(
            "Malformed office hours, treating day as closed",
            extra={"day": day_name, "config": day_config},
        )
        return False

    if start == 0 and end == 0:
        return False
    if start == 0 and end == _FULL_DAY_END:
        return True

    current = local_now.hour * 60 + local_now.minute
    return start <= current <= end
