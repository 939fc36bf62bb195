"""Next-run computation for schedule-type workflows.

Timestamps are stored as ISO-8601 strings in UTC with second precision so
that the due-workflow query can compare them as plain strings.
"""
import math
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIME = "09:00"
DEFAULT_INTERVAL_MINUTES = 60
DEFAULT_DAY_OF_WEEK = 1  # Monday, counting Sunday as 0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_timestamp(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _parse_time(value: str | None) -> tuple[int, int]:
    if value is None or value == "":
        value = DEFAULT_TIME
    if not isinstance(value, str):
        raise ValueError(f"Invalid schedule time: {value!r}")
    hours, minutes = value.split(":")[:2]
    hours, minutes = int(hours), int(minutes)
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid schedule time: {value!r}")
    return hours, minutes


def _as_number(value, kind, label: str):
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"Invalid schedule {label}: {value!r}")
    try:
        return kind(value)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Invalid schedule {label}: {value!r}") from e


def _zone(schedule_config: dict):
    name = schedule_config.get("timezone")
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


def calculate_next_run(schedule_config: dict | None, now: datetime | None = None) -> datetime:
    """Return the first run instant strictly after ``now``.

    Supported ``type`` values are ``daily`` (``time``), ``weekly``
    (``day_of_week``/``dayOfWeek`` with Sunday as 0, plus ``time``) and
    ``interval`` (``interval`` in minutes). Anything else runs hourly.
    """
    schedule_config = schedule_config or {}
    now = now or utc_now()
    schedule_type = schedule_config.get("type")

    if schedule_type == "daily":
        local_now = now.astimezone(_zone(schedule_config))
        hours, minutes = _parse_time(schedule_config.get("time"))
        candidate = local_now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
        if candidate <= local_now:
            candidate += timedelta(days=1)
        return candidate.astimezone(timezone.utc)

    if schedule_type == "weekly":
        local_now = now.astimezone(_zone(schedule_config))
        hours, minutes = _parse_time(schedule_config.get("time"))
        day_of_week = schedule_config.get(
            "day_of_week", schedule_config.get("dayOfWeek", DEFAULT_DAY_OF_WEEK)
        )
        day_of_week = _as_number(day_of_week, int, "day of week") % 7
        # Python counts Monday as 0
        today = (local_now.weekday() + 1) % 7
        candidate = local_now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
        candidate += timedelta(days=(day_of_week - today) % 7)
        if candidate <= local_now:
            candidate += timedelta(days=7)
        return candidate.astimezone(timezone.utc)

    if schedule_type == "interval":
        interval = schedule_config.get("interval")
        if interval in (None, "", 0):
            interval = DEFAULT_INTERVAL_MINUTES
        minutes = _as_number(interval, float, "interval")
        if not (0 < minutes < math.inf):
            raise ValueError("Schedule interval must be positive")
        return now + timedelta(minutes=minutes)

    return now + timedelta(minutes=DEFAULT_INTERVAL_MINUTES)


def describe_schedule(schedule_config: dict | None) -> str | None:
    """Short phrase used in prompts, e.g. ``daily at 09:00``."""
    if not schedule_config or not schedule_config.get("type"):
        return None
    phrase = str(schedule_config["type"])
    if schedule_config.get("time"):
        phrase += f" at {schedule_config['time']}"
    return phrase
