"""Cron due checks and fixed-offset timezone conversion.

Schedules store their cron expression in UTC. Users enter expressions in a
fixed UTC offset (e.g. ``UTC-5``) which is converted on save and converted
back for display. Offsets are fixed: daylight saving time is not modelled,
and day-of-month / month / day-of-week fields are never shifted, even when
the hour wraps past midnight.
"""

from datetime import datetime

from croniter import croniter

CRON_FIELDS = 5

TIMEZONES: dict[str, tuple[int, str]] = {
    "UTC-12": (-12 * 60, "Baker Island"),
    "UTC-11": (-11 * 60, "Samoa"),
    "UTC-10": (-10 * 60, "Hawaii"),
    "UTC-9": (-9 * 60, "Alaska"),
    "UTC-8": (-8 * 60, "Pacific Time"),
    "UTC-7": (-7 * 60, "Mountain Time"),
    "UTC-6": (-6 * 60, "Central Time"),
    "UTC-5": (-5 * 60, "Eastern Time"),
    "UTC-4": (-4 * 60, "Atlantic Time"),
    "UTC-3": (-3 * 60, "Argentina, Brazil"),
    "UTC-2": (-2 * 60, "Mid-Atlantic"),
    "UTC-1": (-1 * 60, "Azores"),
    "UTC+0": (0, "London, Dublin"),
    "UTC+1": (1 * 60, "Paris, Berlin, Rome"),
    "UTC+2": (2 * 60, "Athens, Cairo"),
    "UTC+3": (3 * 60, "Helsinki, Istanbul"),
    "UTC+4": (4 * 60, "Dubai, Baku"),
    "UTC+5": (5 * 60, "Karachi, Tashkent"),
    "UTC+5:30": (5 * 60 + 30, "India, Sri Lanka"),
    "UTC+6": (6 * 60, "Dhaka, Almaty"),
    "UTC+7": (7 * 60, "Bangkok, Jakarta"),
    "UTC+8": (8 * 60, "Beijing, Singapore"),
    "UTC+9": (9 * 60, "Tokyo, Seoul"),
    "UTC+10": (10 * 60, "Sydney, Melbourne"),
    "UTC+11": (11 * 60, "New Caledonia"),
    "UTC+12": (12 * 60, "Auckland, Fiji"),
    "UTC+13": (13 * 60, "Tonga"),
    "UTC+14": (14 * 60, "Line Islands"),
}


class CronValidationError(ValueError):
    """Raised for malformed cron expressions or unsupported conversions."""

    pass


def list_timezones() -> list[dict[str, str]]:
    """Timezone choices for the schedule form."""
    return [
        {"value": name, "label": f"{name} ({places})"}
        for name, (_, places) in TIMEZONES.items()
    ]


def timezone_offset_minutes(timezone: str) -> int:
    try:
        return TIMEZONES[timezone][0]
    except KeyError:
        raise CronValidationError(f"Unsupported timezone: {timezone}") from None


def _split(expression: str) -> list[str]:
    parts = expression.split()
    if len(parts) != CRON_FIELDS:
        raise CronValidationError(
            f"Cron expression must have {CRON_FIELDS} fields, got {len(parts)}: {expression!r}"
        )
    return parts


def _unwrap_hours(field: str) -> str:
    """Rewrite wrapped hour ranges like ``22-2`` as ``22-23,0-2``."""
    items = []
    for item in field.split(","):
        if "-" in item and "/" not in item:
            start, _, end = item.partition("-")
            if start.isdigit() and end.isdigit() and int(start) > int(end):
                items.append(f"{start}-23,0-{end}" if end != "0" else f"{start}-23,0")
                continue
        items.append(item)
    return ",".join(items)


def normalize_cron(expression: str) -> str:
    """Whitespace-normalized expression that croniter accepts."""
    parts = _split(expression)
    parts[1] = _unwrap_hours(parts[1])
    return " ".join(parts)


def validate_cron(expression: str) -> None:
    """Raise CronValidationError unless the expression is a valid 5-field cron."""
    normalized = normalize_cron(expression)
    if not croniter.is_valid(normalized):
        raise CronValidationError(f"Invalid cron expression: {expression!r}")


def is_due(cron_utc: str, last_executed_at: datetime | None, now: datetime) -> bool:
    """
    Whether a schedule should fire in the current minute.

    Due when the UTC minute containing ``now`` matches the expression and the
    schedule has not already executed at or after the start of that minute.
    Invalid expressions are never due.
    """
    minute = now.replace(second=0, microsecond=0)
    try:
        normalized = normalize_cron(cron_utc)
        if not croniter.match(normalized, minute):
            return False
    except ValueError:
        return False
    return last_executed_at is None or last_executed_at < minute


def next_run(cron_utc: str, after: datetime) -> datetime:
    """Next UTC fire time strictly after ``after``."""
    validate_cron(cron_utc)
    return croniter(normalize_cron(cron_utc), after).get_next(datetime)


def _shift_hour_value(value: str, hours: int) -> str:
    return str((int(value) + hours) % 24)


def _shift_hours(field: str, hours: int) -> str:
    if hours == 0 or field == "*" or "/" in field:
        return field
    items = []
    for item in field.split(","):
        if "-" in item:
            start, _, end = item.partition("-")
            if not (start.isdigit() and end.isdigit()):
                raise CronValidationError(f"Cannot shift hour range {item!r}")
            items.append(f"{_shift_hour_value(start, hours)}-{_shift_hour_value(end, hours)}")
        elif item.isdigit():
            items.append(_shift_hour_value(item, hours))
        else:
            raise CronValidationError(f"Cannot shift hour value {item!r}")
    return ",".join(items)


def _shift(expression: str, offset_minutes: int) -> str:
    parts = _split(expression)
    hours, minutes = divmod(offset_minutes, 60)

    if minutes:
        if not parts[0].isdigit():
            raise CronValidationError(
                "Half-hour timezones need a single minute value, "
                f"got {parts[0]!r}"
            )
        carry, minute = divmod(int(parts[0]) + minutes, 60)
        parts[0] = str(minute)
        hours += carry

    parts[1] = _shift_hours(parts[1], hours)
    return " ".join(parts)


def convert_cron_to_utc(expression: str, timezone: str) -> str:
    """Convert an expression written in ``timezone`` to UTC."""
    return _shift(expression, -timezone_offset_minutes(timezone))


def convert_cron_from_utc(expression: str, timezone: str) -> str:
    """Convert a UTC expression to ``timezone`` for display."""
    return _shift(expression, timezone_offset_minutes(timezone))


def describe_next_runs(cron_utc: str, after: datetime, count: int = 3) -> list[datetime]:
    """Upcoming fire times, used when previewing a schedule."""
    validate_cron(cron_utc)
    it = croniter(normalize_cron(cron_utc), after)
    return [it.get_next(datetime) for _ in range(count)]
