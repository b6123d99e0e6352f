"""Natural-language time resolution.

Every function takes an explicit reference instant and IANA zone name; nothing
here reads the wall clock. Clock times ("2pm", "14:30") are read as local time
in the user's zone on the local calendar day and only then converted to UTC.
"""

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

MORNING_HOUR = 7
AFTERNOON_HOUR = 15
EVENING_HOUR = 18
TONIGHT_HOUR = 20
LAST_NIGHT_HOUR = 22
EARLIER_OFFSET = timedelta(hours=2)

# Epoch values below this are taken as seconds, above it as milliseconds.
EPOCH_MS_THRESHOLD = 100_000_000_000
# Digit-only strings under this many seconds (2001-09-09) are not read as epochs.
EPOCH_MIN_SECONDS = 1_000_000_000

NUMBER_WORDS = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "fifteen": 15,
    "twenty": 20,
    "thirty": 30,
    "forty five": 45,
    "a couple of": 2,
    "a couple": 2,
    "a few": 3,
}

UNIT_SECONDS = {
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
}

_NUMBER_PATTERN = "|".join(sorted((re.escape(word) for word in NUMBER_WORDS), key=len, reverse=True))

AGO_RE = re.compile(
    rf"^(?P<count>\d+(?:\.\d+)?|{_NUMBER_PATTERN})\s*"
    r"(?P<unit>m|mins?|minutes?|h|hrs?|hours?|days?|weeks?)\s+ago$"
)
HALF_HOUR_RE = re.compile(r"^(?:a\s+)?half\s+(?:an\s+)?hour\s+ago$")
TWELVE_HOUR_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*(am|pm)$")
TWENTY_FOUR_HOUR_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
DAY_WITH_TIME_RE = re.compile(r"^(?P<day>yesterday|today)(?:\s+at)?\s+(?P<clock>.+)$")
DAY_PART_RE = re.compile(r"^(?P<which>this|yesterday)\s+(?P<part>morning|afternoon|evening)$")

DAY_PART_HOURS = {
    "morning": MORNING_HOUR,
    "afternoon": AFTERNOON_HOUR,
    "evening": EVENING_HOUR,
}


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
    return ZoneInfo("UTC")


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("naive datetime has no instant")
    return value.astimezone(timezone.utc)


def local_date(instant: datetime, tz_name: Optional[str]) -> date:
    return to_utc(instant).astimezone(get_zone(tz_name)).date()


def at_local_time(day: date, clock: time, tz_name: Optional[str]) -> datetime:
    """The UTC instant of ``clock`` on local calendar ``day`` in ``tz_name``."""
    local = datetime.combine(day, clock, tzinfo=get_zone(tz_name))
    return local.astimezone(timezone.utc)


def day_bounds(day: date, tz_name: Optional[str]) -> Tuple[datetime, datetime]:
    """Half-open UTC window [start, end) covering local calendar ``day``."""
    return at_local_time(day, time(0, 0), tz_name), at_local_time(day + timedelta(days=1), time(0, 0), tz_name)


def week_start(instant: datetime, tz_name: Optional[str]) -> datetime:
    """UTC instant of the most recent local Monday 00:00 at or before ``instant``."""
    today = local_date(instant, tz_name)
    monday = today - timedelta(days=today.weekday())
    return at_local_time(monday, time(0, 0), tz_name)


def _normalize(text: str) -> str:
    normalized = text.strip().lower()
    normalized = normalized.replace("a.m.", "am").replace("p.m.", "pm")
    normalized = re.sub(r"[-_]", " ", normalized)
    normalized = re.sub(r"\s+", " ", normalized)
    normalized = normalized.rstrip(".!?,")
    normalized = re.sub(r"^(?:around|about|at|approximately|approx)\s+", "", normalized)
    return normalized


def parse_clock(text: str) -> Optional[time]:
    """Parse a bare time of day: "2pm", "1:30 pm", "13:00", "noon", "midnight"."""
    normalized = _normalize(text)
    if normalized == "noon":
        return time(12, 0)
    if normalized == "midnight":
        return time(0, 0)

    twelve = TWELVE_HOUR_RE.match(normalized)
    if twelve:
        hours = int(twelve.group(1))
        minutes = int(twelve.group(2)) if twelve.group(2) else 0
        if hours < 1 or hours > 12 or minutes > 59:
            return None
        if twelve.group(3) == "pm" and hours != 12:
            hours += 12
        elif twelve.group(3) == "am" and hours == 12:
            hours = 0
        return time(hours, minutes)

    twenty_four = TWENTY_FOUR_HOUR_RE.match(normalized)
    if twenty_four:
        hours = int(twenty_four.group(1))
        minutes = int(twenty_four.group(2))
        if hours > 23 or minutes > 59:
            return None
        return time(hours, minutes)

    return None


def _count_value(raw: str) -> Optional[float]:
    if raw in NUMBER_WORDS:
        return float(NUMBER_WORDS[raw])
    try:
        return float(raw)
    except ValueError:
        return None


def _unit_seconds(raw: str) -> int:
    if raw.startswith("m"):
        return UNIT_SECONDS["minute"]
    if raw.startswith("h"):
        return UNIT_SECONDS["hour"]
    if raw.startswith("d"):
        return UNIT_SECONDS["day"]
    return UNIT_SECONDS["week"]


def _resolve_relative(normalized: str, reference: datetime, tz_name: Optional[str]) -> Optional[datetime]:
    today = local_date(reference, tz_name)
    yesterday = today - timedelta(days=1)

    if normalized in {"now", "just now", "right now", "today"}:
        return reference
    if normalized in {"earlier", "earlier today"}:
        return reference - EARLIER_OFFSET
    if normalized == "yesterday":
        return reference - timedelta(days=1)
    if normalized == "last week":
        return reference - timedelta(weeks=1)
    if normalized == "last night":
        return at_local_time(yesterday, time(LAST_NIGHT_HOUR, 0), tz_name)
    if normalized == "tonight":
        return at_local_time(today, time(TONIGHT_HOUR, 0), tz_name)

    day_part = DAY_PART_RE.match(normalized)
    if day_part:
        day = today if day_part.group("which") == "this" else yesterday
        return at_local_time(day, time(DAY_PART_HOURS[day_part.group("part")], 0), tz_name)

    if HALF_HOUR_RE.match(normalized):
        return reference - timedelta(minutes=30)

    ago = AGO_RE.match(normalized)
    if ago:
        count = _count_value(ago.group("count"))
        if count is None:
            return None
        try:
            return reference - timedelta(seconds=count * _unit_seconds(ago.group("unit")))
        except OverflowError:
            return None

    with_time = DAY_WITH_TIME_RE.match(normalized)
    if with_time:
        clock = parse_clock(with_time.group("clock"))
        if clock is None:
            return None
        day = yesterday if with_time.group("day") == "yesterday" else today
        return at_local_time(day, clock, tz_name)

    return None


def resolve(text: str, reference: datetime, tz_name: Optional[str]) -> Optional[datetime]:
    """Resolve a relative phrase or clock time to a UTC instant.

    Returns ``None`` when the phrase is not recognised. The reference instant
    must be timezone-aware.
    """
    if not isinstance(text, str) or not text.strip():
        return None
    reference = to_utc(reference)
    normalized = _normalize(text)

    relative = _resolve_relative(normalized, reference, tz_name)
    if relative is not None:
        return to_utc(relative)

    clock = parse_clock(normalized)
    if clock is not None:
        return at_local_time(local_date(reference, tz_name), clock, tz_name)

    return None


def parse_generic(value: Any, reference: datetime, tz_name: Optional[str]) -> Optional[datetime]:
    """Fallback for epoch numbers and date strings the phrase resolver does not know."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if not isinstance(value, str) or not value.strip():
        return None

    candidate = value.strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", candidate):
        number = float(candidate)
        if number < EPOCH_MIN_SECONDS:
            return None
        return _from_epoch(number)

    zone = get_zone(tz_name)
    local_midnight = datetime.combine(local_date(reference, tz_name), time(0, 0))
    try:
        parsed = date_parser.isoparse(candidate)
    except (ValueError, OverflowError):
        try:
            parsed = date_parser.parse(candidate, default=local_midnight)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return to_utc(parsed)


def _from_epoch(value: float) -> Optional[datetime]:
    seconds = value / 1000 if value >= EPOCH_MS_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def resolve_time_field(field: str, value: Any, reference: datetime, tz_name: Optional[str]) -> Optional[datetime]:
    """Phrase resolver, then generic parsing, then absent.

    An unresolvable value is dropped rather than failing the caller; the drop
    is logged under ``temporal.dropped_field`` so it can be reviewed.
    """
    if value is None:
        return None
    if isinstance(value, str):
        resolved = resolve(value, reference, tz_name)
        if resolved is not None:
            return resolved
    generic = parse_generic(value, reference, tz_name)
    if generic is not None:
        return generic
    logger.warning("temporal.dropped_field field=%s value=%r tz=%s", field, value, tz_name)
    return None
