# scheduler/recurrence.py
"""
Recurring-event materialization.

A stored calendar event may carry a recurrence descriptor (pattern, interval,
end condition). generate_occurrences() turns one such master event into the
concrete occurrences that overlap a half-open view window [start, end).

Events are plain mappings (CalendarEvent.to_dict() or equivalent); start/end
values may be datetimes or ISO-8601 strings. All datetimes handled here are
naive UTC.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 730
DEFAULT_SERIES_SPAN_YEARS = 5

# Fields copied from the master onto every generated occurrence
OCCURRENCE_FIELDS = (
    "title",
    "description",
    "location",
    "is_all_day",
    "google_event_id",
    "zoom_meeting_id",
    "parent_event_id",
    "is_exception",
    "exception_date",
)

# Stored identity/bookkeeping never exposed on derived occurrences
IDENTITY_FIELDS = ("event_id", "user_id", "created_at", "updated_at")

DAY_ABBR = {1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat", 7: "Sun"}
MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


class RecurrencePattern(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class UnknownRecurrencePattern(ValueError):
    """Raised for a recurrence_pattern outside RecurrencePattern."""

    def __init__(self, pattern: Any):
        self.pattern = pattern
        allowed = ", ".join(p.value for p in RecurrencePattern)
        super().__init__(f"Unknown recurrence pattern {pattern!r} (expected one of: {allowed})")


@dataclass
class RecurrenceEnd:
    type: str = "never"                 # never|count|until
    count: Optional[int] = None
    until: Optional[datetime] = None


@dataclass
class RecurrenceInfo:
    pattern: RecurrencePattern
    interval: int = 1
    days_of_week: List[int] = field(default_factory=list)
    day_of_month: Optional[int] = None
    month: Optional[int] = None
    end: RecurrenceEnd = field(default_factory=RecurrenceEnd)
    rule: Optional[str] = None
    timezone: Optional[str] = None


# ----------------------------
# Date parsing
# ----------------------------
def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime) as naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return to_utc_naive(isoparse(str(value).strip()))


def parse_pattern(value: Any) -> RecurrencePattern:
    try:
        return RecurrencePattern(str(value).strip().lower())
    except ValueError:
        raise UnknownRecurrencePattern(value) from None


# ----------------------------
# Descriptor extraction
# ----------------------------
def extract_recurrence_info(event: Mapping[str, Any]) -> Optional[RecurrenceInfo]:
    """
    Read the recurrence descriptor off an event.

    Returns None when the event is not recurring or has no pattern.
    Raises UnknownRecurrencePattern for an unrecognized pattern.
    """
    if not event.get("is_recurring") or not event.get("recurrence_pattern"):
        return None

    pattern = parse_pattern(event["recurrence_pattern"])

    count = event.get("recurrence_count")
    until = event.get("recurrence_end_date")
    if count:
        end = RecurrenceEnd(type="count", count=int(count))
    elif until:
        end = RecurrenceEnd(type="until", until=parse_datetime(until))
    else:
        end = RecurrenceEnd()

    interval = event.get("recurrence_interval") or 1
    return RecurrenceInfo(
        pattern=pattern,
        interval=int(interval) if int(interval) > 0 else 1,
        days_of_week=[int(d) for d in (event.get("recurrence_day_of_week") or [])],
        day_of_month=event.get("recurrence_day_of_month") or None,
        month=event.get("recurrence_month") or None,
        end=end,
        rule=event.get("recurrence_rule") or None,
        timezone=event.get("recurrence_timezone") or None,
    )


def _step(pattern: RecurrencePattern, n: int, interval: int) -> relativedelta:
    """Offset of the n-th occurrence from the first one."""
    if pattern is RecurrencePattern.WEEKLY:
        return relativedelta(weeks=n * interval)
    if pattern is RecurrencePattern.MONTHLY:
        return relativedelta(months=n * interval)
    if pattern is RecurrencePattern.YEARLY:
        return relativedelta(years=n * interval)
    return relativedelta(days=n * interval)


def _strip_identity(event: Mapping[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in event.items() if k not in IDENTITY_FIELDS}
    out["start_time"] = parse_datetime(event["start_time"])
    out["end_time"] = parse_datetime(event["end_time"])
    return out


# ----------------------------
# Occurrence generation
# ----------------------------
def generate_occurrences(
    event: Mapping[str, Any],
    view_start: Union[str, datetime],
    view_end: Union[str, datetime],
) -> List[Dict[str, Any]]:
    """
    Materialize the occurrences of `event` overlapping [view_start, view_end).

    Non-recurring events come back as themselves (identity fields stripped)
    iff they overlap the window. Recurring events step from the master's own
    start by `interval` periods, keep the master's duration, and stop at the
    first of: MAX_OCCURRENCES candidates, the series count, or the earlier of
    view_end and the series until-date (five years past the first start when
    the series has none). Occurrences carry series_id and is_recurring=True
    but no event_id.
    """
    view_start = parse_datetime(view_start)
    view_end = parse_datetime(view_end)
    first_start = parse_datetime(event["start_time"])
    first_end = parse_datetime(event["end_time"])

    info = extract_recurrence_info(event)
    if info is None:
        if first_start < view_end and first_end > view_start:
            return [_strip_identity(event)]
        return []

    duration = first_end - first_start

    max_occurrences = MAX_OCCURRENCES
    if info.end.type == "count" and info.end.count and info.end.count > 0:
        max_occurrences = min(info.end.count, MAX_OCCURRENCES)

    if info.end.type == "until" and info.end.until is not None:
        series_end = info.end.until
    else:
        series_end = first_start + relativedelta(years=DEFAULT_SERIES_SPAN_YEARS)
    iteration_limit = min(view_end, series_end)

    series_id = event.get("series_id") or event.get("event_id")
    logger.debug(
        "Expanding event_id=%s pattern=%s interval=%s window=[%s, %s) max=%s",
        event.get("event_id"), info.pattern.value, info.interval,
        view_start.isoformat(), view_end.isoformat(), max_occurrences,
    )

    occurrences: List[Dict[str, Any]] = []
    n = 0
    current = first_start
    # Offsets are computed from the first start so month-end clamping never drifts
    while current <= iteration_limit and n < max_occurrences:
        current_end = current + duration
        if current < view_end and current_end > view_start:
            occ = {name: event.get(name) for name in OCCURRENCE_FIELDS}
            occ.update(
                start_time=current,
                end_time=current_end,
                series_id=series_id,
                is_recurring=True,
            )
            occurrences.append(occ)
        n += 1
        current = first_start + _step(info.pattern, n, info.interval)

    return occurrences


def format_recurrence_summary(info: Optional[RecurrenceInfo]) -> str:
    """Human-readable summary, e.g. 'Repeats every 2 weeks on Mon, Wed, 3 times'."""
    if info is None:
        return "Not recurring"

    units = {
        RecurrencePattern.DAILY: "day",
        RecurrencePattern.WEEKLY: "week",
        RecurrencePattern.MONTHLY: "month",
        RecurrencePattern.YEARLY: "year",
    }
    unit = units[info.pattern]
    base = f"every {info.interval} {unit}s" if info.interval > 1 else f"every {unit}"

    if info.pattern is RecurrencePattern.WEEKLY and info.days_of_week:
        days = [DAY_ABBR[d] for d in info.days_of_week if d in DAY_ABBR]
        if days:
            base += " on " + ", ".join(days)
    elif info.pattern is RecurrencePattern.MONTHLY and info.day_of_month:
        base += f" on day {info.day_of_month}"
    elif info.pattern is RecurrencePattern.YEARLY and info.month and 1 <= info.month <= 12:
        base += f" in {MONTH_NAMES[info.month - 1]}"
        if info.day_of_month:
            base += f" on day {info.day_of_month}"

    if info.end.type == "count" and info.end.count:
        base += f", {info.end.count} time{'s' if info.end.count > 1 else ''}"
    elif info.end.type == "until" and info.end.until:
        base += f", until {info.end.until.date().isoformat()}"

    return f"Repeats {base}"


def _json_ready(occ: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in occ.items()}


def expand_series(
    events: List[Mapping[str, Any]],
    view_start: Union[str, datetime],
    view_end: Union[str, datetime],
) -> List[Dict[str, Any]]:
    """
    Replace every recurring master in `events` with its occurrences inside the
    window. Occurrences get a synthetic id "<event_id>_instance_<start>" and
    keep a pointer to their master. A master whose stored pattern is not
    recognised is passed through unexpanded. Output is sorted by start time.
    """
    out: List[Dict[str, Any]] = []
    for event in events:
        if not event.get("is_recurring"):
            out.append(dict(event))
            continue
        try:
            occurrences = generate_occurrences(event, view_start, view_end)
        except UnknownRecurrencePattern as e:
            logger.warning("Not expanding event_id=%s: %s", event.get("event_id"), e)
            out.append(dict(event))
            continue
        for occ in occurrences:
            item = _json_ready(occ)
            item["event_id"] = f"{event.get('event_id')}_instance_{item['start_time']}"
            item["master_event_id"] = event.get("event_id")
            item["user_id"] = event.get("user_id")
            out.append(item)
    out.sort(key=lambda e: e.get("start_time") or "")
    return out
