"""Recurrence rules and occurrence expansion.

Rules travel as RFC 5545 ``RRULE`` strings on the wire and in the store, and
are parsed here into a small tagged variant (``Once`` or ``Repeat``) before
any expansion happens. Expansion is driven by ``dateutil.rrule`` and is
always bounded by the query window, so unbounded rules never materialize an
infinite sequence.
"""
from __future__ import annotations

import json
import re
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING, Iterator, Optional, Tuple, Union

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule, weekday

from teamcal.core.errors import InvalidRecurrenceRule, InvalidWindow
from teamcal.core.time import as_utc, overlap

if TYPE_CHECKING:
    from teamcal.services.events import Event

WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

FREQUENCIES = {
    "DAILY": DAILY,
    "WEEKLY": WEEKLY,
    "MONTHLY": MONTHLY,
    "YEARLY": YEARLY,
}

_BYDAY_RE = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
_KNOWN_KEYS = {"FREQ", "INTERVAL", "COUNT", "UNTIL", "BYDAY", "BYMONTHDAY", "WKST"}


@dataclass(frozen=True)
class Once:
    """A non-recurring event."""

    def to_string(self) -> str:
        return ""


@dataclass(frozen=True)
class ByDay:
    weekday: int  # 0 = Monday
    ordinal: Optional[int] = None  # 1MO = first Monday, -1FR = last Friday

    def to_string(self) -> str:
        prefix = str(self.ordinal) if self.ordinal else ""
        return prefix + WEEKDAY_CODES[self.weekday]


@dataclass(frozen=True)
class Repeat:
    freq: str  # one of FREQUENCIES
    interval: int = 1
    count: Optional[int] = None
    until: Optional[datetime] = None
    by_day: Tuple[ByDay, ...] = ()
    by_month_day: Tuple[int, ...] = ()
    week_start: int = 0

    @property
    def bounded(self) -> bool:
        return self.count is not None or self.until is not None

    def to_string(self) -> str:
        parts = [f"FREQ={self.freq}", f"INTERVAL={self.interval}"]
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            parts.append("UNTIL=" + as_utc(self.until).strftime("%Y%m%dT%H%M%SZ"))
        if self.by_day:
            parts.append("BYDAY=" + ",".join(d.to_string() for d in self.by_day))
        if self.by_month_day:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.by_month_day))
        if self.week_start:
            parts.append("WKST=" + WEEKDAY_CODES[self.week_start])
        return "RRULE:" + ";".join(parts)

    def to_rrule(self, dtstart: datetime) -> rrule:
        kwargs = {"dtstart": dtstart, "interval": self.interval, "wkst": self.week_start}
        if self.count is not None:
            kwargs["count"] = self.count
        if self.until is not None:
            kwargs["until"] = self.until
        if self.by_day:
            kwargs["byweekday"] = [weekday(d.weekday, d.ordinal) for d in self.by_day]
        if self.by_month_day:
            kwargs["bymonthday"] = self.by_month_day
        return rrule(FREQUENCIES[self.freq], **kwargs)


Rule = Union[Once, Repeat]


@dataclass(frozen=True)
class Occurrence:
    event_id: str
    start: datetime
    end: datetime

    def clip(self, window_start: datetime, window_end: datetime) -> Tuple[datetime, datetime]:
        return max(self.start, window_start), min(self.end, window_end)


def legacy_weekdays_rule(days: list) -> Rule:
    """Rule for the old storage format: a JSON list of weekday indexes, Monday = 0."""
    picked = []
    for day in days:
        if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
            raise InvalidRecurrenceRule(f"Invalid weekday index: {day!r}")
        if day not in picked:
            picked.append(day)
    if not picked:
        return Once()
    return Repeat(freq="WEEKLY", interval=1, by_day=tuple(ByDay(d) for d in picked))


def _parse_until(value: str) -> datetime:
    for fmt in ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        day = datetime.strptime(value, "%Y%m%d").date()
    except ValueError as exc:
        raise InvalidRecurrenceRule(f"Invalid UNTIL: {value}") from exc
    # A date-only bound includes the whole day.
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)


def _positive_int(key: str, value: str) -> int:
    try:
        n = int(value)
    except ValueError as exc:
        raise InvalidRecurrenceRule(f"{key} must be an integer") from exc
    if n < 1:
        raise InvalidRecurrenceRule(f"{key} must be positive")
    return n


def _parse_by_day(value: str, freq: str) -> Tuple[ByDay, ...]:
    days = []
    for raw in value.split(","):
        m = _BYDAY_RE.match(raw.strip())
        if not m:
            raise InvalidRecurrenceRule(f"Invalid BYDAY entry: {raw}")
        ordinal = int(m.group(1)) if m.group(1) else None
        if ordinal is not None:
            if freq not in ("MONTHLY", "YEARLY"):
                raise InvalidRecurrenceRule("BYDAY ordinals need FREQ=MONTHLY or FREQ=YEARLY")
            if ordinal == 0 or abs(ordinal) > (5 if freq == "MONTHLY" else 53):
                raise InvalidRecurrenceRule(f"Invalid BYDAY ordinal: {raw}")
        day = ByDay(WEEKDAY_CODES.index(m.group(2)), ordinal)
        if day not in days:
            days.append(day)
    return tuple(days)


def _parse_by_month_day(value: str) -> Tuple[int, ...]:
    out = []
    for raw in value.split(","):
        try:
            n = int(raw)
        except ValueError as exc:
            raise InvalidRecurrenceRule(f"Invalid BYMONTHDAY entry: {raw}") from exc
        if n == 0 or abs(n) > 31:
            raise InvalidRecurrenceRule(f"Invalid BYMONTHDAY entry: {raw}")
        if n not in out:
            out.append(n)
    return tuple(out)


# One period of every length the frequency can produce.
_PERIODS = {
    "MONTHLY": [(date(2023, 2, 1), 28), (date(2024, 2, 1), 29), (date(2024, 4, 1), 30), (date(2024, 1, 1), 31)],
    "YEARLY": [(date(2023, 1, 1), 365), (date(2024, 1, 1), 366)],
}


def _can_match(rule: Repeat) -> bool:
    """Whether BYDAY ordinals leave any day that BYMONTHDAY also accepts.

    An ordinal weekday pins a day to one week of its month or year, so a month
    day outside every such week is never selected and expansion would run to
    the end of the calendar looking for it.
    """
    if not rule.by_month_day or not rule.by_day or any(d.ordinal is None for d in rule.by_day):
        return True
    ordinals = {d.ordinal for d in rule.by_day}
    wanted = set(rule.by_month_day)
    for first, length in _PERIODS.get(rule.freq, []):
        for i in range(length):
            day = first + timedelta(days=i)
            if i // 7 + 1 not in ordinals and -((length - 1 - i) // 7 + 1) not in ordinals:
                continue
            month_length = monthrange(day.year, day.month)[1]
            if day.day in wanted or day.day - month_length - 1 in wanted:
                return True
    return False


def _rule_line(text: str) -> str:
    lines = [ln.strip() for ln in text.replace("\\n", "\n").splitlines() if ln.strip()]
    rules = []
    for line in lines:
        name, sep, value = line.partition(":")
        if not sep:
            rules.append(line)
            continue
        name = name.split(";")[0].upper()
        if name == "RRULE":
            rules.append(value)
        elif name == "DTSTART":
            # The event's own start is authoritative.
            continue
        else:
            raise InvalidRecurrenceRule(f"Unsupported recurrence property: {name}")
    if len(rules) != 1:
        raise InvalidRecurrenceRule("Exactly one RRULE is required")
    return rules[0]


def parse_rule(text: Optional[str]) -> Rule:
    """Parse a stored or submitted recurrence string.

    Accepts an empty value (no recurrence), an RRULE value with or without the
    ``RRULE:`` prefix and an optional DTSTART line, or the legacy JSON weekday
    list. Raises ``InvalidRecurrenceRule`` for anything else.
    """
    if text is None or not text.strip() or text.strip() == "null":
        return Once()
    text = text.strip()
    if text.startswith("["):
        try:
            days = json.loads(text)
        except ValueError as exc:
            raise InvalidRecurrenceRule("Invalid legacy recurrence list") from exc
        if not isinstance(days, list):
            raise InvalidRecurrenceRule("Invalid legacy recurrence list")
        return legacy_weekdays_rule(days)

    fields = {}
    for part in _rule_line(text).split(";"):
        if not part.strip():
            continue
        key, sep, value = part.partition("=")
        key = key.strip().upper()
        value = value.strip().upper()
        if not sep or not value:
            raise InvalidRecurrenceRule(f"Malformed rule part: {part}")
        if key not in _KNOWN_KEYS:
            raise InvalidRecurrenceRule(f"Unsupported rule part: {key}")
        if key in fields:
            raise InvalidRecurrenceRule(f"Duplicate rule part: {key}")
        fields[key] = value

    freq = fields.get("FREQ")
    if freq not in FREQUENCIES:
        raise InvalidRecurrenceRule(f"Unsupported FREQ: {freq}")
    if "COUNT" in fields and "UNTIL" in fields:
        raise InvalidRecurrenceRule("COUNT and UNTIL are mutually exclusive")

    week_start = 0
    if "WKST" in fields:
        if fields["WKST"] not in WEEKDAY_CODES:
            raise InvalidRecurrenceRule(f"Invalid WKST: {fields['WKST']}")
        week_start = WEEKDAY_CODES.index(fields["WKST"])

    rule = Repeat(
        freq=freq,
        interval=_positive_int("INTERVAL", fields["INTERVAL"]) if "INTERVAL" in fields else 1,
        count=_positive_int("COUNT", fields["COUNT"]) if "COUNT" in fields else None,
        until=_parse_until(fields["UNTIL"]) if "UNTIL" in fields else None,
        by_day=_parse_by_day(fields["BYDAY"], freq) if "BYDAY" in fields else (),
        by_month_day=_parse_by_month_day(fields["BYMONTHDAY"]) if "BYMONTHDAY" in fields else (),
        week_start=week_start,
    )
    if not _can_match(rule):
        raise InvalidRecurrenceRule("BYDAY and BYMONTHDAY never select the same day")
    return rule


def format_rule(rule: Rule) -> str:
    return rule.to_string()


def normalize_rule(text: Optional[str]) -> str:
    """Canonical stored form of a submitted rule string."""
    return format_rule(parse_rule(text))


class Occurrences:
    """Occurrences of one event inside a window.

    Iterating twice walks the rule twice and yields the same sequence.
    """

    def __init__(self, event: "Event", rule: Rule, window_start: datetime, window_end: datetime) -> None:
        self.event = event
        self.rule = rule
        self.window_start = window_start
        self.window_end = window_end

    def __iter__(self) -> Iterator[Occurrence]:
        start, end = as_utc(self.event.start), as_utc(self.event.end)
        if isinstance(self.rule, Once):
            if overlap(start, end, self.window_start, self.window_end):
                yield Occurrence(self.event.id, start, end)
            return

        duration = end - start
        last: Optional[datetime] = None
        # Anything starting after window_start - duration still ends inside the window.
        for occ_start in self.rule.to_rrule(start).xafter(self.window_start - duration, inc=False):
            if occ_start >= self.window_end:
                break
            if occ_start == last:
                continue
            last = occ_start
            yield Occurrence(self.event.id, occ_start, occ_start + duration)


def expand(
    event: "Event",
    window_start: datetime,
    window_end: datetime,
    rule: Optional[Rule] = None,
) -> Occurrences:
    """Occurrences of ``event`` that intersect ``[window_start, window_end)``.

    Each occurrence keeps the event's duration and its nominal start/end.
    Raises ``InvalidWindow`` for an empty or inverted window and
    ``InvalidRecurrenceRule`` when the event's rule does not parse.
    """
    window_start, window_end = as_utc(window_start), as_utc(window_end)
    if window_end <= window_start:
        raise InvalidWindow("window end must be after window start")
    if rule is None:
        rule = parse_rule(event.recurrence)
    return Occurrences(event, rule, window_start, window_end)

