"""Free/busy computation for the planning assistant.

Every requested user's occurrences are clipped to the window and merged into
a sorted, non-overlapping busy timeline. A slot is reported free only when no
requested user is busy at any point inside it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from teamcal.core.errors import InvalidRecurrenceRule, InvalidSlotSize, InvalidWindow, QueryTooLarge
from teamcal.core.time import as_utc
from teamcal.metrics import RECURRENCE_RECOVERED
from teamcal.services.events import Event
from teamcal.services.recurrence import Once, expand, parse_rule

logger = logging.getLogger(__name__)

Interval = Tuple[datetime, datetime]


@dataclass(frozen=True)
class BusyTimeline:
    intervals: List[Interval] = field(default_factory=list)

    @property
    def total(self) -> timedelta:
        return sum((end - start for start, end in self.intervals), timedelta())


@dataclass
class ScheduleResult:
    per_user: Dict[str, BusyTimeline]
    free_slots: List[datetime]
    warnings: List[str] = field(default_factory=list)


def merge_intervals(intervals: Iterable[Interval]) -> List[Interval]:
    ordered = sorted(intervals, key=lambda pair: pair[0])
    if not ordered:
        return []
    merged: List[Interval] = [ordered[0]]
    for start, end in ordered[1:]:
        prev_start, prev_end = merged[-1]
        if start <= prev_end:
            merged[-1] = (prev_start, max(prev_end, end))
        else:
            merged.append((start, end))
    return merged


def check_window(
    window_start: datetime,
    window_end: datetime,
    max_window: Optional[timedelta] = None,
) -> Tuple[datetime, datetime]:
    window_start, window_end = as_utc(window_start), as_utc(window_end)
    if window_end <= window_start:
        raise InvalidWindow("end must be after start")
    if max_window is not None and window_end - window_start > max_window:
        raise QueryTooLarge(f"window longer than {max_window}")
    return window_start, window_end


def check_query(
    user_count: int,
    window_start: datetime,
    window_end: datetime,
    slot_size: timedelta,
    *,
    max_window: Optional[timedelta] = None,
    max_users: Optional[int] = None,
) -> None:
    """Reject malformed or oversized schedule queries before any data is loaded."""
    if slot_size <= timedelta(0):
        raise InvalidSlotSize("slot size must be a positive duration")
    check_window(window_start, window_end, max_window)
    if max_users is not None and user_count > max_users:
        raise QueryTooLarge(f"more than {max_users} users requested")


def busy_timeline(
    events: Iterable[Event],
    window_start: datetime,
    window_end: datetime,
    warnings: Optional[List[str]] = None,
) -> BusyTimeline:
    clipped: List[Interval] = []
    for event in events:
        try:
            rule = parse_rule(event.recurrence)
        except InvalidRecurrenceRule as exc:
            # Keep the base occurrence so the slot still shows as busy.
            logger.warning("Event %s has an unreadable recurrence, using its first occurrence: %s", event.id, exc)
            RECURRENCE_RECOVERED.inc()
            note = f"event {event.id}: {exc.message}; treated as non-recurring"
            if warnings is not None and note not in warnings:
                warnings.append(note)
            rule = Once()
        for occ in expand(event, window_start, window_end, rule=rule):
            clipped.append(occ.clip(window_start, window_end))
    return BusyTimeline(merge_intervals(clipped))


def free_slots(
    timelines: Iterable[BusyTimeline],
    window_start: datetime,
    window_end: datetime,
    slot_size: timedelta,
) -> List[datetime]:
    busy = merge_intervals(iv for tl in timelines for iv in tl.intervals)
    slots: List[datetime] = []
    i = 0
    slot = window_start
    while slot + slot_size <= window_end:
        slot_end = slot + slot_size
        while i < len(busy) and busy[i][1] <= slot:
            i += 1
        if i == len(busy) or busy[i][0] >= slot_end:
            slots.append(slot)
        slot = slot_end
    return slots


def schedule(
    calendars: Mapping[str, Iterable[Event]],
    window_start: datetime,
    window_end: datetime,
    slot_size: timedelta,
) -> ScheduleResult:
    """Busy timelines per user and the slot starts free for all of them.

    ``calendars`` maps each requested user to the events that count against
    their time; eligibility filtering happens before this call.
    """
    check_query(len(calendars), window_start, window_end, slot_size)
    window_start, window_end = check_window(window_start, window_end)
    warnings: List[str] = []
    per_user = {
        uid: busy_timeline(events, window_start, window_end, warnings)
        for uid, events in calendars.items()
    }
    return ScheduleResult(
        per_user=per_user,
        free_slots=free_slots(per_user.values(), window_start, window_end, slot_size),
        warnings=warnings,
    )
