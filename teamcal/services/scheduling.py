"""Event CRUD and planning-assistant operations behind the HTTP routers.

Mutations of an event are allowed to its owner, system admins and admins of
the event's team. Reads are governed by visibility instead: private events
are visible to the owner and attendees, channel events also to members of
the channel.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional

from teamcal.core.errors import (
    CalendarError,
    InvalidEvent,
    InvalidRecurrenceRule,
    InvalidVisibility,
    NotFound,
    PermissionDenied,
)
from teamcal.core.settings import S
from teamcal.core.time import as_utc, iso_utc, minutes, parse_iso_dt, utc_now
from teamcal.metrics import record_event_change, record_schedule_query
from teamcal.models import EventIn, EventUpdateIn
from teamcal.services import attendees as ledger
from teamcal.services import availability, events, user_settings
from teamcal.services.alerts import normalize_alert
from teamcal.services.directory import MembershipSnapshot, PlatformDirectory, get_directory
from teamcal.services.events import VISIBILITIES, VISIBILITY_CHANNEL, VISIBILITY_PRIVATE, Event
from teamcal.services.recurrence import Once, expand, normalize_rule, parse_rule

logger = logging.getLogger(__name__)


def check_visibility(visibility: str, channel: Optional[str]) -> None:
    if visibility not in VISIBILITIES:
        raise InvalidVisibility(f"Unknown visibility: {visibility}")
    if visibility == VISIBILITY_CHANNEL and not channel:
        raise InvalidVisibility("Channel visibility requires a channel")
    if visibility == VISIBILITY_PRIVATE and channel:
        raise InvalidVisibility("Private events cannot have a channel")


def _event_times(start: str, end: str) -> tuple[datetime, datetime]:
    dt_start = parse_iso_dt(start).replace(microsecond=0)
    dt_end = parse_iso_dt(end).replace(microsecond=0)
    if dt_end <= dt_start:
        raise InvalidEvent("end must be after start")
    return dt_start, dt_end


class SchedulingService:
    def __init__(
        self,
        directory: PlatformDirectory,
        *,
        hide_private_events: bool = False,
        max_window: Optional[timedelta] = None,
        max_users: Optional[int] = None,
    ) -> None:
        self.directory = directory
        self.hide_private_events = hide_private_events
        self.max_window = max_window
        self.max_users = max_users

    # -- access rules -------------------------------------------------------

    def can_modify(self, user_id: str, event: Event) -> bool:
        if user_id == event.owner:
            return True
        return self.directory.is_system_admin(user_id) or self.directory.is_team_admin(user_id, event.team)

    def can_view(self, user_id: str, event: Event, snapshot: Optional[MembershipSnapshot] = None) -> bool:
        if user_id == event.owner or ledger.is_invited(event.id, user_id):
            return True
        if event.visibility == VISIBILITY_CHANNEL and event.channel:
            snapshot = snapshot or MembershipSnapshot(self.directory)
            return snapshot.is_channel_member(event.channel, user_id)
        return False

    def _denied(self, event: Event, action: str):
        if self.hide_private_events and event.visibility == VISIBILITY_PRIVATE:
            return NotFound(f"Event {event.id} not found")
        return PermissionDenied(f"Not allowed to {action} event {event.id}")

    def _visible_event(self, user_id: str, event_id: str) -> Event:
        event = events.load_event(event_id)
        if not self.can_view(user_id, event):
            raise self._denied(event, "view")
        return event

    # -- CRUD ---------------------------------------------------------------

    def _apply(self, event: Event, body: EventIn) -> Event:
        check_visibility(body.visibility, body.channel)
        event.start, event.end = _event_times(body.start, body.end)
        event.title = body.title
        event.description = body.description
        event.visibility = body.visibility
        event.channel = body.channel or None
        event.recurrence = normalize_rule(body.recurrence)
        event.alert = normalize_alert(body.alert)
        event.color = body.color or S.default_event_color
        return event

    def create_event(self, user_id: str, body: EventIn) -> Event:
        now = utc_now()
        event = Event(id=uuid.uuid4().hex, title=body.title, start=now, end=now, owner=user_id, team=body.team, created=now)
        self._apply(event, body)
        events.save_event(event)
        event.attendees = ledger.invite(event.id, body.attendees)
        record_event_change("create")
        logger.info("Event %s created by %s", event.id, user_id)
        return event

    def update_event(self, user_id: str, body: EventUpdateIn) -> Event:
        event = events.load_event(body.id)
        if not self.can_modify(user_id, event):
            raise self._denied(event, "update")
        self._apply(event, body)
        events.save_event(event, must_exist=True)
        previous = set(ledger.attendees(event.id))
        wanted = ledger.invite(event.id, body.attendees)
        ledger.uninvite(event.id, previous - set(wanted))
        event.attendees = ledger.attendees(event.id)
        record_event_change("update")
        logger.info("Event %s updated by %s", event.id, user_id)
        return event

    def remove_event(self, user_id: str, event_id: str) -> bool:
        event = events.load_event(event_id)
        if not self.can_modify(user_id, event):
            raise self._denied(event, "remove")
        ledger.remove_event(event_id)
        events.delete_event(event_id)
        record_event_change("remove")
        logger.info("Event %s removed by %s", event_id, user_id)
        return True

    def get_event(self, user_id: str, event_id: str, occurrence: Optional[datetime] = None) -> Dict[str, Any]:
        event = self._visible_event(user_id, event_id)
        if occurrence is not None:
            occurrence = as_utc(occurrence)
            duration = event.end - event.start
            match = next((o for o in self._occurrences(event, occurrence, occurrence + duration) if o.start == occurrence), None)
            if match is None:
                raise NotFound(f"Event {event_id} has no occurrence at {iso_utc(occurrence)}")
            event = event.at(match.start, match.end)
        event.attendees = ledger.attendees(event_id)
        accepted = ledger.accepted_users(event_id)
        data = event.to_dict()
        data["accepted"] = accepted
        return {"event": data, "accepted": accepted}

    def _occurrences(self, event: Event, window_start: datetime, window_end: datetime):
        try:
            rule = parse_rule(event.recurrence)
        except InvalidRecurrenceRule as exc:
            logger.warning("Event %s has an unreadable recurrence, showing it once: %s", event.id, exc)
            rule = Once()
        return expand(event, window_start, window_end, rule=rule)

    def visible_events(self, user_id: str, team_id: str = "") -> List[Event]:
        found: Dict[str, Event] = {ev.id: ev for ev in events.events_owned_by(user_id)}
        for event_id in ledger.events_for_user(user_id):
            if event_id not in found:
                event = events.find_event(event_id)
                if event is not None:
                    found[event_id] = event
        for channel_id in self.directory.channels_for_user(user_id, team_id):
            for event in events.events_in_channel(channel_id):
                found.setdefault(event.id, event)
        return list(found.values())

    def list_events(self, user_id: str, start: datetime, end: datetime, team_id: str = "") -> List[Dict[str, Any]]:
        start, end = availability.check_window(start, end, self.max_window)
        out = []
        for event in self.visible_events(user_id, team_id):
            members = ledger.attendees(event.id)
            for occ in self._occurrences(event, start, end):
                placed = event.at(occ.start, occ.end)
                placed.attendees = members
                out.append(placed.to_dict())
        out.sort(key=lambda ev: (ev["start"], ev["id"]))
        return out

    # -- attendee state -----------------------------------------------------

    def respond(self, user_id: str, event_id: str, accepted: bool) -> List[str]:
        self._visible_event(user_id, event_id)
        return ledger.set_accepted(event_id, user_id, accepted)

    def get_interested(self, user_id: str, event_id: str) -> bool:
        self._visible_event(user_id, event_id)
        return ledger.get_interested(event_id, user_id)

    def toggle_interested(self, user_id: str, event_id: str) -> bool:
        self._visible_event(user_id, event_id)
        return ledger.set_interested(event_id, user_id)

    def get_notification(self, user_id: str, event_id: str) -> str:
        self._visible_event(user_id, event_id)
        return ledger.get_notification(event_id, user_id)

    def set_notification(self, user_id: str, event_id: str, preference: Optional[str]) -> str:
        self._visible_event(user_id, event_id)
        return ledger.set_notification(event_id, user_id, preference)

    # -- settings -----------------------------------------------------------

    def get_settings(self, user_id: str) -> Dict[str, Any]:
        return user_settings.get_settings(user_id)

    def update_settings(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        return user_settings.update_settings(user_id, changes)

    # -- planning assistant -------------------------------------------------

    def busy_events(self, user_id: str, snapshot: MembershipSnapshot) -> List[Event]:
        """Events that occupy the user's time: owned ones, plus invitations they can see."""
        found: Dict[str, Event] = {ev.id: ev for ev in events.events_owned_by(user_id)}
        for event_id in ledger.events_for_user(user_id):
            if event_id in found:
                continue
            event = events.find_event(event_id)
            if event is None:
                continue
            if event.visibility == VISIBILITY_CHANNEL and not snapshot.is_channel_member(event.channel or "", user_id):
                continue
            found[event_id] = event
        return list(found.values())

    def get_schedule(
        self,
        user_ids: Iterable[str],
        start: datetime,
        end: datetime,
        slot_size: timedelta,
    ) -> availability.ScheduleResult:
        requested = list(dict.fromkeys(uid.strip() for uid in user_ids if uid and uid.strip()))
        try:
            availability.check_query(
                len(requested), start, end, slot_size,
                max_window=self.max_window, max_users=self.max_users,
            )
        except CalendarError:
            record_schedule_query("rejected")
            raise
        snapshot = MembershipSnapshot(self.directory)
        calendars = {uid: self.busy_events(uid, snapshot) for uid in requested}
        result = availability.schedule(calendars, start, end, slot_size)
        record_schedule_query("partial" if result.warnings else "ok")
        return result


def schedule_payload(result: availability.ScheduleResult) -> Dict[str, Any]:
    return {
        "users": {
            uid: [
                {"start": iso_utc(s), "end": iso_utc(e), "duration": minutes(e - s)}
                for s, e in timeline.intervals
            ]
            for uid, timeline in result.per_user.items()
        },
        "busy_minutes": {uid: minutes(tl.total) for uid, tl in result.per_user.items()},
        "available_times": [iso_utc(slot) for slot in result.free_slots],
        "warnings": list(result.warnings),
    }


@lru_cache(maxsize=1)
def get_service() -> SchedulingService:
    return SchedulingService(
        get_directory(),
        hide_private_events=S.hide_private_events,
        max_window=timedelta(days=S.schedule_max_window_days),
        max_users=S.schedule_max_users,
    )
