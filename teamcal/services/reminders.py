"""Minute-tick reminder job.

Every tick the job looks at each stored event, works out which of its
occurrences start (or are due an alert) at the current minute, and posts a
message for them through the platform bot. An event is claimed for the tick
before anything is sent, so overlapping runs in the same minute post once.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

import requests

from teamcal.core.errors import CalendarError
from teamcal.core.settings import S
from teamcal.core.time import floor_minute, iso_utc, utc_now
from teamcal.metrics import record_reminder
from teamcal.services import attendees as ledger
from teamcal.services import events
from teamcal.services.alerts import alert_label, lead_time
from teamcal.services.directory import PlatformDirectory, get_directory
from teamcal.services.events import VISIBILITY_CHANNEL, Event
from teamcal.services.recurrence import Once, expand, parse_rule

logger = logging.getLogger(__name__)

KIND_OCCUR = "occur"
KIND_ALERT = "alert"
KIND_NOTIFY = "notify"


@dataclass(frozen=True)
class Reminder:
    event: Event
    kind: str
    lead: str = ""
    user_id: Optional[str] = None  # set for personal notifications only


class ReminderJob:
    def __init__(self, directory: PlatformDirectory, *, lookahead: timedelta = timedelta(days=8)) -> None:
        self.directory = directory
        self.lookahead = lookahead

    def due(self, event: Event, tick: datetime) -> List[Reminder]:
        try:
            rule = parse_rule(event.recurrence)
        except CalendarError as exc:
            logger.warning("Event %s has an unreadable recurrence, checking it once: %s", event.id, exc)
            rule = Once()
        starts = {occ.start for occ in expand(event, tick, tick + self.lookahead, rule=rule)}
        if not starts:
            return []

        out: List[Reminder] = []
        lead = lead_time(event.alert)
        if lead is not None and tick + lead in starts:
            out.append(Reminder(event, KIND_ALERT, event.alert))
        elif tick in starts:
            out.append(Reminder(event, KIND_OCCUR))

        for user_id, token in ledger.notification_preferences(event.id).items():
            user_lead = lead_time(token)
            if user_lead is not None and tick + user_lead in starts:
                out.append(Reminder(event, KIND_NOTIFY, token, user_id=user_id))
        return out

    def message(self, reminder: Reminder) -> str:
        event = reminder.event
        if reminder.lead:
            text = f":alarm_clock: **{alert_label(reminder.lead)}** *{event.title}* :alarm_clock:\n"
        else:
            text = f":dart: *{event.title}* :dart:\n"
        if event.attendees:
            names = [self.directory.username(uid) for uid in event.attendees]
            text += "**members:** " + ", ".join(f"@{n}" for n in names if n) + "\n"
        if event.description:
            text += f"**description:**\n{event.description}"
        return text

    def channel_for(self, reminder: Reminder) -> str:
        event = reminder.event
        if reminder.user_id:
            return self.directory.direct_channel(reminder.user_id)
        if event.visibility == VISIBILITY_CHANNEL and event.channel:
            return event.channel
        if not event.attendees:
            return self.directory.direct_channel(event.owner)
        return self.directory.group_channel([*event.attendees, event.owner])

    def deliver(self, reminder: Reminder) -> bool:
        try:
            channel_id = self.channel_for(reminder)
            self.directory.create_post(channel_id, self.message(reminder), reminder.event.color)
        except requests.RequestException as exc:
            logger.error("Reminder for event %s failed: %s", reminder.event.id, exc)
            return False
        record_reminder(reminder.kind)
        return True

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Send everything due at the minute containing ``now``; returns posts sent."""
        tick = floor_minute(now or utc_now())
        stamp = iso_utc(tick)
        sent = 0
        for event in events.all_events():
            if event.processed == stamp:
                continue
            due = self.due(event, tick)
            if not due:
                continue
            try:
                claimed = events.mark_processed(event.id, stamp)
            except CalendarError:
                # Removed since it was listed.
                continue
            if not claimed:
                continue
            event.attendees = ledger.attendees(event.id)
            sent += sum(1 for reminder in due if self.deliver(reminder))
        if sent:
            logger.info("Sent %d reminders for %s", sent, stamp)
        return sent


async def run_forever(job: ReminderJob, interval: float, stop: asyncio.Event) -> None:
    while not stop.is_set():
        try:
            await asyncio.to_thread(job.run_once, utc_now())
        except Exception:
            logger.exception("Reminder tick failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


def get_job() -> ReminderJob:
    return ReminderJob(get_directory(), lookahead=timedelta(days=S.reminder_lookahead_days))
