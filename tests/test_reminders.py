from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import requests

from teamcal.services import attendees as ledger
from teamcal.services import events
from teamcal.services.events import Event
from teamcal.services.reminders import ReminderJob


def at(hour: int, minute: int = 0, day: int = 1, second: int = 0) -> datetime:
    return datetime(2024, 5, day, hour, minute, second, tzinfo=timezone.utc)


def build_directory() -> Mock:
    directory = Mock()
    directory.username.side_effect = lambda uid: uid
    directory.direct_channel.side_effect = lambda uid: f"dm-{uid}"
    directory.group_channel.return_value = "group-1"
    return directory


def save(event_id: str = "evt1", **kwargs) -> Event:
    fields = {"title": "Standup", "start": at(9), "end": at(10), "owner": "owner"}
    fields.update(kwargs)
    event = Event(id=event_id, **fields)
    events.save_event(event)
    return event


def posts(directory: Mock) -> list:
    return [c.args for c in directory.create_post.call_args_list]


def test_start_reminder_goes_to_owner_once_per_tick():
    directory = build_directory()
    save(description="Daily sync", color="#123456")
    job = ReminderJob(directory)

    assert job.run_once(at(9, second=20)) == 1
    assert job.run_once(at(9, second=50)) == 0

    [(channel_id, text, color)] = posts(directory)
    assert channel_id == "dm-owner"
    assert text == ":dart: *Standup* :dart:\n**description:**\nDaily sync"
    assert color == "#123456"
    assert events.load_event("evt1").processed == "2024-05-01T09:00:00Z"


def test_nothing_due_leaves_event_unclaimed():
    directory = build_directory()
    save()
    assert ReminderJob(directory).run_once(at(8, 30)) == 0
    directory.create_post.assert_not_called()
    assert events.load_event("evt1").processed is None


def test_alert_goes_to_attendee_group():
    directory = build_directory()
    save(alert="15_minutes_before")
    ledger.invite("evt1", ["alice", "bob"])

    assert ReminderJob(directory).run_once(at(8, 45)) == 1

    directory.group_channel.assert_called_once_with(["alice", "bob", "owner"])
    [(channel_id, text, _)] = posts(directory)
    assert channel_id == "group-1"
    assert text.startswith(":alarm_clock: **15 minutes before** *Standup* :alarm_clock:\n")
    assert "**members:** @alice, @bob\n" in text


def test_channel_event_posts_to_channel():
    directory = build_directory()
    save(visibility="channel", channel="ch1")
    assert ReminderJob(directory).run_once(at(9)) == 1
    assert posts(directory)[0][0] == "ch1"


def test_personal_notification_is_direct_message():
    directory = build_directory()
    save()
    ledger.invite("evt1", ["alice"])
    ledger.set_notification("evt1", "alice", "1_hour_before")

    assert ReminderJob(directory).run_once(at(8)) == 1
    [(channel_id, text, _)] = posts(directory)
    assert channel_id == "dm-alice"
    assert "**1 hour before**" in text


def test_recurring_event_fires_on_later_days():
    directory = build_directory()
    save(recurrence="RRULE:FREQ=DAILY;INTERVAL=1")
    job = ReminderJob(directory, lookahead=timedelta(days=2))
    assert job.run_once(at(9, day=3)) == 1
    assert job.run_once(at(9, day=4)) == 1


def test_delivery_failure_is_logged_and_not_counted():
    directory = build_directory()
    directory.create_post.side_effect = requests.ConnectionError("down")
    save()
    assert ReminderJob(directory).run_once(at(9)) == 0
    assert events.load_event("evt1").processed == "2024-05-01T09:00:00Z"
