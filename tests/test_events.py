from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from teamcal.core.errors import NotFound
from teamcal.core.store import get_store
from teamcal.services import events
from teamcal.services.events import Event


def at(hour: int) -> datetime:
    return datetime(2024, 5, 1, hour, tzinfo=timezone.utc)


def build_event(**kwargs) -> Event:
    fields = {"id": "evt1", "title": "Sync", "start": at(9), "end": at(10), "owner": "owner"}
    fields.update(kwargs)
    return Event(**fields)


def test_round_trip_through_store():
    events.save_event(build_event(visibility="channel", channel="ch1", alert="1_day_before"))
    loaded = events.load_event("evt1")
    assert loaded.channel == "ch1"
    assert loaded.alert == "1_day_before"
    assert [ev.id for ev in events.events_in_channel("ch1")] == ["evt1"]
    assert [ev.id for ev in events.events_owned_by("owner")] == ["evt1"]


def test_private_event_item_has_no_channel_attribute():
    item = build_event().to_item()
    assert "channel" not in item
    assert item["recurrent"] is False


def test_mark_processed_claims_each_tick_once():
    events.save_event(build_event())
    assert events.mark_processed("evt1", "2024-05-01T09:00:00Z") is True
    assert events.mark_processed("evt1", "2024-05-01T09:00:00Z") is False
    assert events.mark_processed("evt1", "2024-05-01T09:01:00Z") is True


def test_save_keeps_processed_marker():
    events.save_event(build_event())
    events.mark_processed("evt1", "2024-05-01T09:00:00Z")
    events.save_event(build_event(title="Renamed"))
    assert events.load_event("evt1").processed == "2024-05-01T09:00:00Z"


def test_migrate_legacy_events():
    store = get_store()
    store.put({**build_event(id="a").to_item(), "recurrence": "[0,4]"})
    store.put({**build_event(id="b").to_item(), "recurrence": "null"})
    store.put({**build_event(id="c").to_item(), "recurrence": "RRULE:FREQ=DAILY;INTERVAL=1"})
    store.put({**build_event(id="d").to_item(), "recurrence": "[9]"})

    assert events.migrate_legacy_events() == 2
    assert events.load_event("a").recurrence == "RRULE:FREQ=WEEKLY;INTERVAL=1;BYDAY=MO,FR"
    assert events.load_event("b").recurrence == ""
    assert events.load_event("d").recurrence == "[9]"


def test_all_events_reads_event_rows_only():
    events.save_event(build_event())
    store = get_store()
    store.put({"pk": "EVENT#evt1", "sk": "MEMBER#alice", "member": "alice", "event_id": "evt1"})
    with patch.object(store, "scan_sk", side_effect=AssertionError("full scan")):
        assert [ev.id for ev in events.all_events()] == ["evt1"]


def test_migration_indexes_rows_written_before_the_event_index():
    legacy = build_event(id="old").to_item()
    del legacy["entity"]
    get_store().put(legacy)
    assert events.all_events() == []

    assert events.migrate_legacy_events() == 1
    assert [ev.id for ev in events.all_events()] == ["old"]
    assert events.migrate_legacy_events() == 0


def test_save_with_must_exist_does_not_recreate_removed_event():
    events.save_event(build_event())
    stale = events.load_event("evt1")
    events.delete_event("evt1")

    with pytest.raises(NotFound):
        events.save_event(stale, must_exist=True)
    assert events.find_event("evt1") is None
