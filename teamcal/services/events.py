from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from teamcal.core.errors import InvalidRecurrenceRule, NotFound
from teamcal.core.settings import S
from teamcal.core.store import get_store
from teamcal.core.time import iso_utc, parse_iso_dt
from teamcal.services.recurrence import normalize_rule

logger = logging.getLogger(__name__)

VISIBILITY_PRIVATE = "private"
VISIBILITY_CHANNEL = "channel"
VISIBILITIES = (VISIBILITY_PRIVATE, VISIBILITY_CHANNEL)

META = "META"
# Sparse index key carried by event rows only, so listing events never touches ledger rows.
ENTITY_EVENT = "event"


def event_pk(event_id: str) -> str:
    return f"EVENT#{event_id}"


@dataclass
class Event:
    id: str
    title: str
    start: datetime
    end: datetime
    owner: str
    team: str = ""
    description: str = ""
    visibility: str = VISIBILITY_PRIVATE
    channel: Optional[str] = None
    color: str = S.default_event_color
    alert: str = ""
    recurrence: str = ""
    created: Optional[datetime] = None
    processed: Optional[str] = None
    attendees: List[str] = field(default_factory=list)

    @property
    def recurrent(self) -> bool:
        return bool(self.recurrence)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Event":
        created = item.get("created")
        return cls(
            id=item["id"],
            title=item.get("title", ""),
            description=item.get("description", ""),
            start=parse_iso_dt(item["dt_start"]),
            end=parse_iso_dt(item["dt_end"]),
            owner=item["owner"],
            team=item.get("team", ""),
            visibility=item.get("visibility", VISIBILITY_PRIVATE),
            channel=item.get("channel"),
            color=item.get("color") or S.default_event_color,
            alert=item.get("alert", ""),
            recurrence=item.get("recurrence", ""),
            created=parse_iso_dt(created) if created else None,
            processed=item.get("processed"),
        )

    def to_item(self) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "pk": event_pk(self.id),
            "sk": META,
            "entity": ENTITY_EVENT,
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dt_start": iso_utc(self.start),
            "dt_end": iso_utc(self.end),
            "owner": self.owner,
            "team": self.team,
            "visibility": self.visibility,
            "color": self.color,
            "alert": self.alert,
            "recurrence": self.recurrence,
            "recurrent": self.recurrent,
        }
        # Index key attributes must be absent rather than null.
        if self.channel:
            item["channel"] = self.channel
        if self.created:
            item["created"] = iso_utc(self.created)
        if self.processed:
            item["processed"] = self.processed
        return item

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start": iso_utc(self.start),
            "end": iso_utc(self.end),
            "attendees": list(self.attendees),
            "created": iso_utc(self.created) if self.created else None,
            "owner": self.owner,
            "team": self.team,
            "visibility": self.visibility,
            "channel": self.channel,
            "recurrence": self.recurrence,
            "recurrent": self.recurrent,
            "color": self.color,
            "alert": self.alert,
        }

    def at(self, start: datetime, end: datetime) -> "Event":
        """Copy of the event placed at one occurrence."""
        return replace(self, start=start, end=end, attendees=list(self.attendees))


def find_event(event_id: str) -> Optional[Event]:
    item = get_store().get(event_pk(event_id), META)
    return Event.from_item(item) if item else None


def load_event(event_id: str) -> Event:
    event = find_event(event_id)
    if event is None:
        raise NotFound(f"Event {event_id} not found")
    return event


def save_event(event: Event, *, must_exist: bool = False) -> Event:
    """Write the event row. With ``must_exist`` a concurrently removed event stays removed."""
    def _write(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if current is None and must_exist:
            raise NotFound(f"Event {event.id} not found")
        item = event.to_item()
        if current and current.get("processed") and "processed" not in item:
            item["processed"] = current["processed"]
        return item

    get_store().mutate(event_pk(event.id), META, _write)
    return event


def delete_event(event_id: str) -> None:
    get_store().delete(event_pk(event_id), META)


def events_owned_by(user_id: str) -> List[Event]:
    return [Event.from_item(it) for it in get_store().query_index("owner", user_id) if it.get("sk") == META]


def events_in_channel(channel_id: str) -> List[Event]:
    return [Event.from_item(it) for it in get_store().query_index("channel", channel_id) if it.get("sk") == META]


def all_events() -> List[Event]:
    return [Event.from_item(it) for it in get_store().query_index("entity", ENTITY_EVENT)]


def mark_processed(event_id: str, tick: str) -> bool:
    """Record that reminders for ``tick`` went out; False if they already had."""
    claimed = []

    def _claim(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if current is None:
            raise NotFound(f"Event {event_id} not found")
        claimed.clear()
        if current.get("processed") != tick:
            current["processed"] = tick
            claimed.append(True)
        return current

    get_store().mutate(event_pk(event_id), META, _claim)
    return bool(claimed)


def migrate_legacy_events() -> int:
    """Bring stored event rows up to the current layout.

    Weekday-list rules (``[0,2]``) and ``[]``/``null`` leftovers are rewritten
    to RRULE form, and rows written before the event index existed get its key.
    Returns the number of rows rewritten.
    """
    store = get_store()
    migrated = 0
    for item in store.scan_sk(META):
        changed = False
        if item.get("entity") != ENTITY_EVENT:
            item["entity"] = ENTITY_EVENT
            changed = True
        raw = item.get("recurrence") or ""
        if raw.startswith("[") or raw == "null":
            try:
                rewritten = normalize_rule(raw)
            except InvalidRecurrenceRule as exc:
                logger.warning("Skipping legacy recurrence on event %s: %s", item.get("id"), exc)
            else:
                item["recurrence"] = rewritten
                item["recurrent"] = bool(rewritten)
                changed = True
        if changed:
            store.put(item)
            migrated += 1
    if migrated:
        logger.info("Migrated %d legacy event rows", migrated)
    return migrated
