from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from teamcal.core.errors import PermissionDenied
from teamcal.core.store import get_store
from teamcal.services.alerts import ALERT_NONE, normalize_alert
from teamcal.services.events import event_pk

logger = logging.getLogger(__name__)

MEMBER = "MEMBER#"
NOTIFY = "NOTIFY#"
INTEREST = "INTEREST#"


@dataclass(frozen=True)
class Attendance:
    user_id: str
    accepted: Optional[bool] = None  # None = no response yet
    interested: bool = False
    invited: bool = True


def _unique(user_ids: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for uid in user_ids:
        uid = (uid or "").strip()
        if uid and uid not in seen:
            seen.append(uid)
    return seen


def invite(event_id: str, user_ids: Iterable[str]) -> List[str]:
    """Add attendees; rows that already exist keep their RSVP state."""
    store = get_store()
    invited = _unique(user_ids)
    for uid in invited:
        def _upsert(current: Optional[Dict[str, Any]], uid: str = uid) -> Dict[str, Any]:
            row = current or {"event_id": event_id, "member": uid}
            row["invited"] = True
            return row

        store.mutate(event_pk(event_id), MEMBER + uid, _upsert)
    return invited


def uninvite(event_id: str, user_ids: Iterable[str]) -> int:
    pk = event_pk(event_id)
    return get_store().delete_many([(pk, MEMBER + uid) for uid in _unique(user_ids)])


def attendees(event_id: str) -> List[str]:
    return [it["member"] for it in get_store().query(event_pk(event_id), MEMBER)]


def accepted_users(event_id: str) -> List[str]:
    return [it["member"] for it in get_store().query(event_pk(event_id), MEMBER) if it.get("accepted") is True]


def attendance(event_id: str) -> List[Attendance]:
    store = get_store()
    pk = event_pk(event_id)
    interested = {it["user_id"] for it in store.query(pk, INTEREST) if it.get("interested")}
    return [
        Attendance(user_id=it["member"], accepted=it.get("accepted"), interested=it["member"] in interested)
        for it in store.query(pk, MEMBER)
    ]


def is_invited(event_id: str, user_id: str) -> bool:
    return get_store().get(event_pk(event_id), MEMBER + user_id) is not None


def events_for_user(user_id: str) -> List[str]:
    return [it["event_id"] for it in get_store().query_index("member", user_id) if it.get("sk", "").startswith(MEMBER)]


def set_accepted(event_id: str, user_id: str, accepted: bool) -> List[str]:
    def _rsvp(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if current is None:
            raise PermissionDenied("Only invited users can respond to an event")
        current["accepted"] = bool(accepted)
        return current

    get_store().mutate(event_pk(event_id), MEMBER + user_id, _rsvp)
    return accepted_users(event_id)


def get_interested(event_id: str, user_id: str) -> bool:
    it = get_store().get(event_pk(event_id), INTEREST + user_id)
    return bool(it and it.get("interested"))


def set_interested(event_id: str, user_id: str) -> bool:
    """Flip the user's interest in the event and return the new value."""
    def _toggle(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        row = current or {"event_id": event_id, "user_id": user_id, "interested": False}
        row["interested"] = not row.get("interested", False)
        return row

    row = get_store().mutate(event_pk(event_id), INTEREST + user_id, _toggle)
    return bool(row["interested"])


def get_notification(event_id: str, user_id: str) -> str:
    it = get_store().get(event_pk(event_id), NOTIFY + user_id)
    if not it:
        return ALERT_NONE
    return it.get("notification_setting") or ALERT_NONE


def set_notification(event_id: str, user_id: str, preference: Optional[str]) -> str:
    value = normalize_alert(preference)

    def _set(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        row = current or {"event_id": event_id, "user_id": user_id}
        row["notification_setting"] = value
        return row

    get_store().mutate(event_pk(event_id), NOTIFY + user_id, _set)
    return value


def notification_preferences(event_id: str) -> Dict[str, str]:
    rows = get_store().query(event_pk(event_id), NOTIFY)
    return {it["user_id"]: it["notification_setting"] for it in rows if it.get("notification_setting")}


def remove_event(event_id: str) -> int:
    """Drop every attendance, interest and notification row of the event."""
    store = get_store()
    pk = event_pk(event_id)
    keys = [(pk, it["sk"]) for prefix in (MEMBER, NOTIFY, INTEREST) for it in store.query(pk, prefix)]
    deleted = store.delete_many(keys)
    logger.info("Removed %d ledger rows for event %s", deleted, event_id)
    return deleted
