from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .settings import S

@dataclass(frozen=True)
class Tables:
    calendar: Any
    indexes: Dict[str, str]


def load_tables() -> Tables:
    from .aws import ddb

    return Tables(
        calendar=ddb.Table(S.calendar_table_name),
        indexes={
            "member": S.calendar_member_index,
            "owner": S.calendar_owner_index,
            "channel": S.calendar_channel_index,
            "entity": S.calendar_event_index,
        },
    )
