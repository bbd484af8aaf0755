from __future__ import annotations

from typing import Any, Dict

from teamcal.core.errors import InvalidEvent
from teamcal.core.store import get_store

SETTINGS = "SETTINGS"

DEFAULT_SETTINGS = {
    "isOpenCalendarLeftBar": True,
    "firstDayOfWeek": 1,
    "hideNonWorkingDays": False,
}


def user_pk(user_id: str) -> str:
    return f"USER#{user_id}"


def get_settings(user_id: str) -> Dict[str, Any]:
    it = get_store().get(user_pk(user_id), SETTINGS)
    if not it:
        return dict(DEFAULT_SETTINGS)
    return {
        "isOpenCalendarLeftBar": bool(it.get("is_open_left_bar", True)),
        "firstDayOfWeek": int(it.get("first_day_of_week", 1)),
        "hideNonWorkingDays": bool(it.get("hide_non_working_days", False)),
    }


def update_settings(user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    merged = {**get_settings(user_id), **{k: v for k, v in changes.items() if v is not None}}
    first_day = int(merged["firstDayOfWeek"])
    if not 0 <= first_day <= 6:
        raise InvalidEvent("firstDayOfWeek must be between 0 and 6")

    def _write(current: Dict[str, Any] | None) -> Dict[str, Any]:
        row = current or {"user_id": user_id}
        row["is_open_left_bar"] = bool(merged["isOpenCalendarLeftBar"])
        row["first_day_of_week"] = first_day
        row["hide_non_working_days"] = bool(merged["hideNonWorkingDays"])
        return row

    get_store().mutate(user_pk(user_id), SETTINGS, _write)
    return get_settings(user_id)
