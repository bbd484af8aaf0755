from __future__ import annotations

from datetime import timedelta
from typing import Dict, Optional, Tuple

from teamcal.core.errors import InvalidEvent

ALERT_NONE = ""

# token -> (label, lead time before the occurrence start)
ALERT_OPTIONS: Dict[str, Tuple[str, timedelta]] = {
    "5_minutes_before": ("5 minutes before", timedelta(minutes=5)),
    "15_minutes_before": ("15 minutes before", timedelta(minutes=15)),
    "30_minutes_before": ("30 minutes before", timedelta(minutes=30)),
    "1_hour_before": ("1 hour before", timedelta(hours=1)),
    "2_hours_before": ("2 hours before", timedelta(hours=2)),
    "1_day_before": ("1 day before", timedelta(days=1)),
    "2_days_before": ("2 days before", timedelta(days=2)),
    "1_week_before": ("1 week before", timedelta(weeks=1)),
}


def normalize_alert(token: Optional[str]) -> str:
    value = (token or "").strip()
    if value in ("none", "null"):
        return ALERT_NONE
    if value != ALERT_NONE and value not in ALERT_OPTIONS:
        raise InvalidEvent(f"Unknown alert option: {value}")
    return value


def lead_time(token: Optional[str]) -> Optional[timedelta]:
    opt = ALERT_OPTIONS.get(token or "")
    return opt[1] if opt else None


def alert_label(token: Optional[str]) -> str:
    opt = ALERT_OPTIONS.get(token or "")
    return opt[0] if opt else ""
