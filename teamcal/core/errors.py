from __future__ import annotations

from typing import Any, Dict


class CalendarError(Exception):
    """Base class for errors reported to API callers with a machine-readable kind."""

    kind = "calendar_error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class InvalidRecurrenceRule(CalendarError):
    kind = "invalid_recurrence_rule"


class InvalidWindow(CalendarError):
    kind = "invalid_window"


class InvalidSlotSize(CalendarError):
    kind = "invalid_slot_size"


class InvalidVisibility(CalendarError):
    kind = "invalid_visibility"


class InvalidEvent(CalendarError):
    kind = "invalid_event"


class PermissionDenied(CalendarError):
    kind = "permission_denied"
    status_code = 403


class NotFound(CalendarError):
    kind = "not_found"
    status_code = 404


class QueryTooLarge(CalendarError):
    kind = "query_too_large"
    status_code = 413
