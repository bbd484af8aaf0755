from __future__ import annotations

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EventIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    start: str
    end: str
    attendees: List[str] = Field(default_factory=list, validation_alias=AliasChoices("attendees", "members"))
    team: str = Field(default="", max_length=64)
    visibility: str = "private"
    channel: Optional[str] = None
    recurrence: str = Field(default="", max_length=1000, validation_alias=AliasChoices("recurrence", "repeat"))
    color: Optional[str] = Field(default=None, max_length=32)
    alert: Optional[str] = ""


class EventUpdateIn(EventIn):
    id: str = Field(min_length=1)


class AcceptIn(BaseModel):
    accepted: bool = True


class NotificationSettingIn(BaseModel):
    notification_setting: Optional[str] = ""


class CalendarSettingsIn(BaseModel):
    isOpenCalendarLeftBar: Optional[bool] = None
    firstDayOfWeek: Optional[int] = Field(default=None, ge=0, le=6)
    hideNonWorkingDays: Optional[bool] = None

