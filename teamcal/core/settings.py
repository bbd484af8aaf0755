from __future__ import annotations

import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # Store backend: "dynamodb" or "memory"
    calendar_store: str = os.environ.get("CALENDAR_STORE", "dynamodb").lower()
    calendar_table_name: str = os.environ.get("CALENDAR_TABLE_NAME", "calendar")
    calendar_member_index: str = os.environ.get("CALENDAR_MEMBER_INDEX", "member-index")
    calendar_owner_index: str = os.environ.get("CALENDAR_OWNER_INDEX", "owner-index")
    calendar_channel_index: str = os.environ.get("CALENDAR_CHANNEL_INDEX", "channel-index")
    calendar_event_index: str = os.environ.get("CALENDAR_EVENT_INDEX", "entity-index")
    store_max_retries: int = int(os.environ.get("STORE_MAX_RETRIES", "5"))

    # Chat platform REST API (channel membership, roles, posts)
    platform_url: str = os.environ.get("PLATFORM_URL", "http://localhost:8065").rstrip("/")
    platform_token: str = os.environ.get("PLATFORM_TOKEN", "")
    platform_bot_user_id: str = os.environ.get("PLATFORM_BOT_USER_ID", "")
    platform_timeout_seconds: int = int(os.environ.get("PLATFORM_TIMEOUT_SECONDS", "10"))

    # Planning assistant bounds
    schedule_max_window_days: int = int(os.environ.get("SCHEDULE_MAX_WINDOW_DAYS", "31"))
    schedule_max_users: int = int(os.environ.get("SCHEDULE_MAX_USERS", "50"))

    # Report denied reads of private events as 404 instead of 403
    hide_private_events: bool = os.environ.get("HIDE_PRIVATE_EVENTS", "0") not in ("0", "false", "False")

    # Reminders
    reminders_enabled: bool = os.environ.get("REMINDERS_ENABLED", "0") not in ("0", "false", "False")
    reminder_tick_seconds: int = int(os.environ.get("REMINDER_TICK_SECONDS", "15"))
    reminder_lookahead_days: int = int(os.environ.get("REMINDER_LOOKAHEAD_DAYS", "8"))
    default_event_color: str = os.environ.get("DEFAULT_EVENT_COLOR", "#D0D0D0")

    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()


S = Settings()
