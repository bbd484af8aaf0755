from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import requests

from teamcal.core.settings import S

logger = logging.getLogger(__name__)


class PlatformDirectory:
    """Chat-platform REST lookups: channel membership, admin roles, users, posts.

    Membership and role answers are point-in-time; lookup failures are logged
    and answered with ``False`` so access checks fail closed.
    """

    def __init__(self, base_url: str, token: str, *, bot_user_id: str = "", timeout: int = 10) -> None:
        self.base_url = base_url.rstrip("/")
        self.bot_user_id = bot_user_id
        self.timeout = timeout
        self.http = requests.Session()
        if token:
            self.http.headers["Authorization"] = f"Bearer {token}"

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v4{path}"

    def _get(self, path: str) -> Any:
        resp = self.http.get(self._url(path), timeout=self.timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def _post(self, path: str, payload: Any) -> Any:
        resp = self.http.post(self._url(path), json=payload, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def _lookup(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            return self._get(path)
        except requests.RequestException as exc:
            logger.warning("Platform lookup %s failed: %s", path, exc)
            return None

    def is_channel_member(self, channel_id: str, user_id: str) -> bool:
        return self._lookup(f"/channels/{channel_id}/members/{user_id}") is not None

    def is_system_admin(self, user_id: str) -> bool:
        user = self._lookup(f"/users/{user_id}")
        return bool(user) and "system_admin" in (user.get("roles") or "").split()

    def is_team_admin(self, user_id: str, team_id: str) -> bool:
        if not team_id:
            return False
        member = self._lookup(f"/teams/{team_id}/members/{user_id}")
        if not member:
            return False
        return bool(member.get("scheme_admin")) or "team_admin" in (member.get("roles") or "").split()

    def username(self, user_id: str) -> Optional[str]:
        user = self._lookup(f"/users/{user_id}")
        return user.get("username") if user else None

    def channels_for_user(self, user_id: str, team_id: str) -> List[str]:
        if not team_id:
            return []
        try:
            channels = self._get(f"/users/{user_id}/teams/{team_id}/channels") or []
        except requests.RequestException as exc:
            logger.warning("Channel listing for %s failed: %s", user_id, exc)
            return []
        return [ch["id"] for ch in channels if ch.get("id")]

    def direct_channel(self, user_id: str) -> str:
        return self._post("/channels/direct", [self.bot_user_id, user_id])["id"]

    def group_channel(self, user_ids: List[str]) -> str:
        members = list(dict.fromkeys([*user_ids, self.bot_user_id]))
        return self._post("/channels/group", members)["id"]

    def create_post(self, channel_id: str, text: str, color: str) -> Dict[str, Any]:
        return self._post("/posts", {
            "channel_id": channel_id,
            "user_id": self.bot_user_id,
            "props": {"attachments": [{"text": text, "color": color}]},
        })


class MembershipSnapshot:
    """Per-request cache over the directory so each lookup happens once."""

    def __init__(self, directory: PlatformDirectory) -> None:
        self.directory = directory
        self._members: Dict[Tuple[str, str], bool] = {}

    def is_channel_member(self, channel_id: str, user_id: str) -> bool:
        key = (channel_id, user_id)
        if key not in self._members:
            self._members[key] = self.directory.is_channel_member(channel_id, user_id)
        return self._members[key]


@lru_cache(maxsize=1)
def get_directory() -> PlatformDirectory:
    return PlatformDirectory(
        S.platform_url,
        S.platform_token,
        bot_user_id=S.platform_bot_user_id,
        timeout=S.platform_timeout_seconds,
    )
