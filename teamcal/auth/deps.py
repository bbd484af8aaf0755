from __future__ import annotations

from typing import Dict, Optional

from fastapi import Header, HTTPException, Request


async def require_user(
    request: Request,
    user_id: Optional[str] = Header(default=None, alias="Mattermost-User-Id"),
) -> Dict[str, str]:
    # The host authenticates the caller and forwards the user id.
    if not user_id or not user_id.strip():
        raise HTTPException(401, "Not authorized")
    request.state.user_id = user_id.strip()
    return {"user_id": user_id.strip()}
