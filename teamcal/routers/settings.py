from __future__ import annotations

from typing import Dict

from fastapi import APIRouter, Depends

from teamcal.auth.deps import require_user
from teamcal.models import CalendarSettingsIn
from teamcal.services.scheduling import get_service

router = APIRouter(tags=["settings"])


@router.get("/settings")
async def get_settings(ctx: Dict[str, str] = Depends(require_user)):
    return {"data": get_service().get_settings(ctx["user_id"])}


@router.put("/settings")
async def update_settings(body: CalendarSettingsIn, ctx: Dict[str, str] = Depends(require_user)):
    changes = body.model_dump(exclude_none=True)
    return {"data": get_service().update_settings(ctx["user_id"], changes)}
