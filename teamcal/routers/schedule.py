from __future__ import annotations

from datetime import timedelta
from typing import Dict

from fastapi import APIRouter, Depends, Query

from teamcal.auth.deps import require_user
from teamcal.core.time import parse_iso_dt
from teamcal.services.scheduling import get_service, schedule_payload

router = APIRouter(tags=["schedule"])


@router.get("/schedule")
async def get_schedule(
    users: str = Query(default=""),
    slot_time: int = Query(default=30),
    start: str = Query(...),
    end: str = Query(...),
    ctx: Dict[str, str] = Depends(require_user),
):
    result = get_service().get_schedule(
        users.split(","),
        parse_iso_dt(start),
        parse_iso_dt(end),
        timedelta(minutes=slot_time),
    )
    return {"data": schedule_payload(result)}
