from __future__ import annotations

from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query

from teamcal.auth.deps import require_user
from teamcal.core.time import parse_iso_dt
from teamcal.models import AcceptIn, EventIn, EventUpdateIn, NotificationSettingIn
from teamcal.services.scheduling import get_service

router = APIRouter(tags=["events"])


@router.get("/events")
async def list_events(
    start: str = Query(...),
    end: str = Query(...),
    team: str = Query(default=""),
    ctx: Dict[str, str] = Depends(require_user),
):
    data = get_service().list_events(ctx["user_id"], parse_iso_dt(start), parse_iso_dt(end), team)
    return {"data": data}


@router.get("/events/{event_id}")
async def get_event(event_id: str, occurrence: Optional[str] = Query(default=None), ctx: Dict[str, str] = Depends(require_user)):
    at = parse_iso_dt(occurrence) if occurrence else None
    return {"data": get_service().get_event(ctx["user_id"], event_id, at)}


@router.post("/events")
async def create_event(body: EventIn, ctx: Dict[str, str] = Depends(require_user)):
    event = get_service().create_event(ctx["user_id"], body)
    return {"data": event.to_dict()}


@router.put("/events")
async def update_event(body: EventUpdateIn, ctx: Dict[str, str] = Depends(require_user)):
    event = get_service().update_event(ctx["user_id"], body)
    return {"data": event.to_dict()}


@router.delete("/events/{event_id}")
async def remove_event(event_id: str, ctx: Dict[str, str] = Depends(require_user)):
    return {"data": {"success": get_service().remove_event(ctx["user_id"], event_id)}}


@router.post("/events/{event_id}/accept")
async def accept_event(event_id: str, body: AcceptIn, ctx: Dict[str, str] = Depends(require_user)):
    return {"data": {"accepted": get_service().respond(ctx["user_id"], event_id, body.accepted)}}


@router.get("/events/{event_id}/interested")
async def get_interested(event_id: str, ctx: Dict[str, str] = Depends(require_user)):
    return {"data": {"interested": get_service().get_interested(ctx["user_id"], event_id)}}


@router.post("/events/{event_id}/interested")
async def toggle_interested(event_id: str, ctx: Dict[str, str] = Depends(require_user)):
    return {"data": {"interested": get_service().toggle_interested(ctx["user_id"], event_id)}}


@router.get("/events/{event_id}/notification_setting")
async def get_notification_setting(event_id: str, ctx: Dict[str, str] = Depends(require_user)):
    value = get_service().get_notification(ctx["user_id"], event_id)
    return {"data": {"notification_setting": value}}


@router.post("/events/{event_id}/notification_setting")
async def set_notification_setting(event_id: str, body: NotificationSettingIn, ctx: Dict[str, str] = Depends(require_user)):
    get_service().set_notification(ctx["user_id"], event_id, body.notification_setting)
    return {"data": {"success": True}}
