from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from teamcal.core.errors import CalendarError
from teamcal.core.settings import S
from teamcal.metrics import METRICS_ENABLED, metrics_endpoint, metrics_middleware, set_app_info
from teamcal.routers.events import router as events_router
from teamcal.routers.schedule import router as schedule_router
from teamcal.routers.settings import router as settings_router
from teamcal.services.events import migrate_legacy_events
from teamcal.services.reminders import get_job, run_forever

logger = logging.getLogger(__name__)


async def calendar_error_handler(request: Request, exc: CalendarError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@asynccontextmanager
async def lifespan(app: FastAPI):
    migrate_legacy_events()
    stop = asyncio.Event()
    task = None
    if S.reminders_enabled:
        task = asyncio.create_task(run_forever(get_job(), S.reminder_tick_seconds, stop))
        logger.info("Reminder job started, tick every %ss", S.reminder_tick_seconds)
    try:
        yield
    finally:
        stop.set()
        if task is not None:
            await task


def create_app() -> FastAPI:
    logging.basicConfig(level=S.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="Team Calendar", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(CalendarError, calendar_error_handler)

    if METRICS_ENABLED:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(events_router)
    app.include_router(schedule_router)
    app.include_router(settings_router)

    return app

app = create_app()
