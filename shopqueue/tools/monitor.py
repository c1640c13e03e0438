from __future__ import annotations

import logging
from datetime import date
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from shopqueue.dependencies.services import get_engine, get_monitor_service
from shopqueue.schemas.monitor import DayScheduleResponse, MonitorBoard, WeekLoadResponse
from shopqueue.services import BookingEngine, MonitorService
from shopqueue.services.exceptions import ServiceError
from shopqueue.services.notifier import Subscription, any_change, for_provider
from shopqueue.tools.errors import to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


def format_sse(event: str, payload: BaseModel) -> str:
    return f"event: {event}\ndata: {payload.model_dump_json()}\n\n"


async def event_stream(
    request: Request,
    monitor: MonitorService,
    subscription: Subscription,
    *,
    keepalive: float,
) -> AsyncIterator[str]:
    """Board snapshot first, then one frame per change notice until the client leaves."""

    try:
        yield format_sse("snapshot", await monitor.board())
        while not await request.is_disconnected():
            try:
                event = await subscription.get(timeout=keepalive)
            except StopAsyncIteration:
                return
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield format_sse(event.kind, event)
    finally:
        subscription.close()
        logger.info("Monitor stream closed")


@router.get("/board", response_model=MonitorBoard)
async def monitor_board(
    day: Optional[date] = Query(None, alias="date"),
    service: MonitorService = Depends(get_monitor_service),
):
    try:
        return await service.board(day)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/week/{provider_name}", response_model=WeekLoadResponse)
async def week_load(
    provider_name: str,
    start: Optional[date] = None,
    service: MonitorService = Depends(get_monitor_service),
):
    try:
        return await service.week_load(provider_name, start)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/schedule/{provider_name}", response_model=DayScheduleResponse)
async def day_schedule(
    provider_name: str,
    day: Optional[date] = Query(None, alias="date"),
    service: MonitorService = Depends(get_monitor_service),
):
    try:
        return await service.schedule(provider_name, day)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/stream")
async def monitor_stream(
    request: Request,
    provider_name: Optional[str] = None,
    engine: BookingEngine = Depends(get_engine),
):
    predicate = for_provider(provider_name) if provider_name else any_change
    subscription = engine.notifier.subscribe(predicate)
    logger.info("Monitor stream opened (provider=%s)", provider_name or "*")
    return StreamingResponse(
        event_stream(
            request,
            engine.monitor,
            subscription,
            keepalive=engine.settings.stream_keepalive_seconds,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )
