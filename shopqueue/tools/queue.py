from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from shopqueue.dependencies.services import get_queue_service
from shopqueue.schemas.queue import CustomerTicket, QueueEstimate, ShopWaitEstimate
from shopqueue.services import QueueService
from shopqueue.services.exceptions import ServiceError
from shopqueue.tools.errors import to_http_exception

router = APIRouter()


@router.get("/shop-wait", response_model=ShopWaitEstimate)
async def shop_wait(
    day: Optional[date] = Query(None, alias="date"),
    service: QueueService = Depends(get_queue_service),
):
    try:
        return await service.shop_wait(day)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/ticket/{customer_name}", response_model=CustomerTicket)
async def customer_ticket(
    customer_name: str,
    service: QueueService = Depends(get_queue_service),
):
    try:
        return await service.ticket(customer_name)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{provider_name}", response_model=QueueEstimate)
async def provider_queue(
    provider_name: str,
    day: Optional[date] = Query(None, alias="date"),
    service: QueueService = Depends(get_queue_service),
):
    try:
        return await service.estimate(provider_name, day)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
