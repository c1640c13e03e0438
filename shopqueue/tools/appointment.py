from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from shopqueue.dependencies.services import get_appointment_service
from shopqueue.schemas.appointment import (
    Appointment,
    AppointmentListRequest,
    AppointmentListResponse,
    ReservationRequest,
    SlotListResponse,
    TransitionRequest,
)
from shopqueue.services import AppointmentService
from shopqueue.services.exceptions import ServiceError
from shopqueue.tools.errors import to_http_exception

router = APIRouter()


@router.post("/book", response_model=Appointment)
async def book_appointment(
    req: ReservationRequest,
    service: AppointmentService = Depends(get_appointment_service),
):
    try:
        return await service.book(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/list", response_model=AppointmentListResponse)
async def list_appointments(
    req: AppointmentListRequest,
    service: AppointmentService = Depends(get_appointment_service),
):
    try:
        return await service.list(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/slots", response_model=SlotListResponse)
async def list_slots(
    provider_name: str,
    day: date = Query(..., alias="date"),
    service: AppointmentService = Depends(get_appointment_service),
):
    try:
        return await service.slots(provider_name, day)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{appointment_id}", response_model=Appointment)
async def get_appointment(
    appointment_id: str,
    service: AppointmentService = Depends(get_appointment_service),
):
    try:
        return await service.get(appointment_id)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{appointment_id}/check-in", response_model=Appointment)
async def check_in_appointment(
    appointment_id: str,
    req: Optional[TransitionRequest] = None,
    service: AppointmentService = Depends(get_appointment_service),
):
    actor = (req or TransitionRequest()).actor()
    try:
        return await service.check_in(appointment_id, actor)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{appointment_id}/complete", response_model=Appointment)
async def complete_appointment(
    appointment_id: str,
    req: Optional[TransitionRequest] = None,
    service: AppointmentService = Depends(get_appointment_service),
):
    actor = (req or TransitionRequest(actor_name="provider", actor_role="provider")).actor()
    try:
        return await service.complete(appointment_id, actor)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{appointment_id}/cancel", response_model=Appointment)
async def cancel_appointment(
    appointment_id: str,
    req: Optional[TransitionRequest] = None,
    service: AppointmentService = Depends(get_appointment_service),
):
    actor = (req or TransitionRequest()).actor()
    try:
        return await service.cancel(appointment_id, actor)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
