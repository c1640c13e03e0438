from __future__ import annotations

import logging
from typing import List

from shopqueue.clients.store import Filter, RecordStore, StoreTables, eq, in_
from shopqueue.schemas.appointment import (
    Actor,
    Appointment,
    AppointmentListRequest,
    AppointmentListResponse,
    ReservationRequest,
    SlotListResponse,
)
from shopqueue.services.lifecycle import StatusStateMachine
from shopqueue.services.reservation import ReservationGuard

logger = logging.getLogger(__name__)


class AppointmentService:
    """Customer and staff facing appointment operations."""

    def __init__(
        self,
        store: RecordStore,
        guard: ReservationGuard,
        lifecycle: StatusStateMachine,
        *,
        tables: StoreTables,
    ) -> None:
        self._store = store
        self._guard = guard
        self._lifecycle = lifecycle
        self._table = tables.appointments

    async def book(self, request: ReservationRequest) -> Appointment:
        logger.info(
            "Booking %s with %s on %s at %s",
            request.customer_name,
            request.provider_name,
            request.date,
            request.time_slot,
        )
        return await self._guard.reserve(request)

    async def list(self, request: AppointmentListRequest) -> AppointmentListResponse:
        filters: List[Filter] = []
        if request.provider_name:
            filters.append(eq("provider_name", request.provider_name))
        if request.customer_name:
            filters.append(eq("customer_name", request.customer_name))
        if request.date:
            filters.append(eq("date", request.date))
        if request.status:
            filters.append(in_("status", [status.value for status in request.status]))

        rows = await self._store.find(
            self._table, filters, order_by=["date", "time_slot", "created_at"]
        )
        start = (request.page - 1) * request.page_size
        page = rows[start : start + request.page_size]
        return AppointmentListResponse(
            total=len(rows),
            page=request.page,
            page_size=request.page_size,
            items=[Appointment.model_validate(row) for row in page],
        )

    async def get(self, appointment_id: str) -> Appointment:
        return await self._lifecycle.get(appointment_id)

    async def slots(self, provider_name: str, day) -> SlotListResponse:
        slots = await self._guard.available_slots(provider_name, day)
        return SlotListResponse(provider_name=provider_name, date=day, slots=slots)

    async def check_in(self, appointment_id: str, actor: Actor) -> Appointment:
        logger.info("%s checking in %s", actor.name, appointment_id)
        return await self._lifecycle.check_in(appointment_id, actor)

    async def complete(self, appointment_id: str, actor: Actor) -> Appointment:
        logger.info("%s completing %s", actor.name, appointment_id)
        return await self._lifecycle.complete(appointment_id, actor)

    async def cancel(self, appointment_id: str, actor: Actor) -> Appointment:
        logger.info("%s cancelling %s", actor.name, appointment_id)
        return await self._lifecycle.cancel(appointment_id, actor)
