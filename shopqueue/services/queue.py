"""Queue position and wait-time estimates.

``estimate_queue`` and ``estimate_shop_wait`` are pure functions of an
appointment snapshot. ``QueueService`` reads exactly one snapshot from the
store per estimate so a result never mixes two points in time.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from shopqueue.clients.store import RecordStore, StoreTables, eq, in_
from shopqueue.clock import Clock
from shopqueue.config import ShopConfig
from shopqueue.schemas.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from shopqueue.schemas.queue import CustomerTicket, QueueEntry, QueueEstimate, ShopWaitEstimate

logger = logging.getLogger(__name__)


def _dedupe(snapshot: Iterable[Appointment]) -> List[Appointment]:
    by_id: Dict[str, Appointment] = {}
    for appointment in snapshot:
        by_id[appointment.id] = appointment
    return list(by_id.values())


def daily_queue(snapshot: Iterable[Appointment], provider_name: str, day: date) -> List[Appointment]:
    """Active appointments for one provider and day, earliest slot first."""

    active = [
        appointment
        for appointment in _dedupe(snapshot)
        if appointment.provider_name == provider_name
        and appointment.date == day
        and appointment.status in ACTIVE_STATUSES
    ]
    active.sort(key=lambda item: (item.time_slot, item.created_at or "", item.id))
    return active


def estimate_queue(
    snapshot: Iterable[Appointment],
    provider_name: str,
    day: date,
    config: ShopConfig,
) -> QueueEstimate:
    entries: List[QueueEntry] = []
    minutes_ahead = 0
    for index, appointment in enumerate(daily_queue(snapshot, provider_name, day)):
        if config.wait_strategy == "service_duration":
            wait = minutes_ahead
            minutes_ahead += appointment.duration_minutes or config.per_person_wait_minutes
        else:
            wait = index * config.per_person_wait_minutes
        entries.append(
            QueueEntry(
                appointment_id=appointment.id,
                customer_name=appointment.customer_name,
                time_slot=appointment.time_slot,
                status=appointment.status,
                position=index + 1,
                estimated_wait_minutes=wait,
            )
        )
    return QueueEstimate(provider_name=provider_name, date=day, entries=entries)


def estimate_shop_wait(
    snapshot: Iterable[Appointment], day: date, config: ShopConfig
) -> ShopWaitEstimate:
    """Walk-in wait: only customers physically checked in count, future bookings do not."""

    checked_in = sum(
        1
        for appointment in _dedupe(snapshot)
        if appointment.date == day and appointment.status == AppointmentStatus.CHECKED_IN
    )
    return ShopWaitEstimate(
        date=day,
        checked_in_count=checked_in,
        estimated_wait_minutes=checked_in * config.per_person_wait_minutes,
    )


class QueueService:
    def __init__(
        self,
        store: RecordStore,
        clock: Clock,
        config: ShopConfig,
        *,
        tables: StoreTables,
    ) -> None:
        self._store = store
        self._clock = clock
        self._config = config
        self._table = tables.appointments

    async def _snapshot(self, day: date, provider_name: Optional[str] = None) -> List[Appointment]:
        filters = [eq("date", day), in_("status", [status.value for status in ACTIVE_STATUSES])]
        if provider_name is not None:
            filters.append(eq("provider_name", provider_name))
        rows = await self._store.find(self._table, filters, order_by=["time_slot"])
        return [Appointment.model_validate(row) for row in rows]

    async def estimate(self, provider_name: str, day: date | None = None) -> QueueEstimate:
        day = day or self._clock.now().date()
        snapshot = await self._snapshot(day, provider_name)
        return estimate_queue(snapshot, provider_name, day, self._config)

    async def shop_wait(self, day: date | None = None) -> ShopWaitEstimate:
        day = day or self._clock.now().date()
        snapshot = await self._snapshot(day)
        return estimate_shop_wait(snapshot, day, self._config)

    async def ticket(self, customer_name: str) -> CustomerTicket:
        """The customer's next active appointment and where it sits in its provider's queue."""

        rows = await self._store.find(
            self._table,
            [
                eq("customer_name", customer_name),
                in_("status", [status.value for status in ACTIVE_STATUSES]),
            ],
            order_by=["date", "time_slot"],
        )
        if not rows:
            return CustomerTicket(
                customer_name=customer_name, message="No active appointment"
            )

        appointment = Appointment.model_validate(rows[0])
        estimate = await self.estimate(appointment.provider_name, appointment.date)
        entry = estimate.position_of(appointment.id)
        if entry is None:
            logger.info("Appointment %s left the queue between reads", appointment.id)
            return CustomerTicket(customer_name=customer_name, appointment=appointment)
        return CustomerTicket(
            customer_name=customer_name,
            appointment=appointment,
            position=entry.position,
            estimated_wait_minutes=entry.estimated_wait_minutes,
        )
