from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, List

from shopqueue.clients.store import RecordStore, StoreTables, eq, in_, neq
from shopqueue.clock import Clock
from shopqueue.config import ShopConfig
from shopqueue.schemas.appointment import Appointment, AppointmentStatus
from shopqueue.schemas.monitor import (
    DayLoad,
    DayLoadLevel,
    DayScheduleResponse,
    MonitorBoard,
    ProviderBoard,
    WeekLoadResponse,
)
from shopqueue.services.directory import DirectoryService
from shopqueue.services.queue import daily_queue, estimate_shop_wait
from shopqueue.services.reservation import ReservationGuard, generate_slots

logger = logging.getLogger(__name__)

BUSY_RATIO = 0.5
FULL_RATIO = 0.8


def load_level(booked: int, capacity: int) -> DayLoadLevel:
    if capacity <= 0:
        return "full"
    ratio = booked / capacity
    if ratio >= FULL_RATIO:
        return "full"
    if ratio >= BUSY_RATIO:
        return "busy"
    return "free"


class MonitorService:
    """Read-side aggregations for the public monitor board and the admin dashboard."""

    def __init__(
        self,
        store: RecordStore,
        directory: DirectoryService,
        guard: ReservationGuard,
        clock: Clock,
        config: ShopConfig,
        *,
        tables: StoreTables,
    ) -> None:
        self._store = store
        self._directory = directory
        self._guard = guard
        self._clock = clock
        self._config = config
        self._table = tables.appointments

    async def board(self, day: date | None = None) -> MonitorBoard:
        day = day or self._clock.now().date()
        logger.info("Building monitor board for %s", day)
        providers = [
            provider
            for provider in await self._directory.list_providers()
            if provider.status != "rest"
        ]
        rows = await self._store.find(
            self._table,
            [
                eq("date", day),
                in_(
                    "status",
                    [
                        AppointmentStatus.PENDING.value,
                        AppointmentStatus.CONFIRMED.value,
                        AppointmentStatus.CHECKED_IN.value,
                        AppointmentStatus.COMPLETED.value,
                    ],
                ),
            ],
            order_by=["time_slot"],
        )
        snapshot = [Appointment.model_validate(row) for row in rows]

        boards: List[ProviderBoard] = []
        for provider in providers:
            queue = daily_queue(snapshot, provider.name, day)
            current = next(
                (item for item in queue if item.status == AppointmentStatus.CHECKED_IN), None
            )
            waiting = [item for item in queue if current is None or item.id != current.id]
            boards.append(ProviderBoard(provider=provider, current=current, waiting=waiting))

        total_waiting = sum(1 for item in snapshot if item.is_active)
        total_completed = sum(
            1 for item in snapshot if item.status == AppointmentStatus.COMPLETED
        )
        walk_in = estimate_shop_wait(snapshot, day, self._config)
        return MonitorBoard(
            date=day,
            generated_at=self._clock.now().isoformat(),
            providers=boards,
            total_waiting=total_waiting,
            total_completed=total_completed,
            walk_in_wait_minutes=walk_in.estimated_wait_minutes,
        )

    async def week_load(
        self, provider_name: str, start: date | None = None, days: int = 7
    ) -> WeekLoadResponse:
        start = start or self._clock.now().date()
        window = [start + timedelta(days=offset) for offset in range(days)]
        rows = await self._store.find(
            self._table,
            [
                eq("provider_name", provider_name),
                in_("date", window),
                neq("status", AppointmentStatus.CANCELLED.value),
            ],
        )
        counts: Dict[str, int] = {}
        for row in rows:
            counts[str(row["date"])] = counts.get(str(row["date"]), 0) + 1

        capacity = len(generate_slots(self._config))
        return WeekLoadResponse(
            provider_name=provider_name,
            days=[
                DayLoad(
                    date=day,
                    booked=counts.get(day.isoformat(), 0),
                    capacity=capacity,
                    level=load_level(counts.get(day.isoformat(), 0), capacity),
                )
                for day in window
            ],
        )

    async def schedule(self, provider_name: str, day: date | None = None) -> DayScheduleResponse:
        day = day or self._clock.now().date()
        slots = await self._guard.available_slots(provider_name, day)
        return DayScheduleResponse(provider_name=provider_name, date=day, slots=slots)
