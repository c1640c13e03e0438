"""Conflict-free slot reservation.

Reservations for the same (provider, date, time slot) are serialised through a
per-key lock so that the read-then-insert sequence cannot interleave inside
this process. Writers in other processes are covered by the store's unique
active-slot constraint where it has one, and otherwise by re-reading the key
after the insert: if more than one active record is visible, every record but
the earliest cancels itself and its caller gets a ``ConflictError``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Tuple
from zoneinfo import ZoneInfo

from shopqueue.clients.store import RecordStore, StoreTables, eq, in_
from shopqueue.clock import Clock
from shopqueue.config import ShopConfig
from shopqueue.schemas.appointment import (
    ACTIVE_STATUSES,
    GUARD_ACTOR,
    Appointment,
    AppointmentStatus,
    ReservationRequest,
    SlotAvailability,
    format_time_slot,
    parse_time_slot,
)
from shopqueue.schemas.directory import Provider, Service
from shopqueue.schemas.events import ChangeEvent
from shopqueue.services.audit import AuditLog
from shopqueue.services.directory import DirectoryService
from shopqueue.services.exceptions import (
    ConflictError,
    StoreUnavailableError,
    UniqueViolationError,
    ValidationError,
)
from shopqueue.services.locks import KeyedLock
from shopqueue.services.notifier import ChangeNotifier

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, str, str]

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def generate_slots(config: ShopConfig) -> List[str]:
    """Every bookable slot start between opening and closing time."""

    anchor = date(2000, 1, 1)
    current = datetime.combine(anchor, config.open_time)
    end = datetime.combine(anchor, config.close_time)
    step = timedelta(minutes=config.slot_minutes)
    slots: List[str] = []
    while current < end:
        slots.append(format_time_slot(current.time()))
        current += step
    return slots


def race_order(appointment: Appointment) -> Tuple[datetime, Tuple[int, int, str]]:
    """Sort key deciding which of several active records for one slot keeps it.

    Timestamps compare as instants, so writers in different UTC offsets order
    correctly. Numeric ids compare as numbers. Records without a timestamp sort last.
    """

    stamp = _LATEST
    if appointment.created_at:
        try:
            stamp = datetime.fromisoformat(appointment.created_at.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable created_at %r on %s", appointment.created_at, appointment.id)
        else:
            if stamp.tzinfo is None:
                stamp = stamp.replace(tzinfo=timezone.utc)
    ident = str(appointment.id)
    return stamp, ((0, int(ident), "") if ident.isdigit() else (1, 0, ident))


class ReservationGuard:
    def __init__(
        self,
        store: RecordStore,
        directory: DirectoryService,
        notifier: ChangeNotifier,
        audit: AuditLog,
        clock: Clock,
        config: ShopConfig,
        *,
        tables: StoreTables,
    ) -> None:
        self._store = store
        self._directory = directory
        self._notifier = notifier
        self._audit = audit
        self._clock = clock
        self._config = config
        self._table = tables.appointments
        self._tz = ZoneInfo(config.timezone)
        self._locks = KeyedLock()

    async def reserve(self, request: ReservationRequest) -> Appointment:
        provider, service, slot = await self._validate(request)
        key: SlotKey = (provider.name, request.date.isoformat(), slot)
        logger.info(
            "Reserving %s %s %s for %s", provider.name, key[1], slot, request.customer_name
        )

        async with self._locks.hold(key):
            if await self._active_for_slot(key):
                raise ConflictError(
                    "Slot already reserved",
                    suggested_slots=await self._suggest(provider.name, request.date, slot),
                )

            now = self._clock.now().isoformat()
            record = {
                "customer_name": request.customer_name,
                "provider_name": provider.name,
                "service_name": service.name,
                "price": service.price,
                "duration_minutes": service.duration_minutes,
                "date": request.date.isoformat(),
                "time_slot": slot,
                "status": AppointmentStatus.CONFIRMED.value,
                "created_at": now,
                "updated_at": now,
            }
            try:
                created = await self._store.insert(self._table, record)
            except UniqueViolationError as exc:
                logger.info("Store rejected duplicate reservation for %s", key)
                raise ConflictError(
                    "Slot already reserved",
                    suggested_slots=await self._suggest(provider.name, request.date, slot),
                    cause=exc,
                ) from exc
            appointment = Appointment.model_validate(created)

            if self._config.verify_after_insert:
                await self._verify_winner(key, appointment)

        self._audit.record(
            actor=request.customer_name,
            role="customer",
            action="booked",
            appointment_id=appointment.id,
            to_status=appointment.status.value,
            details=f"{provider.name} {key[1]} {slot} ({service.name})",
            timestamp=appointment.created_at or now,
        )
        self._notifier.publish(
            ChangeEvent(
                kind="created",
                provider_name=appointment.provider_name,
                date=appointment.date,
                appointment_id=appointment.id,
                status=appointment.status.value,
            )
        )
        return appointment

    async def available_slots(self, provider_name: str, day: date) -> List[SlotAvailability]:
        rows = await self._store.find(
            self._table,
            [
                eq("provider_name", provider_name),
                eq("date", day),
                in_("status", [status.value for status in ACTIVE_STATUSES]),
            ],
        )
        booked: Dict[str, str] = {}
        for row in rows:
            booked[format_time_slot(parse_time_slot(row["time_slot"]))] = str(row["id"])
        now = self._clock.now()
        result: List[SlotAvailability] = []
        for slot in generate_slots(self._config):
            if slot in booked:
                result.append(
                    SlotAvailability(time_slot=slot, state="booked", appointment_id=booked[slot])
                )
            elif self._scheduled_at(day, slot) < now:
                result.append(SlotAvailability(time_slot=slot, state="past"))
            else:
                result.append(SlotAvailability(time_slot=slot, state="available"))
        return result

    def _scheduled_at(self, day: date, slot: str) -> datetime:
        return datetime.combine(day, parse_time_slot(slot), tzinfo=self._tz)

    async def _validate(self, request: ReservationRequest) -> Tuple[Provider, Service, str]:
        missing = [
            field
            for field in ("customer_name", "provider_name", "service_name")
            if not getattr(request, field)
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        try:
            slot_time = parse_time_slot(request.time_slot)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        slot = format_time_slot(slot_time)

        if not (self._config.open_time <= slot_time < self._config.close_time):
            raise ValidationError(
                f"Slot {slot} is outside operating hours "
                f"{format_time_slot(self._config.open_time)}-{format_time_slot(self._config.close_time)}"
            )
        if slot not in generate_slots(self._config):
            raise ValidationError(
                f"Slot {slot} is not aligned to the {self._config.slot_minutes}-minute schedule"
            )
        if self._scheduled_at(request.date, slot) < self._clock.now():
            raise ValidationError(f"Slot {request.date.isoformat()} {slot} is in the past")

        provider = await self._directory.get_provider(request.provider_name)
        if provider is None:
            raise ValidationError(f"Unknown provider '{request.provider_name}'")
        if provider.status == "rest":
            raise ValidationError(f"{provider.name} is not taking bookings")
        if not provider.works_on(request.date.weekday()):
            raise ValidationError(
                f"{provider.name} does not work on {request.date.strftime('%A')}"
            )

        service = await self._directory.get_service(request.service_name)
        if service is None:
            raise ValidationError(f"Unknown service '{request.service_name}'")
        return provider, service, slot

    async def _active_for_slot(self, key: SlotKey) -> List[Appointment]:
        provider_name, day, slot = key
        rows = await self._store.find(
            self._table,
            [
                eq("provider_name", provider_name),
                eq("date", day),
                eq("time_slot", slot),
                in_("status", [status.value for status in ACTIVE_STATUSES]),
            ],
        )
        return [Appointment.model_validate(row) for row in rows]

    async def _verify_winner(self, key: SlotKey, mine: Appointment) -> None:
        contenders = await self._active_for_slot(key)
        if len(contenders) <= 1:
            return
        contenders.sort(key=race_order)
        winner = contenders[0]
        if winner.id == mine.id:
            return

        logger.warning(
            "Reservation race on %s: %s lost to %s, withdrawing", key, mine.id, winner.id
        )
        try:
            await self._withdraw(mine, winner.id)
        except StoreUnavailableError as exc:
            logger.warning("Retrying withdrawal of %s: %s", mine.id, exc)
            try:
                await self._withdraw(mine, winner.id)
            except StoreUnavailableError as retry_exc:
                logger.error(
                    "Could not withdraw %s, leaving it for the sweeper: %s", mine.id, retry_exc
                )
        raise ConflictError(
            "Slot already reserved",
            suggested_slots=await self._suggest(key[0], mine.date, key[2]),
        )

    async def _withdraw(self, loser: Appointment, winner_id: str) -> bool:
        now = self._clock.now().isoformat()
        updated = await self._store.update(
            self._table,
            [eq("id", loser.id), eq("status", loser.status.value)],
            {
                "status": AppointmentStatus.CANCELLED.value,
                "cancelled_at": now,
                "cancelled_by": GUARD_ACTOR.name,
                "updated_at": now,
            },
        )
        if not updated:
            return False
        self._audit.record(
            actor=GUARD_ACTOR.name,
            role=GUARD_ACTOR.role,
            action="withdrawn",
            appointment_id=loser.id,
            from_status=loser.status.value,
            to_status=AppointmentStatus.CANCELLED.value,
            details=f"Lost slot race to {winner_id}",
            level="warning",
            timestamp=now,
        )
        return True

    async def withdraw_duplicates(self, appointments: List[Appointment]) -> List[str]:
        """Cancel every active record sharing a slot except the earliest one, returning their ids."""

        groups: Dict[SlotKey, List[Appointment]] = {}
        for appointment in appointments:
            if appointment.status not in ACTIVE_STATUSES:
                continue
            key = (appointment.provider_name, appointment.date.isoformat(), appointment.time_slot)
            groups.setdefault(key, []).append(appointment)

        withdrawn: List[str] = []
        for key, contenders in groups.items():
            if len(contenders) <= 1:
                continue
            contenders.sort(key=race_order)
            winner = contenders[0]
            async with self._locks.hold(key):
                for loser in contenders[1:]:
                    logger.warning("Duplicate reservation on %s: withdrawing %s", key, loser.id)
                    if await self._withdraw(loser, winner.id):
                        withdrawn.append(loser.id)
        return withdrawn

    async def _suggest(
        self, provider_name: str, day: date, requested: str, limit: int = 3
    ) -> List[str]:
        slots = await self.available_slots(provider_name, day)
        target = parse_time_slot(requested)
        target_minutes = target.hour * 60 + target.minute

        def distance(item: SlotAvailability) -> Tuple[int, int]:
            value = parse_time_slot(item.time_slot)
            delta = value.hour * 60 + value.minute - target_minutes
            return abs(delta), 0 if delta > 0 else 1

        free = [item for item in slots if item.state == "available" and item.time_slot != requested]
        free.sort(key=distance)
        return [item.time_slot for item in free[:limit]]

    def held_keys(self) -> int:
        return len(self._locks)
