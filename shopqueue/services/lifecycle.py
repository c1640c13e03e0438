from __future__ import annotations

import logging
from typing import Dict, Iterable, Tuple

from shopqueue.clients.store import RecordStore, StoreTables, eq, neq
from shopqueue.clock import Clock
from shopqueue.config import ShopConfig
from shopqueue.schemas.appointment import (
    Actor,
    Appointment,
    AppointmentStatus,
    TransitionEvent,
)
from shopqueue.schemas.events import ChangeEvent
from shopqueue.services.audit import AuditLog
from shopqueue.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from shopqueue.services.locks import KeyedLock
from shopqueue.services.notifier import ChangeNotifier

logger = logging.getLogger(__name__)

S = AppointmentStatus
E = TransitionEvent

TRANSITIONS: Dict[Tuple[AppointmentStatus, TransitionEvent], AppointmentStatus] = {
    (S.PENDING, E.CHECK_IN): S.CHECKED_IN,
    (S.CONFIRMED, E.CHECK_IN): S.CHECKED_IN,
    (S.CHECKED_IN, E.COMPLETE): S.COMPLETED,
    (S.PENDING, E.CANCEL): S.CANCELLED,
    (S.CONFIRMED, E.CANCEL): S.CANCELLED,
    (S.CHECKED_IN, E.CANCEL): S.CANCELLED,
}

_CAS_ATTEMPTS = 2


def next_status(current: AppointmentStatus, event: TransitionEvent) -> AppointmentStatus:
    """Target status for ``event`` from ``current``; terminal states accept nothing."""

    try:
        return TRANSITIONS[(current, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Cannot {event.value} an appointment that is {current.value}",
            current_status=current.value,
            event=event.value,
        ) from None


class StatusStateMachine:
    """Applies lifecycle events to single appointments.

    Events for the same appointment are applied one at a time, in the order
    they acquire the appointment's lock. The store write is a compare-and-swap
    on the status that was read, so a concurrent writer elsewhere causes a
    re-read instead of a lost update.
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: ChangeNotifier,
        audit: AuditLog,
        clock: Clock,
        config: ShopConfig,
        *,
        tables: StoreTables,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._audit = audit
        self._clock = clock
        self._config = config
        self._table = tables.appointments
        self._locks = KeyedLock()

    async def get(self, appointment_id: str) -> Appointment:
        rows = await self._store.find(self._table, [eq("id", appointment_id)], limit=1)
        if not rows:
            raise NotFoundError(f"Appointment '{appointment_id}' not found")
        return Appointment.model_validate(rows[0])

    async def transition(
        self,
        appointment_id: str,
        event: TransitionEvent | str,
        actor: Actor,
        *,
        notify: bool = True,
        only_from: Iterable[AppointmentStatus] | None = None,
    ) -> Appointment:
        event = TransitionEvent(event)
        async with self._locks.hold(appointment_id):
            for attempt in range(1, _CAS_ATTEMPTS + 1):
                current = await self.get(appointment_id)
                if only_from is not None and current.status not in tuple(only_from):
                    raise InvalidTransitionError(
                        f"Appointment '{appointment_id}' is {current.status.value}, not eligible for {event.value}",
                        current_status=current.status.value,
                        event=event.value,
                    )
                target = next_status(current.status, event)
                await self._check_preconditions(current, event, actor)
                rows = await self._store.update(
                    self._table,
                    [eq("id", appointment_id), eq("status", current.status.value)],
                    self._patch(target, actor),
                )
                if rows:
                    break
                logger.info(
                    "Appointment %s changed while applying %s (attempt %s)",
                    appointment_id,
                    event.value,
                    attempt,
                )
            else:
                raise ConflictError(
                    f"Appointment '{appointment_id}' is being modified concurrently; try again"
                )

        updated = Appointment.model_validate(rows[0])
        self._audit.record(
            actor=actor.name,
            role=actor.role,
            action=event.value,
            appointment_id=updated.id,
            from_status=current.status.value,
            to_status=updated.status.value,
            details=f"{updated.customer_name} with {updated.provider_name} {updated.date} {updated.time_slot}",
            level="warning" if actor.role == "system" else "info",
            timestamp=updated.updated_at or self._clock.now().isoformat(),
        )
        if notify:
            self._notifier.publish(
                ChangeEvent(
                    kind="transitioned",
                    provider_name=updated.provider_name,
                    date=updated.date,
                    appointment_id=updated.id,
                    status=updated.status.value,
                    previous_status=current.status.value,
                )
            )
        return updated

    async def check_in(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self.transition(appointment_id, E.CHECK_IN, actor)

    async def complete(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self.transition(appointment_id, E.COMPLETE, actor)

    async def cancel(self, appointment_id: str, actor: Actor) -> Appointment:
        return await self.transition(appointment_id, E.CANCEL, actor)

    async def _check_preconditions(
        self, current: Appointment, event: TransitionEvent, actor: Actor
    ) -> None:
        if event is not E.CHECK_IN:
            return

        today = self._clock.now().date()
        if current.date != today and not actor.is_admin:
            raise ValidationError(
                f"Check-in is only open on the day of the appointment ({current.date.isoformat()})"
            )

        serving = await self._store.find(
            self._table,
            [
                eq("provider_name", current.provider_name),
                eq("date", current.date),
                eq("status", S.CHECKED_IN.value),
                neq("id", current.id),
            ],
        )
        if not serving:
            return
        if self._config.single_checked_in_per_provider:
            raise ConflictError(
                f"{current.provider_name} already has a checked-in customer"
            )
        logger.warning(
            "%s now has %s checked-in customers on %s",
            current.provider_name,
            len(serving) + 1,
            current.date,
        )

    def _patch(self, target: AppointmentStatus, actor: Actor) -> Dict[str, str]:
        now = self._clock.now().isoformat()
        patch = {"status": target.value, "updated_at": now}
        if target is S.CHECKED_IN:
            patch["checked_in_at"] = now
        elif target is S.COMPLETED:
            patch["completed_at"] = now
        elif target is S.CANCELLED:
            patch["cancelled_at"] = now
            patch["cancelled_by"] = actor.name
        return patch
