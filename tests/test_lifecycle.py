import asyncio
from datetime import date

import pytest

from shopqueue.clients.store import StoreTables
from shopqueue.config import Settings
from shopqueue.schemas.appointment import (
    Actor,
    AppointmentStatus,
    ReservationRequest,
    TransitionEvent,
)
from shopqueue.services.engine import build_engine
from shopqueue.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from shopqueue.services.lifecycle import TRANSITIONS, next_status
from shopqueue.services.mock_store import InMemoryRecordStore

CUSTOMER = Actor(name="Jamie", role="customer")
BARBER = Actor(name="Marcus K.", role="provider")
ADMIN = Actor(name="owner", role="admin")


def _book(engine, customer="Jamie", slot="14:30", day=date(2025, 6, 5), provider="Marcus K."):
    return asyncio.run(
        engine.guard.reserve(
            ReservationRequest(
                customer_name=customer,
                provider_name=provider,
                service_name="Classic Cut",
                date=day,
                time_slot=slot,
            )
        )
    )


def test_transition_table_has_no_exits_from_terminal_states() -> None:
    sources = {source for source, _ in TRANSITIONS}

    assert AppointmentStatus.COMPLETED not in sources
    assert AppointmentStatus.CANCELLED not in sources
    assert next_status(AppointmentStatus.CONFIRMED, TransitionEvent.CHECK_IN) == AppointmentStatus.CHECKED_IN
    assert next_status(AppointmentStatus.CHECKED_IN, TransitionEvent.CANCEL) == AppointmentStatus.CANCELLED


def test_full_visit_stamps_each_step(engine, clock) -> None:
    appointment = _book(engine)

    clock.set(clock.now().replace(hour=14, minute=25))
    checked_in = asyncio.run(engine.lifecycle.check_in(appointment.id, CUSTOMER))
    clock.set(clock.now().replace(hour=15, minute=10))
    completed = asyncio.run(engine.lifecycle.complete(appointment.id, BARBER))

    assert checked_in.status == AppointmentStatus.CHECKED_IN
    assert checked_in.checked_in_at.startswith("2025-06-05T14:25")
    assert completed.status == AppointmentStatus.COMPLETED
    assert completed.completed_at.startswith("2025-06-05T15:10")

    actions = [entry.action for entry in engine.audit.recent()]
    assert actions == ["complete", "check_in", "booked"]


def test_check_in_on_completed_appointment_is_rejected(engine) -> None:
    appointment = _book(engine)
    asyncio.run(engine.lifecycle.check_in(appointment.id, CUSTOMER))
    completed = asyncio.run(engine.lifecycle.complete(appointment.id, BARBER))

    with pytest.raises(InvalidTransitionError) as excinfo:
        asyncio.run(engine.lifecycle.check_in(appointment.id, CUSTOMER))

    assert excinfo.value.current_status == "completed"
    assert excinfo.value.event == "check_in"
    assert asyncio.run(engine.lifecycle.get(appointment.id)) == completed


@pytest.mark.parametrize("event", ["check_in", "complete", "cancel"])
def test_cancelled_appointment_accepts_nothing(engine, event) -> None:
    appointment = _book(engine)
    asyncio.run(engine.lifecycle.cancel(appointment.id, CUSTOMER))

    with pytest.raises(InvalidTransitionError):
        asyncio.run(engine.lifecycle.transition(appointment.id, event, ADMIN))


def test_complete_requires_check_in(engine) -> None:
    appointment = _book(engine)

    with pytest.raises(InvalidTransitionError):
        asyncio.run(engine.lifecycle.complete(appointment.id, BARBER))


def test_cancel_records_who_cancelled(engine) -> None:
    appointment = _book(engine)

    cancelled = asyncio.run(engine.lifecycle.cancel(appointment.id, CUSTOMER))

    assert cancelled.status == AppointmentStatus.CANCELLED
    assert cancelled.cancelled_by == "Jamie"
    assert cancelled.cancelled_at is not None


def test_unknown_appointment_raises_not_found(engine) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(engine.lifecycle.cancel("APT-99999", CUSTOMER))


def test_check_in_only_on_the_appointment_day(engine) -> None:
    tomorrow = _book(engine, day=date(2025, 6, 6))

    with pytest.raises(ValidationError, match="day of the appointment"):
        asyncio.run(engine.lifecycle.check_in(tomorrow.id, CUSTOMER))

    admitted = asyncio.run(engine.lifecycle.check_in(tomorrow.id, ADMIN))
    assert admitted.status == AppointmentStatus.CHECKED_IN


def test_concurrent_check_ins_allowed_by_default(engine) -> None:
    first = _book(engine, customer="A", slot="14:30")
    second = _book(engine, customer="B", slot="15:15")

    asyncio.run(engine.lifecycle.check_in(first.id, CUSTOMER))
    again = asyncio.run(engine.lifecycle.check_in(second.id, CUSTOMER))

    assert again.status == AppointmentStatus.CHECKED_IN


def test_single_checked_in_policy_blocks_second_customer(make_engine) -> None:
    engine = make_engine(single_checked_in_per_provider=True)
    first = _book(engine, customer="A", slot="14:30")
    second = _book(engine, customer="B", slot="15:15")
    other_barber = _book(engine, customer="C", slot="15:15", provider="James L.")

    asyncio.run(engine.lifecycle.check_in(first.id, CUSTOMER))
    with pytest.raises(ConflictError):
        asyncio.run(engine.lifecycle.check_in(second.id, CUSTOMER))
    allowed = asyncio.run(engine.lifecycle.check_in(other_barber.id, CUSTOMER))

    assert asyncio.run(engine.lifecycle.get(second.id)).status == AppointmentStatus.CONFIRMED
    assert allowed.status == AppointmentStatus.CHECKED_IN


def test_events_on_one_appointment_apply_in_arrival_order(engine) -> None:
    appointment = _book(engine)
    asyncio.run(engine.lifecycle.check_in(appointment.id, CUSTOMER))

    async def scenario():
        return await asyncio.gather(
            engine.lifecycle.complete(appointment.id, BARBER),
            engine.lifecycle.cancel(appointment.id, CUSTOMER),
            return_exceptions=True,
        )

    completed, cancelled = asyncio.run(scenario())

    assert completed.status == AppointmentStatus.COMPLETED
    assert isinstance(cancelled, InvalidTransitionError)


class InterferingStore(InMemoryRecordStore):
    """Applies ``interference`` to the row just before each conditional update."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.interference = []

    async def update(self, table, filters, patch):
        if self.interference and table == self.tables.appointments:
            target_id = next(item.value for item in filters if item.column == "id")
            changes = self.interference.pop(0)
            for row in self._rows[table].values():
                if str(row["id"]) == str(target_id):
                    row.update(changes)
        return await super().update(table, filters, patch)


def _engine_with(store, clock):
    return build_engine(
        Settings(use_mock_data=True, seed_demo_data=False, enable_sweeper=False),
        clock=clock,
        store=store,
    )


def test_outside_writer_change_is_detected_and_revalidated(clock) -> None:
    store = InterferingStore(StoreTables())
    engine = _engine_with(store, clock)
    appointment = _book(engine)
    store.interference = [{"status": "cancelled"}]

    with pytest.raises(InvalidTransitionError):
        asyncio.run(engine.lifecycle.check_in(appointment.id, CUSTOMER))

    assert asyncio.run(engine.lifecycle.get(appointment.id)).status == AppointmentStatus.CANCELLED


def test_outside_writer_flapping_status_gives_up_with_conflict(clock) -> None:
    store = InterferingStore(StoreTables())
    engine = _engine_with(store, clock)
    appointment = _book(engine)
    # Each attempt reads "confirmed" but finds "pending" at write time, and vice versa
    store.interference = [{"status": "pending"}, {"status": "confirmed"}]

    with pytest.raises(ConflictError):
        asyncio.run(engine.lifecycle.check_in(appointment.id, CUSTOMER))


def test_transition_publishes_change_event(engine) -> None:
    appointment = _book(engine)

    async def scenario():
        subscription = engine.notifier.subscribe()
        await engine.lifecycle.check_in(appointment.id, CUSTOMER)
        event = await subscription.get(timeout=1)
        subscription.close()
        return event

    event = asyncio.run(scenario())

    assert event.kind == "transitioned"
    assert event.status == "checked_in"
    assert event.previous_status == "confirmed"
