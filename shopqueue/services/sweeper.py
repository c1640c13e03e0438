from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from shopqueue.clients.store import RecordStore, StoreTables, in_
from shopqueue.clock import Clock
from shopqueue.config import ShopConfig
from shopqueue.schemas.appointment import (
    ACTIVE_STATUSES,
    RESERVED_STATUSES,
    SCHEDULER_ACTOR,
    Appointment,
    TransitionEvent,
)
from shopqueue.schemas.events import ChangeEvent
from shopqueue.services.audit import AuditLog
from shopqueue.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ServiceError,
    StoreUnavailableError,
)
from shopqueue.services.lifecycle import StatusStateMachine
from shopqueue.services.notifier import ChangeNotifier
from shopqueue.services.reservation import ReservationGuard

logger = logging.getLogger(__name__)


class SweepResult(BaseModel):
    swept_at: str
    checked: int = 0
    cancelled_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)
    withdrawn_ids: List[str] = Field(default_factory=list)
    skipped: int = 0


class ExpirationSweeper:
    """Cancels reservations whose slot started more than the grace period ago without a check-in.

    With a guard attached, each sweep also withdraws duplicate active records
    for one slot that a failed post-insert withdrawal left behind.
    """

    def __init__(
        self,
        store: RecordStore,
        lifecycle: StatusStateMachine,
        notifier: ChangeNotifier,
        audit: AuditLog,
        clock: Clock,
        config: ShopConfig,
        *,
        tables: StoreTables,
        interval: float = 30.0,
        guard: Optional[ReservationGuard] = None,
    ) -> None:
        self._store = store
        self._lifecycle = lifecycle
        self._notifier = notifier
        self._audit = audit
        self._clock = clock
        self._config = config
        self._table = tables.appointments
        self._tz = ZoneInfo(config.timezone)
        self._interval = interval
        self._guard = guard
        self._task: Optional[asyncio.Task] = None

    @property
    def grace_period(self) -> timedelta:
        return timedelta(minutes=self._config.grace_period_minutes)

    def is_expired(self, appointment: Appointment, now: datetime) -> bool:
        return now > appointment.scheduled_at(self._tz) + self.grace_period

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        now = now or self._clock.now()
        rows = await self._store.find(
            self._table, [in_("status", [status.value for status in ACTIVE_STATUSES])]
        )
        result = SweepResult(swept_at=now.isoformat())
        active: List[Appointment] = []
        for row in rows:
            try:
                active.append(Appointment.model_validate(row))
            except PydanticValidationError as exc:
                logger.warning("Skipping malformed appointment %s: %s", row.get("id"), exc)
                result.skipped += 1

        if self._guard is not None:
            try:
                result.withdrawn_ids = await self._guard.withdraw_duplicates(active)
            except StoreUnavailableError as exc:
                logger.warning("Could not repair duplicate reservations this tick: %s", exc)

        candidates = [
            item
            for item in active
            if item.status in RESERVED_STATUSES and item.id not in result.withdrawn_ids
        ]
        result.checked = len(candidates)
        expired = [item for item in candidates if self.is_expired(item, now)]

        for appointment in expired:
            try:
                await self._lifecycle.transition(
                    appointment.id,
                    TransitionEvent.CANCEL,
                    SCHEDULER_ACTOR,
                    notify=False,
                    only_from=RESERVED_STATUSES,
                )
            except (InvalidTransitionError, NotFoundError) as exc:
                logger.info("Skipping %s, it changed before the sweep reached it: %s", appointment.id, exc)
                continue
            except (StoreUnavailableError, ConflictError) as exc:
                logger.warning("Could not cancel %s this tick: %s", appointment.id, exc)
                result.failed_ids.append(appointment.id)
                continue
            result.cancelled_ids.append(appointment.id)

        if result.cancelled_ids:
            self._audit.record(
                actor=SCHEDULER_ACTOR.name,
                role=SCHEDULER_ACTOR.role,
                action="auto_cancel",
                details=(
                    f"Cancelled {len(result.cancelled_ids)} reservations not checked in "
                    f"within {self._config.grace_period_minutes} minutes "
                    f"(IDs: {', '.join(result.cancelled_ids)})"
                ),
                level="warning",
                timestamp=result.swept_at,
            )
            self._notifier.publish(
                ChangeEvent(
                    kind="swept",
                    appointment_ids=list(result.cancelled_ids),
                    status="cancelled",
                    occurred_at=result.swept_at,
                )
            )
            logger.info("Sweep cancelled %s expired appointments", len(result.cancelled_ids))
        if result.withdrawn_ids:
            self._notifier.publish(
                ChangeEvent(
                    kind="swept",
                    appointment_ids=list(result.withdrawn_ids),
                    status="cancelled",
                    occurred_at=result.swept_at,
                )
            )
            logger.warning("Sweep withdrew %s duplicate reservations", len(result.withdrawn_ids))
        return result

    async def run_forever(self) -> None:
        while True:
            try:
                await self.sweep()
            except ServiceError as exc:
                logger.warning("Sweep failed, waiting for next tick: %s", exc)
            except Exception:
                logger.exception("Unexpected sweep failure, waiting for next tick")
            await asyncio.sleep(self._interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever(), name="expiration-sweeper")
            logger.info("Expiration sweeper started (every %ss)", self._interval)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Expiration sweeper stopped")
        self._task = None
