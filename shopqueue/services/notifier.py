"""Fan-out of appointment change notices to live observers.

The notifier is process local: subscribers that connect later do not see
earlier events and are expected to re-fetch full state when they (re)connect.
Every subscriber receives every event; a subscription applies its own predicate
when the event is read. A subscriber that falls behind by more than its queue
size loses its backlog and receives a single ``resync`` event instead.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Callable, Dict, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from shopqueue.clients.store import RecordStore, eq
from shopqueue.clock import Clock
from shopqueue.schemas.events import ChangeEvent
from shopqueue.services.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

EventPredicate = Callable[[ChangeEvent], bool]

_CLOSED = object()


def any_change(event: ChangeEvent) -> bool:
    return True


def for_provider(provider_name: str) -> EventPredicate:
    """Match events for one provider plus shop-wide events that carry no provider."""

    def _predicate(event: ChangeEvent) -> bool:
        return event.provider_name is None or event.provider_name == provider_name

    return _predicate


def for_date(day: date) -> EventPredicate:
    def _predicate(event: ChangeEvent) -> bool:
        return event.date is None or event.date == day

    return _predicate


class Subscription:
    def __init__(
        self,
        notifier: "ChangeNotifier",
        predicate: EventPredicate | None = None,
        *,
        maxsize: int = 256,
    ) -> None:
        self._notifier = notifier
        self._predicate = predicate or any_change
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _deliver(self, event: ChangeEvent) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            while not self._queue.empty():
                self._queue.get_nowait()
                self.dropped += 1
            self._queue.put_nowait(
                ChangeEvent(kind="resync", occurred_at=event.occurred_at)
            )
            logger.warning(
                "Subscriber fell behind; dropped %s queued events and requested resync",
                self.dropped,
            )

    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self, timeout: float | None = None) -> Optional[ChangeEvent]:
        """Next matching event, or ``None`` when ``timeout`` elapses first."""

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            remaining = None if deadline is None else max(deadline - loop.time(), 0)
            try:
                item = await asyncio.wait_for(self._queue.get(), remaining)
            except asyncio.TimeoutError:
                return None
            if item is _CLOSED:
                raise StopAsyncIteration
            if item.kind == "resync" or self._predicate(item):
                return item

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        self._notifier.unsubscribe(self)

    def _shutdown(self) -> None:
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)


class ChangeNotifier:
    """Single-writer, many-reader fan-out of :class:`ChangeEvent` notices."""

    def __init__(self, clock: Clock | None = None, *, queue_size: int = 256) -> None:
        self._clock = clock
        self._queue_size = queue_size
        self._subscribers: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: ChangeEvent) -> int:
        if event.occurred_at is None and self._clock is not None:
            event = event.model_copy(update={"occurred_at": self._clock.now().isoformat()})
        subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription._deliver(event)
        logger.debug(
            "Published %s event for appointment %s to %s subscribers",
            event.kind,
            event.appointment_id,
            len(subscribers),
        )
        return len(subscribers)

    def subscribe(self, predicate: EventPredicate | None = None) -> Subscription:
        subscription = Subscription(self, predicate, maxsize=self._queue_size)
        self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscribers.discard(subscription)
        subscription._shutdown()

    def close(self) -> None:
        for subscription in list(self._subscribers):
            self.unsubscribe(subscription)


class StoreChangeBridge:
    """Fold changes made by other writers of the record store into the notifier.

    Follows the store's change feed when it has one, otherwise polls today's
    appointment set and publishes ``resync`` whenever its fingerprint changes.
    Derived views are therefore at most one poll interval stale.
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: ChangeNotifier,
        clock: Clock,
        *,
        table: str,
        poll_interval: float = 5.0,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._table = table
        self._poll_interval = poll_interval
        self._fingerprint: Optional[frozenset] = None
        self._task: Optional[asyncio.Task] = None
        self.mode: Optional[str] = None

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="store-change-bridge")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.info("Store change bridge stopped")
        self._task = None

    async def run(self) -> None:
        if getattr(self._store, "supports_subscriptions", False):
            try:
                self.mode = "feed"
                await self._follow_feed()
                return
            except StoreUnavailableError as exc:
                logger.warning("Change feed unavailable, falling back to polling: %s", exc)
            except Exception:
                logger.exception("Change feed failed, falling back to polling")
        self.mode = "poll"
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Unexpected polling failure, waiting for next interval")
            await asyncio.sleep(self._poll_interval)

    async def _follow_feed(self) -> None:
        feed = self._store.subscribe(self._table, ("INSERT", "UPDATE", "DELETE"))
        async for change in feed:
            try:
                event = self.event_from_change(change)
            except (PydanticValidationError, KeyError, TypeError) as exc:
                logger.warning("Unreadable change %s, asking subscribers to resync: %s", change, exc)
                event = ChangeEvent(kind="resync", date=self._clock.now().date())
            self._notifier.publish(event)

    @staticmethod
    def event_from_change(change: Any) -> ChangeEvent:
        record: Dict[str, Any] = change.new or change.old or {}
        old: Dict[str, Any] = change.old or {}
        kind = "created" if change.event_type == "INSERT" else "transitioned"
        if change.event_type == "DELETE":
            kind = "resync"
        return ChangeEvent(
            kind=kind,
            provider_name=record.get("provider_name"),
            date=record.get("date"),
            appointment_id=str(record["id"]) if record.get("id") is not None else None,
            status=record.get("status"),
            previous_status=old.get("status"),
        )

    async def poll_once(self) -> bool:
        """Re-read today's appointments; publish ``resync`` if they changed since the last poll."""

        today = self._clock.now().date()
        try:
            rows = await self._store.find(self._table, [eq("date", today)])
        except StoreUnavailableError as exc:
            logger.warning("Polling the record store failed: %s", exc)
            return False
        fingerprint = frozenset(
            (str(row.get("id")), row.get("status"), row.get("time_slot")) for row in rows
        )
        changed = self._fingerprint is not None and fingerprint != self._fingerprint
        self._fingerprint = fingerprint
        if changed:
            self._notifier.publish(ChangeEvent(kind="resync", date=today))
        return changed
