"""Wiring for the booking engine.

Every component receives the same store, clock, notifier and audit log so that
writes through one component are immediately visible to the read models of
the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from shopqueue.clients.store import RecordStore, RemoteRecordStore, StoreTables
from shopqueue.clock import Clock, SystemClock
from shopqueue.config import Settings, ShopConfig
from shopqueue.services.appointment import AppointmentService
from shopqueue.services.audit import AuditLog
from shopqueue.services.directory import DirectoryService
from shopqueue.services.lifecycle import StatusStateMachine
from shopqueue.services.mock_store import InMemoryRecordStore
from shopqueue.services.monitor import MonitorService
from shopqueue.services.notifier import ChangeNotifier, StoreChangeBridge
from shopqueue.services.queue import QueueService
from shopqueue.services.reservation import ReservationGuard
from shopqueue.services.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


@dataclass
class BookingEngine:
    settings: Settings
    config: ShopConfig
    clock: Clock
    store: RecordStore
    tables: StoreTables
    notifier: ChangeNotifier
    audit: AuditLog
    directory: DirectoryService
    guard: ReservationGuard
    lifecycle: StatusStateMachine
    appointments: AppointmentService
    queue: QueueService
    monitor: MonitorService
    sweeper: ExpirationSweeper
    bridge: Optional[StoreChangeBridge] = None

    async def start(self) -> None:
        if self.settings.enable_sweeper:
            self.sweeper.start()
        if self.bridge is not None:
            self.bridge.start()
        logger.info(
            "Booking engine started (store=%s, sweeper=%s, bridge=%s)",
            type(self.store).__name__,
            self.settings.enable_sweeper,
            self.bridge is not None,
        )

    async def stop(self) -> None:
        await self.sweeper.stop()
        if self.bridge is not None:
            await self.bridge.stop()
        self.notifier.close()
        await self.store.close()
        logger.info("Booking engine stopped")


def build_store(settings: Settings, tables: StoreTables, clock: Clock) -> RecordStore:
    if settings.use_mock_data or settings.store_base_url is None:
        if not settings.use_mock_data:
            logger.warning("No record store URL configured; using the in-memory store")
        demo_date = clock.now().date() if settings.seed_demo_data else None
        return InMemoryRecordStore(tables, demo_date=demo_date)
    return RemoteRecordStore(
        str(settings.store_base_url),
        api_key=settings.store_api_key,
        timeout=settings.store_timeout,
    )


def build_engine(
    settings: Settings,
    *,
    clock: Clock | None = None,
    store: RecordStore | None = None,
) -> BookingEngine:
    config = settings.shop_config()
    clock = clock or SystemClock(config.timezone)
    tables = StoreTables(
        appointments=settings.appointments_table,
        providers=settings.providers_table,
        services=settings.services_table,
    )
    store = store or build_store(settings, tables, clock)

    notifier = ChangeNotifier(clock, queue_size=settings.notifier_queue_size)
    audit = AuditLog(settings.audit_capacity)
    directory = DirectoryService(store, tables)
    guard = ReservationGuard(store, directory, notifier, audit, clock, config, tables=tables)
    lifecycle = StatusStateMachine(store, notifier, audit, clock, config, tables=tables)
    sweeper = ExpirationSweeper(
        store,
        lifecycle,
        notifier,
        audit,
        clock,
        config,
        tables=tables,
        interval=settings.sweep_interval_seconds,
        guard=guard,
    )

    # The in-memory store is only written through this engine, which already publishes.
    bridge = None
    if not isinstance(store, InMemoryRecordStore):
        bridge = StoreChangeBridge(
            store,
            notifier,
            clock,
            table=tables.appointments,
            poll_interval=settings.poll_interval_seconds,
        )

    return BookingEngine(
        settings=settings,
        config=config,
        clock=clock,
        store=store,
        tables=tables,
        notifier=notifier,
        audit=audit,
        directory=directory,
        guard=guard,
        lifecycle=lifecycle,
        appointments=AppointmentService(store, guard, lifecycle, tables=tables),
        queue=QueueService(store, clock, config, tables=tables),
        monitor=MonitorService(store, directory, guard, clock, config, tables=tables),
        sweeper=sweeper,
        bridge=bridge,
    )
