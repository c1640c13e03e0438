from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from shopqueue.config import get_settings
from shopqueue.services import (
    AppointmentService,
    BookingEngine,
    ExpirationSweeper,
    MonitorService,
    QueueService,
)
from shopqueue.services.audit import AuditLog
from shopqueue.services.directory import DirectoryService
from shopqueue.services.engine import build_engine
from shopqueue.services.notifier import ChangeNotifier


@lru_cache(maxsize=1)
def get_engine_cached() -> BookingEngine:
    return build_engine(get_settings())


def get_engine() -> BookingEngine:
    return get_engine_cached()


def get_appointment_service(
    engine: BookingEngine = Depends(get_engine),
) -> AppointmentService:
    return engine.appointments


def get_queue_service(engine: BookingEngine = Depends(get_engine)) -> QueueService:
    return engine.queue


def get_monitor_service(engine: BookingEngine = Depends(get_engine)) -> MonitorService:
    return engine.monitor


def get_sweeper(engine: BookingEngine = Depends(get_engine)) -> ExpirationSweeper:
    return engine.sweeper


def get_audit_log(engine: BookingEngine = Depends(get_engine)) -> AuditLog:
    return engine.audit


def get_notifier(engine: BookingEngine = Depends(get_engine)) -> ChangeNotifier:
    return engine.notifier


def get_directory_service(engine: BookingEngine = Depends(get_engine)) -> DirectoryService:
    return engine.directory
