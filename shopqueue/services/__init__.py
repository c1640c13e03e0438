"""Service package public API definitions.

Service implementations are imported lazily so that importing
``shopqueue.services.exceptions`` from the store client does not pull in the
services that depend on that client.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "AppointmentService",
    "BookingEngine",
    "ExpirationSweeper",
    "MonitorService",
    "QueueService",
    "ReservationGuard",
    "StatusStateMachine",
]

_SERVICE_MODULES = {
    "AppointmentService": "appointment",
    "BookingEngine": "engine",
    "ExpirationSweeper": "sweeper",
    "MonitorService": "monitor",
    "QueueService": "queue",
    "ReservationGuard": "reservation",
    "StatusStateMachine": "lifecycle",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .appointment import AppointmentService as AppointmentService
    from .engine import BookingEngine as BookingEngine
    from .lifecycle import StatusStateMachine as StatusStateMachine
    from .monitor import MonitorService as MonitorService
    from .queue import QueueService as QueueService
    from .reservation import ReservationGuard as ReservationGuard
    from .sweeper import ExpirationSweeper as ExpirationSweeper
