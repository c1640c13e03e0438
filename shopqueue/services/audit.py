"""Audit trail for appointment lifecycle actions."""

from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import Deque, List, Optional

from shopqueue.schemas.audit import AuditEntry, AuditLevel

logger = logging.getLogger("shopqueue.audit")

_LEVELS = {
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class AuditLog:
    """Write-only audit sink that also keeps the most recent entries for the admin log view."""

    def __init__(self, capacity: int = 500) -> None:
        self._entries: Deque[AuditEntry] = deque(maxlen=capacity)
        self._lock = Lock()

    def record(
        self,
        *,
        actor: str,
        role: str,
        action: str,
        timestamp: str,
        appointment_id: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        details: str = "",
        level: AuditLevel = "info",
    ) -> AuditEntry:
        entry = AuditEntry(
            actor=actor,
            role=role,
            action=action,
            appointment_id=appointment_id,
            from_status=from_status,
            to_status=to_status,
            details=details,
            level=level,
            timestamp=timestamp,
        )
        logger.log(
            _LEVELS[level],
            "audit actor=%s role=%s action=%s appointment=%s %s->%s %s",
            actor,
            role,
            action,
            appointment_id,
            from_status,
            to_status,
            details,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def recent(self, limit: int | None = None) -> List[AuditEntry]:
        """Return entries newest first."""

        with self._lock:
            items = list(reversed(self._entries))
        if limit is not None:
            items = items[:limit]
        return items
