from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field

from shopqueue.schemas.appointment import Appointment, AppointmentStatus


class QueueEntry(BaseModel):
    appointment_id: str
    customer_name: str
    time_slot: str
    status: AppointmentStatus
    position: int = Field(..., ge=1)
    estimated_wait_minutes: int = Field(..., ge=0)


class QueueEstimate(BaseModel):
    provider_name: str
    date: dt.date
    entries: List[QueueEntry]

    def position_of(self, appointment_id: str) -> Optional[QueueEntry]:
        for entry in self.entries:
            if entry.appointment_id == appointment_id:
                return entry
        return None


class ShopWaitEstimate(BaseModel):
    date: dt.date
    checked_in_count: int
    estimated_wait_minutes: int


class CustomerTicket(BaseModel):
    customer_name: str
    appointment: Optional[Appointment] = None
    position: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    message: Optional[str] = None
