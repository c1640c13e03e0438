from __future__ import annotations

import datetime as dt
import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

_SLOT_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (
    AppointmentStatus.PENDING,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.CHECKED_IN,
)
RESERVED_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class TransitionEvent(str, Enum):
    CHECK_IN = "check_in"
    COMPLETE = "complete"
    CANCEL = "cancel"


def parse_time_slot(value: str) -> dt.time:
    """Parse an ``HH:MM`` slot label into a :class:`datetime.time`."""

    match = _SLOT_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid time slot '{value}'. Expected HH:MM.")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time slot '{value}'. Expected HH:MM.")
    return dt.time(hour, minute)


def format_time_slot(value: dt.time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


class Actor(BaseModel):
    name: str
    role: str = Field("customer", description="customer | provider | admin | system")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


SCHEDULER_ACTOR = Actor(name="scheduler", role="system")
GUARD_ACTOR = Actor(name="reservation-guard", role="system")


class ReservationRequest(BaseModel):
    customer_name: str
    provider_name: str
    service_name: str
    date: dt.date
    time_slot: str

    @field_validator("customer_name", "provider_name", "service_name", mode="before")
    def _strip(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


class Appointment(BaseModel):
    id: str
    customer_name: str
    provider_name: str
    service_name: str
    price: float = 0.0
    duration_minutes: Optional[int] = None
    date: dt.date
    time_slot: str
    status: AppointmentStatus = AppointmentStatus.CONFIRMED
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    checked_in_at: Optional[str] = None
    completed_at: Optional[str] = None
    cancelled_at: Optional[str] = None
    cancelled_by: Optional[str] = None

    @field_validator("id", mode="before")
    def _stringify_id(cls, value):
        return str(value)

    @field_validator("time_slot", mode="before")
    def _normalize_slot(cls, value):
        return format_time_slot(parse_time_slot(value))

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def scheduled_at(self, tz: dt.tzinfo) -> dt.datetime:
        return dt.datetime.combine(self.date, parse_time_slot(self.time_slot), tzinfo=tz)


class TransitionRequest(BaseModel):
    actor_name: str = "customer"
    actor_role: str = "customer"

    def actor(self) -> Actor:
        return Actor(name=self.actor_name, role=self.actor_role)


class AppointmentListRequest(BaseModel):
    provider_name: Optional[str] = None
    customer_name: Optional[str] = None
    date: Optional[dt.date] = None
    status: Optional[List[AppointmentStatus]] = None
    page: int = Field(1, ge=1)
    page_size: int = Field(20, ge=1, le=200)


class AppointmentListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    items: List[Appointment]


class SlotAvailability(BaseModel):
    time_slot: str
    state: str = Field(..., description="available | booked | past")
    appointment_id: Optional[str] = None


class SlotListResponse(BaseModel):
    provider_name: str
    date: dt.date
    slots: List[SlotAvailability]
