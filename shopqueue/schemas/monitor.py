from __future__ import annotations

import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from shopqueue.schemas.appointment import Appointment, SlotAvailability
from shopqueue.schemas.directory import Provider

DayLoadLevel = Literal["free", "busy", "full"]


class ProviderBoard(BaseModel):
    provider: Provider
    current: Optional[Appointment] = None
    waiting: List[Appointment] = Field(default_factory=list)


class MonitorBoard(BaseModel):
    date: dt.date
    generated_at: str
    providers: List[ProviderBoard]
    total_waiting: int
    total_completed: int
    walk_in_wait_minutes: int


class DayLoad(BaseModel):
    date: dt.date
    booked: int
    capacity: int
    level: DayLoadLevel


class WeekLoadResponse(BaseModel):
    provider_name: str
    days: List[DayLoad]


class DayScheduleResponse(BaseModel):
    provider_name: str
    date: dt.date
    slots: List[SlotAvailability]
