from __future__ import annotations

import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

ChangeKind = Literal["created", "transitioned", "swept", "resync", "snapshot"]


class ChangeEvent(BaseModel):
    """Small notice that the appointment set changed.

    Carries just enough for an observer to decide whether to re-fetch.
    """

    kind: ChangeKind
    provider_name: Optional[str] = None
    date: Optional[dt.date] = None
    appointment_id: Optional[str] = None
    status: Optional[str] = None
    previous_status: Optional[str] = None
    appointment_ids: List[str] = Field(default_factory=list)
    occurred_at: Optional[str] = None
