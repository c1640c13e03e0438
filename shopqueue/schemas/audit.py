from typing import List, Literal, Optional

from pydantic import BaseModel

AuditLevel = Literal["info", "warning", "error"]


class AuditEntry(BaseModel):
    actor: str
    role: str
    action: str
    appointment_id: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    details: str = ""
    level: AuditLevel = "info"
    timestamp: str


class AuditLogResponse(BaseModel):
    total: int
    items: List[AuditEntry]
