from fastapi import APIRouter, Depends, Query

from shopqueue.dependencies.services import get_audit_log
from shopqueue.schemas.audit import AuditLogResponse
from shopqueue.services.audit import AuditLog

router = APIRouter()


@router.get("/logs", response_model=AuditLogResponse)
def audit_logs(
    limit: int = Query(100, ge=1, le=1000),
    audit: AuditLog = Depends(get_audit_log),
):
    items = audit.recent(limit)
    return AuditLogResponse(total=len(items), items=items)
