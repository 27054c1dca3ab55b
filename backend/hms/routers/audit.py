from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import UserPrincipal, require_permission
from hms.database import get_db
from hms.schemas.audit import AuditAction, AuditLogResponse, AuditOutcome
from hms.schemas.common import envelope
from hms.services.audit_service import audit_service

router = APIRouter()

audit_reader = require_permission("can_view_audit_logs")


@router.get("")
async def list_audit_logs(
    action: Optional[AuditAction] = None,
    outcome: Optional[AuditOutcome] = None,
    user_id: Optional[str] = Query(None, alias="userId"),
    patient_id: Optional[str] = Query(None, alias="patientId"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(audit_reader),
):
    entries = await audit_service.search(
        db, action=action, outcome=outcome, user_id=user_id, patient_id=patient_id, limit=limit
    )
    items = [AuditLogResponse.model_validate(e) for e in entries]
    return envelope({"auditLogs": items, "count": len(items)})


@router.get("/verify")
async def verify_audit_chain(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(audit_reader),
):
    return envelope(await audit_service.verify_chain(db))
