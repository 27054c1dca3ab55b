"""
Audit trail for authentication events and patient-record access.

Entries form a hash chain: each stores sha256(previous hash + its own fields),
so editing or deleting a row breaks every hash after it. verify_chain() walks
the table in id order and reports the first entry that no longer matches.
"""

import hashlib
import json
import logging
from typing import Optional

from fastapi import Request
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.models import AuditLog
from hms.roles import Role
from hms.schemas.audit import AuditAction, AuditOutcome, AuditResource, ChainVerification, RiskLevel

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64

# Fields covered by the chain hash, in a fixed order.
CHAINED_FIELDS = (
    "user_id",
    "user_role",
    "action",
    "resource",
    "resource_id",
    "patient_id",
    "outcome",
    "reason",
)

_HIGH_RISK = {AuditAction.DELETE, AuditAction.ACCESS_DENIED, AuditAction.PASSWORD_CHANGE}
_LOW_RISK = {AuditAction.LOGOUT}


def risk_level(action: AuditAction) -> RiskLevel:
    if action in _HIGH_RISK:
        return RiskLevel.HIGH
    if action in _LOW_RISK:
        return RiskLevel.LOW
    return RiskLevel.MEDIUM


def chain_hash(previous: str, entry: AuditLog) -> str:
    fields = json.dumps({name: getattr(entry, name) for name in CHAINED_FIELDS}, sort_keys=True)
    return hashlib.sha256(f"{previous}{fields}".encode()).hexdigest()


class AuditService:
    async def record(
        self,
        db: AsyncSession,
        action: AuditAction,
        resource: AuditResource,
        *,
        request: Optional[Request] = None,
        user=None,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        resource_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[dict] = None,
        commit: bool = False,
    ) -> AuditLog:
        """
        Append an entry. `user` is a User or UserPrincipal, or None for an
        anonymous caller. Pass commit=True when the request is about to fail,
        otherwise the request's rollback would take the entry with it.
        """
        role = Role.parse(user.role) if user is not None else None
        entry = AuditLog(
            user_id=str(user.id) if user is not None else None,
            user_role=role.value if role else None,
            action=action.value,
            resource=resource.value,
            resource_id=resource_id,
            patient_id=patient_id,
            outcome=outcome.value,
            risk_level=risk_level(action).value,
            reason=reason,
            details=details or {},
        )
        if request is not None:
            entry.ip_address = get_remote_address(request)
            entry.user_agent = (request.headers.get("user-agent") or "")[:255] or None

        previous = await db.scalar(select(AuditLog.hash_chain).order_by(AuditLog.id.desc()).limit(1))
        entry.hash_chain = chain_hash(previous or GENESIS_HASH, entry)
        db.add(entry)
        await db.flush()
        if commit:
            await db.commit()

        if entry.risk_level == RiskLevel.HIGH.value:
            logger.warning(
                "High-risk audit event %s on %s by %s: %s",
                entry.action, entry.resource, entry.user_id or "anonymous", entry.outcome,
            )
        return entry

    async def search(
        self,
        db: AsyncSession,
        *,
        action: Optional[AuditAction] = None,
        outcome: Optional[AuditOutcome] = None,
        user_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        limit: int = 100,
    ):
        query = select(AuditLog)
        if action:
            query = query.where(AuditLog.action == action.value)
        if outcome:
            query = query.where(AuditLog.outcome == outcome.value)
        if user_id:
            query = query.where(AuditLog.user_id == user_id)
        if patient_id:
            query = query.where(AuditLog.patient_id == patient_id)
        result = await db.execute(query.order_by(AuditLog.id.desc()).limit(limit))
        return result.scalars().all()

    async def verify_chain(self, db: AsyncSession) -> ChainVerification:
        result = await db.execute(select(AuditLog).order_by(AuditLog.id))
        previous = GENESIS_HASH
        checked = 0
        for entry in result.scalars():
            if entry.hash_chain != chain_hash(previous, entry):
                logger.error("Audit chain broken at entry %s", entry.id)
                return ChainVerification(valid=False, checked=checked, broken_at=entry.id)
            previous = entry.hash_chain
            checked += 1
        return ChainVerification(valid=True, checked=checked)


audit_service = AuditService()
