import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import UserPrincipal, get_current_user, require_permission
from hms.database import get_db
from hms.models import Appointment, Billing, Patient
from hms.schemas.billing import BillingCreate, BillingResponse, BillingStatus, BillingUpdate
from hms.schemas.common import envelope
from hms.services.billing_service import billing_service

logger = logging.getLogger(__name__)

router = APIRouter()

billing_manager = require_permission("can_manage_billing")


async def _get_bill_or_404(db: AsyncSession, billing_id: str) -> Billing:
    bill = await db.scalar(select(Billing).where(Billing.id == billing_id))
    if not bill:
        raise HTTPException(status_code=404, detail="Billing record not found")
    return bill


def _check_access(current_user: UserPrincipal, patient_id: str) -> None:
    if not current_user.has_access_to_patient(patient_id):
        raise HTTPException(status_code=403, detail="Access denied to this billing record")


@router.get("")
async def list_bills(
    bill_status: Optional[BillingStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(billing_manager),
):
    query = select(Billing)
    if bill_status:
        query = query.where(Billing.status == bill_status.value)
    result = await db.execute(query.order_by(Billing.created_at.desc()))
    bills = [BillingResponse.model_validate(b) for b in result.scalars().all()]
    return envelope({"billingRecords": bills, "count": len(bills)})


@router.get("/summary")
async def billing_summary(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(billing_manager),
):
    summary = await billing_service.summary(db, start_date, end_date)
    return envelope(summary)


@router.get("/patient/{patient_id}")
async def patient_bills(
    patient_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    _check_access(current_user, patient_id)
    result = await db.execute(
        select(Billing).where(Billing.patient_id == patient_id).order_by(Billing.created_at.desc())
    )
    records = result.scalars().all()
    return envelope({
        "billingRecords": [BillingResponse.model_validate(b) for b in records],
        "summary": billing_service.totals(records),
    })


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_bill(
    body: BillingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(billing_manager),
):
    if await db.scalar(select(Patient.id).where(Patient.id == body.patient_id)) is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    if body.appointment_id:
        appointment = await db.scalar(select(Appointment).where(Appointment.id == body.appointment_id))
        if appointment is None:
            raise HTTPException(status_code=404, detail="Appointment not found")
        if appointment.patient_id != body.patient_id:
            raise HTTPException(status_code=400, detail="Appointment belongs to a different patient")

    bill = Billing(
        patient_id=body.patient_id,
        appointment_id=body.appointment_id,
        amount=float(body.amount),
        description=body.description,
        status=body.status.value,
        issue_date=body.issue_date or date.today(),
        due_date=body.due_date,
    )
    db.add(bill)
    await db.flush()
    await db.refresh(bill)
    logger.info("Billing record %s created for patient %s", bill.id, bill.patient_id)
    return envelope(BillingResponse.model_validate(bill), "Billing record created successfully")


@router.get("/{billing_id}")
async def get_bill(
    billing_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    bill = await _get_bill_or_404(db, billing_id)
    _check_access(current_user, bill.patient_id)
    return envelope(BillingResponse.model_validate(bill))


@router.put("/{billing_id}")
async def update_bill(
    billing_id: str,
    body: BillingUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(billing_manager),
):
    bill = await _get_bill_or_404(db, billing_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "amount" in changes:
        changes["amount"] = float(changes["amount"])
    if "status" in changes:
        changes["status"] = changes["status"].value

    for key, value in changes.items():
        setattr(bill, key, value)
    await db.flush()
    await db.refresh(bill)
    return envelope(BillingResponse.model_validate(bill), "Billing record updated successfully")


@router.delete("/{billing_id}")
async def delete_bill(
    billing_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(billing_manager),
):
    bill = await _get_bill_or_404(db, billing_id)
    await db.delete(bill)
    await db.flush()
    logger.info("Billing record %s deleted by %s", billing_id, current_user.id)
    return envelope(message="Billing record deleted successfully")


@router.patch("/{billing_id}/pay")
async def mark_paid(
    billing_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(billing_manager),
):
    bill = await _get_bill_or_404(db, billing_id)
    bill.status = BillingStatus.PAID.value
    await db.flush()
    await db.refresh(bill)
    logger.info("Billing record %s marked paid", billing_id)
    return envelope(BillingResponse.model_validate(bill), "Billing record marked as paid successfully")
