import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import UserPrincipal, get_current_user, require_roles
from hms.database import get_db
from hms.models import Appointment, Doctor, Patient
from hms.roles import CLINICAL_ROLES
from hms.schemas.appointment import AppointmentCreate, AppointmentResponse, AppointmentStatus, AppointmentUpdate
from hms.schemas.common import envelope

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_appointment_or_404(db: AsyncSession, appointment_id: str) -> Appointment:
    appointment = await db.scalar(select(Appointment).where(Appointment.id == appointment_id))
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


async def _accessible_appointment(db: AsyncSession, appointment_id: str, current_user: UserPrincipal) -> Appointment:
    appointment = await _get_appointment_or_404(db, appointment_id)
    if not current_user.has_access_to_appointment(appointment):
        raise HTTPException(status_code=403, detail="Access denied to this appointment")
    return appointment


async def _ensure_doctor_free(
    db: AsyncSession, doctor_id: str, when: datetime, exclude_id: Optional[str] = None
) -> None:
    query = select(Appointment.id).where(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == when,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    )
    if exclude_id:
        query = query.where(Appointment.id != exclude_id)
    if await db.scalar(query) is not None:
        raise HTTPException(status_code=400, detail="Doctor is not available at this time")


def _listing(appointments) -> dict:
    items = [AppointmentResponse.model_validate(a) for a in appointments]
    return envelope({"appointments": items, "count": len(items)})


@router.get("")
async def list_appointments(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    scope = current_user.appointment_scope()
    if scope is None:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    query = select(Appointment).filter_by(**scope)
    result = await db.execute(query.order_by(Appointment.appointment_date))
    return _listing(result.scalars().all())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    body: AppointmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    if not current_user.has_access_to_patient(body.patient_id):
        raise HTTPException(status_code=403, detail="Cannot book appointments for another patient")

    if await db.scalar(select(Patient.id).where(Patient.id == body.patient_id)) is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    if await db.scalar(select(Doctor.id).where(Doctor.id == body.doctor_id)) is None:
        raise HTTPException(status_code=404, detail="Doctor not found")

    await _ensure_doctor_free(db, body.doctor_id, body.appointment_date)

    appointment = Appointment(
        patient_id=body.patient_id,
        doctor_id=body.doctor_id,
        appointment_date=body.appointment_date,
        notes=body.notes,
    )
    db.add(appointment)
    await db.flush()
    await db.refresh(appointment)
    logger.info("Appointment %s booked by %s", appointment.id, current_user.id)
    return envelope(AppointmentResponse.model_validate(appointment), "Appointment created successfully")


@router.get("/patient/{patient_id}")
async def patient_appointments(
    patient_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    if not current_user.has_access_to_patient(patient_id):
        raise HTTPException(status_code=403, detail="Access denied to this patient record")
    result = await db.execute(
        select(Appointment).where(Appointment.patient_id == patient_id).order_by(Appointment.appointment_date.desc())
    )
    return _listing(result.scalars().all())


@router.get("/doctor/{doctor_id}")
async def doctor_appointments(
    doctor_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    if not current_user.can_act_for_doctor(doctor_id):
        raise HTTPException(status_code=403, detail="Access denied to this doctor's schedule")
    result = await db.execute(
        select(Appointment).where(Appointment.doctor_id == doctor_id).order_by(Appointment.appointment_date)
    )
    return _listing(result.scalars().all())


@router.get("/{appointment_id}")
async def get_appointment(
    appointment_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    appointment = await _accessible_appointment(db, appointment_id, current_user)
    return envelope(AppointmentResponse.model_validate(appointment))


@router.put("/{appointment_id}")
async def update_appointment(
    appointment_id: str,
    body: AppointmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    appointment = await _accessible_appointment(db, appointment_id, current_user)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)

    if "status" in changes:
        changes["status"] = changes["status"].value

    # The slot must be free whenever this update leaves the appointment holding it
    # at a new time, or takes it out of CANCELLED.
    new_status = changes.get("status", appointment.status)
    reactivated = appointment.status == AppointmentStatus.CANCELLED.value
    if new_status != AppointmentStatus.CANCELLED.value and ("appointment_date" in changes or reactivated):
        when = changes.get("appointment_date", appointment.appointment_date)
        await _ensure_doctor_free(db, appointment.doctor_id, when, exclude_id=appointment.id)

    for key, value in changes.items():
        setattr(appointment, key, value)
    await db.flush()
    await db.refresh(appointment)
    return envelope(AppointmentResponse.model_validate(appointment), "Appointment updated successfully")


@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    appointment = await _accessible_appointment(db, appointment_id, current_user)
    await db.delete(appointment)
    await db.flush()
    logger.info("Appointment %s deleted by %s", appointment_id, current_user.id)
    return envelope(message="Appointment deleted successfully")


@router.patch("/{appointment_id}/confirm")
async def confirm_appointment(
    appointment_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*CLINICAL_ROLES)),
):
    appointment = await _accessible_appointment(db, appointment_id, current_user)
    if appointment.status == AppointmentStatus.CANCELLED.value:
        await _ensure_doctor_free(db, appointment.doctor_id, appointment.appointment_date, exclude_id=appointment.id)
    appointment.status = AppointmentStatus.SCHEDULED.value
    await db.flush()
    await db.refresh(appointment)
    return envelope(AppointmentResponse.model_validate(appointment), "Appointment confirmed")


@router.patch("/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    appointment = await _accessible_appointment(db, appointment_id, current_user)
    appointment.status = AppointmentStatus.CANCELLED.value
    await db.flush()
    await db.refresh(appointment)
    logger.info("Appointment %s cancelled by %s", appointment_id, current_user.id)
    return envelope(AppointmentResponse.model_validate(appointment), "Appointment cancelled")
