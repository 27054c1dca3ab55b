import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import UserPrincipal, require_permission, require_roles
from hms.database import get_db
from hms.models import Doctor, User
from hms.roles import CLINICAL_ROLES, Role
from hms.schemas.common import envelope
from hms.schemas.doctor import (
    AvailabilityResponse,
    AvailabilityUpdate,
    DoctorCreate,
    DoctorResponse,
    DoctorUpdate,
)
from hms.services.account_service import account_service, availability_to_json

logger = logging.getLogger(__name__)

router = APIRouter()


async def _get_doctor_or_404(db: AsyncSession, doctor_id: str) -> Doctor:
    doctor = await db.scalar(select(Doctor).where(Doctor.id == doctor_id))
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor not found")
    return doctor


def _check_owner(current_user: UserPrincipal, doctor_id: str) -> None:
    if not current_user.can_act_for_doctor(doctor_id):
        raise HTTPException(status_code=403, detail="Doctors can only update their own profile")


def _ordered(query):
    return query.join(User, Doctor.user_id == User.id).order_by(User.last_name, User.first_name)


@router.get("")
async def list_doctors(db: AsyncSession = Depends(get_db)):
    result = await db.execute(_ordered(select(Doctor)))
    doctors = [DoctorResponse.model_validate(d) for d in result.scalars().all()]
    return envelope({"doctors": doctors, "count": len(doctors)})


@router.get("/specialization")
async def doctors_by_specialization(
    specialization: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
):
    query = _ordered(select(Doctor).where(Doctor.specialization.ilike(f"%{specialization}%")))
    result = await db.execute(query)
    doctors = [DoctorResponse.model_validate(d) for d in result.scalars().all()]
    return envelope({"doctors": doctors, "count": len(doctors)})


@router.get("/{doctor_id}")
async def get_doctor(doctor_id: str, db: AsyncSession = Depends(get_db)):
    doctor = await _get_doctor_or_404(db, doctor_id)
    return envelope(DoctorResponse.model_validate(doctor))


@router.get("/{doctor_id}/availability")
async def get_availability(doctor_id: str, db: AsyncSession = Depends(get_db)):
    doctor = await _get_doctor_or_404(db, doctor_id)
    return envelope(AvailabilityResponse.model_validate(doctor))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_doctor(
    body: DoctorCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("can_manage_users")),
):
    user = await account_service.create_account(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=Role.DOCTOR,
        doctor={
            "specialization": body.specialization,
            "license_number": body.license_number,
            "availability": body.availability,
        },
    )
    logger.info("Doctor %s created by %s", user.doctor.id, current_user.id)
    return envelope(DoctorResponse.model_validate(user.doctor), "Doctor created successfully")


@router.put("/{doctor_id}")
async def update_doctor(
    doctor_id: str,
    body: DoctorUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*CLINICAL_ROLES)),
):
    _check_owner(current_user, doctor_id)
    doctor = await _get_doctor_or_404(db, doctor_id)

    if body.license_number and body.license_number != doctor.license_number:
        taken = await db.scalar(select(Doctor.id).where(Doctor.license_number == body.license_number))
        if taken is not None:
            raise HTTPException(status_code=400, detail="Doctor with this license number already exists")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    for key in ("first_name", "last_name"):
        if key in changes:
            setattr(doctor.user, key, changes[key])
    for key in ("specialization", "license_number"):
        if key in changes:
            setattr(doctor, key, changes[key])
    if "availability" in changes:
        doctor.availability = availability_to_json(body.availability)

    await db.flush()
    await db.refresh(doctor)
    return envelope(DoctorResponse.model_validate(doctor), "Doctor updated successfully")


@router.put("/{doctor_id}/availability")
async def update_availability(
    doctor_id: str,
    body: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*CLINICAL_ROLES)),
):
    _check_owner(current_user, doctor_id)
    doctor = await _get_doctor_or_404(db, doctor_id)
    doctor.availability = availability_to_json(body.availability)
    await db.flush()
    await db.refresh(doctor)
    return envelope(AvailabilityResponse.model_validate(doctor), "Availability updated successfully")


@router.delete("/{doctor_id}")
async def delete_doctor(
    doctor_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("can_manage_users")),
):
    doctor = await _get_doctor_or_404(db, doctor_id)
    await db.delete(doctor.user)
    await db.flush()
    logger.info("Doctor %s deleted by %s", doctor_id, current_user.id)
    return envelope(message="Doctor deleted successfully")
