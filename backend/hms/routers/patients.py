import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import UserPrincipal, get_current_user, require_permission, require_roles
from hms.database import get_db
from hms.models import Patient, User
from hms.roles import CLINICAL_ROLES, STAFF_ROLES, Role
from hms.schemas.audit import AuditAction, AuditOutcome, AuditResource
from hms.schemas.common import envelope
from hms.schemas.patient import (
    MedicalHistory,
    MedicalHistoryUpdate,
    PatientCreate,
    PatientProfile,
    PatientResponse,
    PatientUpdate,
)
from hms.services.account_service import account_service
from hms.services.audit_service import audit_service

logger = logging.getLogger(__name__)

router = APIRouter()

PROFILE_FIELDS = tuple(PatientProfile.model_fields)
USER_FIELDS = ("first_name", "last_name")


def profile_columns(body: PatientProfile, exclude_unset: bool = False) -> dict:
    """Patient table columns from a request body, JSON-ready."""
    data = body.model_dump(include=set(PROFILE_FIELDS), exclude_unset=exclude_unset, mode="json")
    # Dates go to a Date column, keep them as date objects.
    if "date_of_birth" in data:
        data["date_of_birth"] = body.date_of_birth
    return data


async def _get_patient_or_404(db: AsyncSession, patient_id: str) -> Patient:
    patient = await db.scalar(select(Patient).where(Patient.id == patient_id))
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


async def _check_access(db: AsyncSession, request: Request, current_user: UserPrincipal, patient_id: str) -> None:
    if current_user.has_access_to_patient(patient_id):
        return
    await audit_service.record(
        db,
        AuditAction.ACCESS_DENIED,
        AuditResource.PATIENT,
        request=request,
        user=current_user,
        outcome=AuditOutcome.FAILURE,
        resource_id=patient_id,
        patient_id=patient_id,
        reason="Not the patient and not staff",
        commit=True,
    )
    raise HTTPException(status_code=403, detail="Access denied to this patient record")


async def _audit(db, request, current_user, action, patient_id, resource=AuditResource.PATIENT, **details):
    await audit_service.record(
        db,
        action,
        resource,
        request=request,
        user=current_user,
        resource_id=patient_id,
        patient_id=patient_id,
        details=details or None,
    )


@router.get("")
async def list_patients(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    search: str = Query("", description="Search by name or email"),
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*STAFF_ROLES)),
):
    query = select(Patient).join(User, Patient.user_id == User.id)
    if search:
        query = query.where(
            or_(
                User.first_name.ilike(f"%{search}%"),
                User.last_name.ilike(f"%{search}%"),
                User.email.ilike(f"%{search}%"),
            )
        )

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0

    query = query.order_by(User.last_name, User.first_name).offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    patients = result.scalars().all()

    return envelope({
        "patients": [PatientResponse.model_validate(p) for p in patients],
        "total": total,
        "page": page,
        "pageSize": page_size,
    })


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_patient(
    body: PatientCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*STAFF_ROLES)),
):
    user = await account_service.create_account(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=Role.PATIENT,
        patient=profile_columns(body),
    )
    logger.info("Patient %s created by %s", user.patient.id, current_user.id)
    return envelope(PatientResponse.model_validate(user.patient), "Patient created successfully")


@router.get("/{patient_id}")
async def get_patient(
    patient_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    await _check_access(db, request, current_user, patient_id)
    patient = await _get_patient_or_404(db, patient_id)
    await _audit(db, request, current_user, AuditAction.ACCESS_PHI, patient.id)
    return envelope(PatientResponse.model_validate(patient))


@router.put("/{patient_id}")
async def update_patient(
    patient_id: str,
    body: PatientUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    await _check_access(db, request, current_user, patient_id)
    patient = await _get_patient_or_404(db, patient_id)

    columns = profile_columns(body, exclude_unset=True)
    names = body.model_dump(include=set(USER_FIELDS), exclude_unset=True, exclude_none=True)
    for key, value in columns.items():
        setattr(patient, key, value)
    for key, value in names.items():
        setattr(patient.user, key, value)

    await db.flush()
    await _audit(db, request, current_user, AuditAction.UPDATE, patient.id, fields=sorted({*columns, *names}))
    await db.refresh(patient)
    return envelope(PatientResponse.model_validate(patient), "Patient updated successfully")


@router.delete("/{patient_id}")
async def delete_patient(
    patient_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_permission("can_delete_records")),
):
    patient = await _get_patient_or_404(db, patient_id)
    await _audit(db, request, current_user, AuditAction.DELETE, patient.id)
    # The user row owns the patient row; removing it removes both.
    await db.delete(patient.user)
    await db.flush()
    logger.info("Patient %s deleted by %s", patient_id, current_user.id)
    return envelope(message="Patient deleted successfully")


@router.get("/{patient_id}/medical-history")
async def get_medical_history(
    patient_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*CLINICAL_ROLES)),
):
    patient = await _get_patient_or_404(db, patient_id)
    await _audit(db, request, current_user, AuditAction.ACCESS_PHI, patient.id, AuditResource.MEDICAL_HISTORY)
    history = MedicalHistory.model_validate(patient.medical_history or {})
    return envelope({"patientId": patient.id, "medicalHistory": history})


@router.put("/{patient_id}/medical-history")
async def update_medical_history(
    patient_id: str,
    body: MedicalHistoryUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(require_roles(*CLINICAL_ROLES)),
):
    patient = await _get_patient_or_404(db, patient_id)
    patient.medical_history = body.medical_history.model_dump()
    await db.flush()
    await _audit(db, request, current_user, AuditAction.UPDATE, patient.id, AuditResource.MEDICAL_HISTORY)
    await db.refresh(patient)
    return envelope(
        {"patientId": patient.id, "medicalHistory": MedicalHistory.model_validate(patient.medical_history)},
        "Medical history updated successfully",
    )
