import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import Field, field_validator

from hms.schemas.common import CamelModel, RequestModel


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


def _to_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is not None:
        return v.astimezone(timezone.utc)
    return v


class AppointmentCreate(RequestModel):
    patient_id: str = Field(min_length=1)
    doctor_id: str = Field(min_length=1)
    appointment_date: datetime
    notes: Optional[str] = None

    @field_validator("appointment_date")
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return _to_utc(v)


class AppointmentUpdate(RequestModel):
    appointment_date: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None

    @field_validator("appointment_date")
    @classmethod
    def normalize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)


class AppointmentResponse(CamelModel):
    id: str
    patient_id: str
    doctor_id: str
    appointment_date: datetime
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
