from datetime import date, datetime
from typing import Optional

from pydantic import EmailStr, Field

from hms.schemas.common import CamelModel, Gender, RequestModel, UserSummary


class EmergencyContact(CamelModel):
    name: str = Field(min_length=1)
    relationship: Optional[str] = None
    phone: str = Field(min_length=1)


class MedicalHistory(CamelModel):
    allergies: list[str] = []
    conditions: list[str] = []
    medications: list[str] = []


class PatientProfile(RequestModel):
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[EmergencyContact] = None
    medical_history: Optional[MedicalHistory] = None


class PatientCreate(PatientProfile):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)


class PatientUpdate(PatientProfile):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)


class MedicalHistoryUpdate(RequestModel):
    medical_history: MedicalHistory


class PatientResponse(CamelModel):
    id: str
    user_id: str
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[EmergencyContact] = None
    medical_history: Optional[MedicalHistory] = None
    user: UserSummary
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
