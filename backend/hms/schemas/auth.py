from datetime import date, datetime
from typing import Literal, Optional

from pydantic import EmailStr, Field, ValidationInfo, field_validator

from hms.schemas.common import CamelModel, Gender, RequestModel

RegistrationRole = Literal["ADMIN", "DOCTOR", "PATIENT"]


class RegisterRequest(RequestModel):
    email: EmailStr
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    role: RegistrationRole = "PATIENT"

    # Doctor only; required when role is DOCTOR.
    specialization: Optional[str] = Field(default=None, validate_default=True)
    license_number: Optional[str] = Field(default=None, validate_default=True)

    # Patient profile, always optional.
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("specialization", "license_number")
    @classmethod
    def required_for_doctors(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        if info.data.get("role") == "DOCTOR" and not (v and v.strip()):
            raise ValueError("is required when role is DOCTOR")
        return v


class LoginRequest(RequestModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RefreshRequest(RequestModel):
    refresh_token: str = Field(min_length=1)


class ProfileUpdate(RequestModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None


class ChangePasswordRequest(RequestModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=8)


class UserResponse(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TokenResponse(CamelModel):
    user: UserResponse
    token: str
    refresh_token: str
