import re
from datetime import datetime
from typing import Optional

from pydantic import EmailStr, Field, field_validator, model_validator

from hms.schemas.common import CamelModel, RequestModel, UserSummary

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class TimeWindow(CamelModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def check_format(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("must be a 24h time in HH:MM format")
        return v

    @model_validator(mode="after")
    def check_order(self):
        # HH:MM compares correctly as a string
        if self.start >= self.end:
            raise ValueError("start must be before end")
        return self


# A day that is missing (or null) means the doctor is not available that day.
Availability = dict[str, Optional[TimeWindow]]


def _check_days(v: Optional[dict]) -> Optional[dict]:
    if v is None:
        return v
    normalized = {}
    for day, window in v.items():
        key = day.lower()
        if key not in WEEKDAYS:
            raise ValueError(f"unknown day {day!r}")
        normalized[key] = window
    return normalized


class DoctorCreate(RequestModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(min_length=8)
    specialization: str = Field(min_length=1)
    license_number: str = Field(min_length=1)
    availability: Optional[Availability] = None

    @field_validator("availability")
    @classmethod
    def check_days(cls, v):
        return _check_days(v)


class DoctorUpdate(RequestModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    specialization: Optional[str] = Field(default=None, min_length=1)
    license_number: Optional[str] = Field(default=None, min_length=1)
    availability: Optional[Availability] = None

    @field_validator("availability")
    @classmethod
    def check_days(cls, v):
        return _check_days(v)


class AvailabilityUpdate(RequestModel):
    availability: Availability

    @field_validator("availability")
    @classmethod
    def check_days(cls, v):
        return _check_days(v)


class DoctorResponse(CamelModel):
    id: str
    user_id: str
    specialization: str
    license_number: str
    availability: Optional[Availability] = None
    user: UserSummary
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AvailabilityResponse(CamelModel):
    id: str
    availability: Optional[Availability] = None
    user: UserSummary
