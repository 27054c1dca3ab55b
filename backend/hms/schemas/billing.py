import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, field_validator

from hms.schemas.common import CamelModel, RequestModel


class BillingStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


def _amount_in(v):
    # Floats go through their repr so 12.345 stays 12.345 rather than a binary expansion.
    if isinstance(v, float):
        return Decimal(repr(v))
    return v


def _two_places(v: Optional[Decimal]) -> Optional[Decimal]:
    if v is not None and v.normalize().as_tuple().exponent < -2:
        raise ValueError("must have at most 2 decimal places")
    return v


class BillingCreate(RequestModel):
    patient_id: str = Field(min_length=1)
    appointment_id: Optional[str] = None
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1)
    status: BillingStatus = BillingStatus.PENDING
    issue_date: Optional[date] = None
    due_date: Optional[date] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return _amount_in(v)

    @field_validator("amount")
    @classmethod
    def check_precision(cls, v: Decimal) -> Decimal:
        return _two_places(v)


class BillingUpdate(RequestModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, min_length=1)
    status: Optional[BillingStatus] = None
    due_date: Optional[date] = None

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_amount(cls, v):
        return _amount_in(v)

    @field_validator("amount")
    @classmethod
    def check_precision(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _two_places(v)


class BillingResponse(CamelModel):
    id: str
    patient_id: str
    appointment_id: Optional[str] = None
    amount: float
    description: str
    status: str
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BillingTotals(CamelModel):
    total_amount: float
    paid_amount: float
    pending_amount: float
    total_records: int


class StatusTotal(CamelModel):
    amount: float
    count: int


class BillingSummary(CamelModel):
    total_revenue: StatusTotal
    pending_revenue: StatusTotal
    overdue_revenue: StatusTotal
