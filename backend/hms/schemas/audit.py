import enum
from datetime import datetime
from typing import Any, Optional

from hms.schemas.common import CamelModel


class AuditAction(str, enum.Enum):
    REGISTER = "REGISTER"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    ACCESS_PHI = "ACCESS_PHI"
    ACCESS_DENIED = "ACCESS_DENIED"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class AuditResource(str, enum.Enum):
    AUTH = "AUTH"
    PATIENT = "PATIENT"
    MEDICAL_HISTORY = "MEDICAL_HISTORY"


class AuditOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AuditLogResponse(CamelModel):
    id: int
    timestamp: Optional[datetime] = None
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = None
    patient_id: Optional[str] = None
    outcome: str
    risk_level: str
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class ChainVerification(CamelModel):
    valid: bool
    checked: int
    broken_at: Optional[int] = None
