from hms.models.user import User
from hms.models.doctor import Doctor
from hms.models.patient import Patient
from hms.models.appointment import Appointment
from hms.models.billing import Billing
from hms.models.audit_log import AuditLog

__all__ = ["User", "Doctor", "Patient", "Appointment", "Billing", "AuditLog"]
