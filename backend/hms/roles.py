"""
Roles and the per-role policy objects.

Every "may this role do X" question goes through a RolePolicy. Routers ask
policy_for(role), usually via UserPrincipal or require_permission(), instead
of comparing role strings themselves.
"""

import enum
from typing import Optional


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    PATIENT = "PATIENT"
    RECEPTIONIST = "RECEPTIONIST"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        """Case-insensitive lookup; None for anything that is not a known role."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


STAFF_ROLES = frozenset({Role.ADMIN, Role.DOCTOR, Role.RECEPTIONIST})
CLINICAL_ROLES = frozenset({Role.ADMIN, Role.DOCTOR})


class RolePolicy:
    """Base policy: allows nothing. Unknown roles get exactly this."""
    role: Role

    def can_access_patient(self, own_patient_id: Optional[str], patient_id: str) -> bool:
        return False

    def can_access_appointment(
        self,
        own_patient_id: Optional[str],
        own_doctor_id: Optional[str],
        appointment_patient_id: str,
        appointment_doctor_id: str,
    ) -> bool:
        return False

    def can_act_for_doctor(self, own_doctor_id: Optional[str], doctor_id: str) -> bool:
        """Edit the doctor's profile and availability, and read their schedule."""
        return False

    def appointment_scope(self, own_patient_id: Optional[str], own_doctor_id: Optional[str]) -> Optional[dict]:
        """
        Column filters for the appointment listing. An empty dict means every
        appointment, None means the role may not list appointments at all.
        """
        return None

    @property
    def can_manage_users(self) -> bool:
        return False

    @property
    def can_manage_billing(self) -> bool:
        return False

    @property
    def can_delete_records(self) -> bool:
        return False

    @property
    def can_view_reports(self) -> bool:
        return False

    @property
    def can_view_audit_logs(self) -> bool:
        return False


class AdminPolicy(RolePolicy):
    role = Role.ADMIN

    def can_access_patient(self, own_patient_id, patient_id):
        return True

    def can_access_appointment(self, own_patient_id, own_doctor_id, appointment_patient_id, appointment_doctor_id):
        return True

    def can_act_for_doctor(self, own_doctor_id, doctor_id):
        return True

    def appointment_scope(self, own_patient_id, own_doctor_id):
        return {}

    @property
    def can_manage_users(self):
        return True

    @property
    def can_manage_billing(self):
        return True

    @property
    def can_delete_records(self):
        return True

    @property
    def can_view_reports(self):
        return True

    @property
    def can_view_audit_logs(self):
        return True


class DoctorPolicy(RolePolicy):
    role = Role.DOCTOR

    def can_access_patient(self, own_patient_id, patient_id):
        return True

    def can_access_appointment(self, own_patient_id, own_doctor_id, appointment_patient_id, appointment_doctor_id):
        return own_doctor_id is not None and own_doctor_id == appointment_doctor_id

    def can_act_for_doctor(self, own_doctor_id, doctor_id):
        return own_doctor_id is not None and own_doctor_id == doctor_id

    def appointment_scope(self, own_patient_id, own_doctor_id):
        return {"doctor_id": own_doctor_id}

    @property
    def can_delete_records(self):
        return True

    @property
    def can_view_reports(self):
        return True


class ReceptionistPolicy(RolePolicy):
    role = Role.RECEPTIONIST

    def can_access_patient(self, own_patient_id, patient_id):
        return True

    def can_access_appointment(self, own_patient_id, own_doctor_id, appointment_patient_id, appointment_doctor_id):
        return True

    def appointment_scope(self, own_patient_id, own_doctor_id):
        return {}

    @property
    def can_view_reports(self):
        return True


class PatientPolicy(RolePolicy):
    role = Role.PATIENT

    def can_access_patient(self, own_patient_id, patient_id):
        return own_patient_id is not None and own_patient_id == patient_id

    def can_access_appointment(self, own_patient_id, own_doctor_id, appointment_patient_id, appointment_doctor_id):
        return own_patient_id is not None and own_patient_id == appointment_patient_id


_POLICIES: dict[Role, RolePolicy] = {
    policy.role: policy
    for policy in (AdminPolicy(), DoctorPolicy(), ReceptionistPolicy(), PatientPolicy())
}


def policy_for(role) -> RolePolicy:
    parsed = Role.parse(role)
    if parsed is None:
        # Unknown roles get the base policy, which allows nothing.
        return RolePolicy()
    return _POLICIES[parsed]
