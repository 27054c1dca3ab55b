"""End-to-end tests for the HTTP API against an in-memory database."""

import pytest
from sqlalchemy import select

from hms.exceptions import InvalidArgumentError
from hms.models import AuditLog, Doctor, Patient, User
from hms.rate_limit import limiter
from hms.roles import Role
from hms.schemas.audit import AuditAction, AuditResource
from hms.services.account_service import account_service
from hms.services.audit_service import audit_service

pytestmark = pytest.mark.anyio

# Password the create_account fixture gives every user.
TEST_PASSWORD = "password123"
SLOT = "2030-01-15T10:00:00Z"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def registration():
    return {
        "email": "jane@example.com",
        "password": "password123",
        "firstName": "Jane",
        "lastName": "Doe",
    }


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "healthy"
        assert response.headers["Cache-Control"].startswith("no-store")


class TestAuth:
    async def test_register_patient(self, client, session_maker, registration):
        response = await client.post("/api/auth/register", json=registration)
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["role"] == "PATIENT"
        assert body["data"]["user"]["firstName"] == "Jane"
        assert body["data"]["token"].count(".") == 2
        assert body["data"]["refreshToken"]
        assert "password" not in body["data"]["user"]

        async with session_maker() as db:
            user = await db.scalar(select(User).where(User.email == "jane@example.com"))
            assert user.patient is not None
            assert user.doctor is None
            assert user.password != "password123"

    async def test_register_doctor_creates_profile(self, client, session_maker, registration):
        registration.update(role="DOCTOR", specialization="Neurology", licenseNumber="MD-1")
        response = await client.post("/api/auth/register", json=registration)
        assert response.status_code == 201

        async with session_maker() as db:
            doctor = await db.scalar(select(Doctor).where(Doctor.license_number == "MD-1"))
            assert doctor.user.role == "DOCTOR"
            assert await db.scalar(select(Patient.id)) is None

    async def test_register_doctor_without_license(self, client, registration):
        registration.update(role="DOCTOR", specialization="Neurology")
        response = await client.post("/api/auth/register", json=registration)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert [e["field"] for e in body["errors"]] == ["licenseNumber"]

    async def test_register_short_password(self, client, registration):
        registration["password"] = "short"
        response = await client.post("/api/auth/register", json=registration)
        assert response.status_code == 400
        assert [e["field"] for e in response.json()["errors"]] == ["password"]

    async def test_register_duplicate_email(self, client, registration):
        await client.post("/api/auth/register", json=registration)
        response = await client.post("/api/auth/register", json=registration)
        assert response.status_code == 400
        assert response.json()["message"] == "User with this email already exists"

    async def test_login(self, client, create_account):
        user, _ = await create_account(Role.ADMIN, email="admin@example.com")
        response = await client.post("/api/auth/login", json={"email": "admin@example.com", "password": TEST_PASSWORD})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["id"] == user.id
        assert data["token"]
        assert data["refreshToken"]

    @pytest.mark.parametrize("email, password", [
        ("admin@example.com", "wrong-password"),
        ("nobody@example.com", TEST_PASSWORD),
    ])
    async def test_login_failures_look_the_same(self, client, create_account, email, password):
        await create_account(Role.ADMIN, email="admin@example.com")
        response = await client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Invalid credentials"}

    async def test_profile_must_match_role(self, session_maker):
        account = {"password": TEST_PASSWORD, "first_name": "Pat", "last_name": "Lee"}
        async with session_maker() as db:
            with pytest.raises(InvalidArgumentError, match="Doctor profile requires the DOCTOR role"):
                await account_service.create_account(
                    db, email="a@example.com", role=Role.PATIENT,
                    doctor={"specialization": "Cardiology", "license_number": "LIC-1"}, **account,
                )
            with pytest.raises(InvalidArgumentError, match="Patient profile requires the PATIENT role"):
                await account_service.create_account(
                    db, email="b@example.com", role=Role.RECEPTIONIST, patient={}, **account,
                )

    async def test_me_requires_token(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["message"] == "Access denied. No token provided."

    async def test_me_with_bad_token(self, client):
        response = await client.get("/api/auth/me", headers=bearer("a.b.c"))
        assert response.status_code == 401
        assert response.json()["message"] == "Session expired or invalid"

    async def test_me(self, client, create_account):
        user, token = await create_account(Role.RECEPTIONIST)
        response = await client.get("/api/auth/me", headers=bearer(token))
        assert response.status_code == 200
        assert response.json()["data"]["email"] == user.email

    async def test_update_profile(self, client, create_account):
        _, token = await create_account(Role.PATIENT)
        response = await client.put("/api/auth/me", json={"firstName": "Janet"}, headers=bearer(token))
        assert response.status_code == 200
        assert response.json()["data"]["firstName"] == "Janet"

    async def test_change_password(self, client, create_account):
        user, token = await create_account(Role.PATIENT)
        wrong = await client.put(
            "/api/auth/change-password",
            json={"currentPassword": "not-it-at-all", "newPassword": "brand-new-pass"},
            headers=bearer(token),
        )
        assert wrong.status_code == 400

        ok = await client.put(
            "/api/auth/change-password",
            json={"currentPassword": TEST_PASSWORD, "newPassword": "brand-new-pass"},
            headers=bearer(token),
        )
        assert ok.status_code == 200
        login = await client.post("/api/auth/login", json={"email": user.email, "password": "brand-new-pass"})
        assert login.status_code == 200

    async def test_refresh(self, client, create_account, registration):
        register = await client.post("/api/auth/register", json=registration)
        refresh_token = register.json()["data"]["refreshToken"]

        response = await client.post("/api/auth/refresh", json={"refreshToken": refresh_token})
        assert response.status_code == 200
        token = response.json()["data"]["token"]
        me = await client.get("/api/auth/me", headers=bearer(token))
        assert me.json()["data"]["email"] == "jane@example.com"

    async def test_access_token_cannot_refresh(self, client, create_account):
        _, token = await create_account(Role.PATIENT)
        response = await client.post("/api/auth/refresh", json={"refreshToken": token})
        assert response.status_code == 401

    async def test_deleted_user_token_rejected(self, client, create_account, session_maker):
        user, token = await create_account(Role.RECEPTIONIST)
        async with session_maker() as db:
            await db.delete(await db.get(User, user.id))
            await db.commit()
        response = await client.get("/api/auth/me", headers=bearer(token))
        assert response.status_code == 401


class TestPatients:
    async def test_list_requires_staff(self, client, create_account):
        _, token = await create_account(Role.PATIENT)
        response = await client.get("/api/patients", headers=bearer(token))
        assert response.status_code == 403
        assert response.json()["message"] == "Insufficient permissions"

    async def test_list_as_receptionist(self, client, create_account):
        await create_account(Role.PATIENT)
        await create_account(Role.PATIENT)
        _, token = await create_account(Role.RECEPTIONIST)
        response = await client.get("/api/patients", headers=bearer(token))
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 2

    async def test_create_patient(self, client, create_account):
        _, token = await create_account(Role.RECEPTIONIST)
        payload = {
            "firstName": "Sam",
            "lastName": "Stone",
            "email": "sam@example.com",
            "password": "password123",
            "gender": "MALE",
            "dateOfBirth": "1980-02-03",
            "emergencyContact": {"name": "Pat Stone", "relationship": "Spouse", "phone": "555-0101"},
        }
        response = await client.post("/api/patients", json=payload, headers=bearer(token))
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["gender"] == "MALE"
        assert data["dateOfBirth"] == "1980-02-03"
        assert data["emergencyContact"]["relationship"] == "Spouse"
        assert data["user"]["email"] == "sam@example.com"

    async def test_patient_reads_own_record_only(self, client, create_account):
        me, token = await create_account(Role.PATIENT)
        other, _ = await create_account(Role.PATIENT)

        own = await client.get(f"/api/patients/{me.patient.id}", headers=bearer(token))
        assert own.status_code == 200
        assert own.json()["data"]["userId"] == me.id

        theirs = await client.get(f"/api/patients/{other.patient.id}", headers=bearer(token))
        assert theirs.status_code == 403

    async def test_update_own_record(self, client, create_account):
        me, token = await create_account(Role.PATIENT)
        response = await client.put(
            f"/api/patients/{me.patient.id}",
            json={"phone": "555-0199", "firstName": "Renamed"},
            headers=bearer(token),
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["phone"] == "555-0199"
        assert data["user"]["firstName"] == "Renamed"

    async def test_missing_patient(self, client, create_account):
        _, token = await create_account(Role.ADMIN)
        response = await client.get("/api/patients/does-not-exist", headers=bearer(token))
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Patient not found"}

    async def test_medical_history(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        _, doctor_token = await create_account(Role.DOCTOR)
        url = f"/api/patients/{patient.patient.id}/medical-history"

        assert (await client.get(url, headers=bearer(patient_token))).status_code == 403

        history = {"allergies": ["penicillin"], "conditions": [], "medications": ["ibuprofen"]}
        response = await client.put(url, json={"medicalHistory": history}, headers=bearer(doctor_token))
        assert response.status_code == 200

        response = await client.get(url, headers=bearer(doctor_token))
        assert response.json()["data"]["medicalHistory"] == history

    async def test_delete_requires_clinical_role(self, client, create_account, session_maker):
        patient, _ = await create_account(Role.PATIENT)
        _, receptionist = await create_account(Role.RECEPTIONIST)
        _, admin = await create_account(Role.ADMIN)
        url = f"/api/patients/{patient.patient.id}"

        assert (await client.delete(url, headers=bearer(receptionist))).status_code == 403
        assert (await client.delete(url, headers=bearer(admin))).status_code == 200

        async with session_maker() as db:
            assert await db.get(User, patient.id) is None
            assert await db.get(Patient, patient.patient.id) is None


class TestDoctors:
    async def test_public_listing(self, client, create_account):
        await create_account(Role.DOCTOR, specialization="Cardiology")
        await create_account(Role.DOCTOR, specialization="Dermatology")

        everyone = await client.get("/api/doctors")
        assert everyone.status_code == 200
        assert everyone.json()["data"]["count"] == 2

        cardio = await client.get("/api/doctors/specialization", params={"specialization": "cardio"})
        doctors = cardio.json()["data"]["doctors"]
        assert [d["specialization"] for d in doctors] == ["Cardiology"]

    async def test_create_requires_admin(self, client, create_account):
        _, doctor_token = await create_account(Role.DOCTOR)
        _, admin_token = await create_account(Role.ADMIN)
        payload = {
            "firstName": "Meredith",
            "lastName": "Grey",
            "email": "grey@example.com",
            "password": "password123",
            "specialization": "Surgery",
            "licenseNumber": "MD-9",
            "availability": {"Monday": {"start": "09:00", "end": "17:00"}},
        }
        assert (await client.post("/api/doctors", json=payload, headers=bearer(doctor_token))).status_code == 403

        response = await client.post("/api/doctors", json=payload, headers=bearer(admin_token))
        assert response.status_code == 201
        assert response.json()["data"]["availability"] == {"monday": {"start": "09:00", "end": "17:00"}}

        duplicate = dict(payload, email="other@example.com")
        response = await client.post("/api/doctors", json=duplicate, headers=bearer(admin_token))
        assert response.status_code == 400

    async def test_availability(self, client, create_account):
        doctor, token = await create_account(Role.DOCTOR)
        url = f"/api/doctors/{doctor.doctor.id}/availability"

        bad = await client.put(url, json={"availability": {"monday": {"start": "17:00", "end": "09:00"}}},
                               headers=bearer(token))
        assert bad.status_code == 400

        week = {"monday": {"start": "09:00", "end": "12:00"}, "friday": None}
        ok = await client.put(url, json={"availability": week}, headers=bearer(token))
        assert ok.status_code == 200

        public = await client.get(url)
        assert public.json()["data"]["availability"] == week

    async def test_doctor_cannot_edit_colleague(self, client, create_account):
        _, token = await create_account(Role.DOCTOR)
        colleague, _ = await create_account(Role.DOCTOR)
        response = await client.put(
            f"/api/doctors/{colleague.doctor.id}", json={"specialization": "Oncology"}, headers=bearer(token)
        )
        assert response.status_code == 403


class TestAppointments:
    async def _book(self, client, token, patient_id, doctor_id, when=SLOT):
        return await client.post(
            "/api/appointments",
            json={"patientId": patient_id, "doctorId": doctor_id, "appointmentDate": when},
            headers=bearer(token),
        )

    async def test_double_booking_rejected(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        other, other_token = await create_account(Role.PATIENT)
        doctor, _ = await create_account(Role.DOCTOR)

        first = await self._book(client, patient_token, patient.patient.id, doctor.doctor.id)
        assert first.status_code == 201
        assert first.json()["data"]["status"] == "SCHEDULED"

        clash = await self._book(client, other_token, other.patient.id, doctor.doctor.id)
        assert clash.status_code == 400
        assert clash.json()["message"] == "Doctor is not available at this time"

        later = await self._book(client, other_token, other.patient.id, doctor.doctor.id, "2030-01-15T11:00:00Z")
        assert later.status_code == 201

    async def test_cancelled_slot_can_be_rebooked(self, client, create_account):
        patient, token = await create_account(Role.PATIENT)
        doctor, _ = await create_account(Role.DOCTOR)

        first = await self._book(client, token, patient.patient.id, doctor.doctor.id)
        appointment_id = first.json()["data"]["id"]
        cancel = await client.patch(f"/api/appointments/{appointment_id}/cancel", headers=bearer(token))
        assert cancel.json()["data"]["status"] == "CANCELLED"

        again = await self._book(client, token, patient.patient.id, doctor.doctor.id)
        assert again.status_code == 201

    async def test_reinstating_cancelled_appointment_checks_slot(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        other, other_token = await create_account(Role.PATIENT)
        doctor, _ = await create_account(Role.DOCTOR)

        first = await self._book(client, patient_token, patient.patient.id, doctor.doctor.id)
        url = f"/api/appointments/{first.json()['data']['id']}"
        await client.patch(f"{url}/cancel", headers=bearer(patient_token))
        assert (await self._book(client, other_token, other.patient.id, doctor.doctor.id)).status_code == 201

        reinstated = await client.put(url, json={"status": "SCHEDULED"}, headers=bearer(patient_token))
        assert reinstated.status_code == 400
        assert reinstated.json()["message"] == "Doctor is not available at this time"

        moved = await client.put(
            url,
            json={"status": "SCHEDULED", "appointmentDate": "2030-01-15T12:00:00Z"},
            headers=bearer(patient_token),
        )
        assert moved.status_code == 200
        assert moved.json()["data"]["status"] == "SCHEDULED"

    async def test_notes_update_on_cancelled_appointment_skips_slot_check(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        other, other_token = await create_account(Role.PATIENT)
        doctor, _ = await create_account(Role.DOCTOR)

        first = await self._book(client, patient_token, patient.patient.id, doctor.doctor.id)
        url = f"/api/appointments/{first.json()['data']['id']}"
        await client.patch(f"{url}/cancel", headers=bearer(patient_token))
        await self._book(client, other_token, other.patient.id, doctor.doctor.id)

        response = await client.put(url, json={"notes": "Patient called to cancel"}, headers=bearer(patient_token))
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "CANCELLED"

    async def test_listing_needs_a_scope(self, client, create_account):
        _, patient_token = await create_account(Role.PATIENT)
        _, receptionist_token = await create_account(Role.RECEPTIONIST)
        denied = await client.get("/api/appointments", headers=bearer(patient_token))
        assert denied.status_code == 403
        assert (await client.get("/api/appointments", headers=bearer(receptionist_token))).status_code == 200

    async def test_patient_cannot_book_for_someone_else(self, client, create_account):
        _, token = await create_account(Role.PATIENT)
        other, _ = await create_account(Role.PATIENT)
        doctor, _ = await create_account(Role.DOCTOR)
        response = await self._book(client, token, other.patient.id, doctor.doctor.id)
        assert response.status_code == 403

    async def test_participants_and_staff_only(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        doctor, doctor_token = await create_account(Role.DOCTOR)
        _, colleague_token = await create_account(Role.DOCTOR)
        _, stranger_token = await create_account(Role.PATIENT)
        _, receptionist_token = await create_account(Role.RECEPTIONIST)

        booked = await self._book(client, patient_token, patient.patient.id, doctor.doctor.id)
        url = f"/api/appointments/{booked.json()['data']['id']}"

        for token, expected in [
            (patient_token, 200),
            (doctor_token, 200),
            (receptionist_token, 200),
            (colleague_token, 403),
            (stranger_token, 403),
        ]:
            assert (await client.get(url, headers=bearer(token))).status_code == expected

    async def test_confirm_requires_clinical_role(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        doctor, doctor_token = await create_account(Role.DOCTOR)
        booked = await self._book(client, patient_token, patient.patient.id, doctor.doctor.id)
        url = f"/api/appointments/{booked.json()['data']['id']}/confirm"

        assert (await client.patch(url, headers=bearer(patient_token))).status_code == 403
        assert (await client.patch(url, headers=bearer(doctor_token))).status_code == 200

    async def test_schedules(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        doctor, doctor_token = await create_account(Role.DOCTOR)
        await self._book(client, patient_token, patient.patient.id, doctor.doctor.id)

        mine = await client.get(f"/api/appointments/patient/{patient.patient.id}", headers=bearer(patient_token))
        assert mine.json()["data"]["count"] == 1

        schedule = await client.get(f"/api/appointments/doctor/{doctor.doctor.id}", headers=bearer(doctor_token))
        assert schedule.json()["data"]["count"] == 1

        listing = await client.get("/api/appointments", headers=bearer(doctor_token))
        assert listing.json()["data"]["count"] == 1

        denied = await client.get(f"/api/appointments/doctor/{doctor.doctor.id}", headers=bearer(patient_token))
        assert denied.status_code == 403


class TestBilling:
    async def _bill(self, client, token, patient_id, amount, description="Consultation"):
        return await client.post(
            "/api/billing",
            json={"patientId": patient_id, "amount": amount, "description": description},
            headers=bearer(token),
        )

    async def test_amount_validation(self, client, create_account):
        patient, _ = await create_account(Role.PATIENT)
        _, admin = await create_account(Role.ADMIN)
        for amount in (-5.00, 12.345):
            response = await self._bill(client, admin, patient.patient.id, amount)
            assert response.status_code == 400
            assert [e["field"] for e in response.json()["errors"]] == ["amount"]
        assert (await self._bill(client, admin, patient.patient.id, 12.34)).status_code == 201

    async def test_only_admin_creates_bills(self, client, create_account):
        patient, _ = await create_account(Role.PATIENT)
        _, doctor = await create_account(Role.DOCTOR)
        assert (await self._bill(client, doctor, patient.patient.id, 10)).status_code == 403

    async def test_patient_totals(self, client, create_account):
        patient, patient_token = await create_account(Role.PATIENT)
        other, other_token = await create_account(Role.PATIENT)
        _, admin = await create_account(Role.ADMIN)

        first = await self._bill(client, admin, patient.patient.id, 100.50)
        await self._bill(client, admin, patient.patient.id, 49.50)
        paid = await client.patch(f"/api/billing/{first.json()['data']['id']}/pay", headers=bearer(admin))
        assert paid.json()["data"]["status"] == "PAID"

        response = await client.get(f"/api/billing/patient/{patient.patient.id}", headers=bearer(patient_token))
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["billingRecords"]) == 2
        assert data["summary"] == {
            "totalAmount": 150.0,
            "paidAmount": 100.5,
            "pendingAmount": 49.5,
            "totalRecords": 2,
        }

        denied = await client.get(f"/api/billing/patient/{patient.patient.id}", headers=bearer(other_token))
        assert denied.status_code == 403
        single = await client.get(f"/api/billing/{first.json()['data']['id']}", headers=bearer(other_token))
        assert single.status_code == 403

    async def test_summary(self, client, create_account):
        patient, _ = await create_account(Role.PATIENT)
        _, admin = await create_account(Role.ADMIN)
        first = await self._bill(client, admin, patient.patient.id, 80)
        await self._bill(client, admin, patient.patient.id, 20)
        await client.patch(f"/api/billing/{first.json()['data']['id']}/pay", headers=bearer(admin))

        response = await client.get("/api/billing/summary", headers=bearer(admin))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalRevenue"] == {"amount": 80.0, "count": 1}
        assert data["pendingRevenue"] == {"amount": 20.0, "count": 1}
        assert data["overdueRevenue"] == {"amount": 0.0, "count": 0}

    @pytest.mark.parametrize("params, count", [
        ({"startDate": "2999-01-01"}, 0),
        ({"endDate": "2000-01-01"}, 0),
        ({"startDate": "2000-01-01"}, 1),
        ({"endDate": "2999-12-31"}, 1),
    ])
    async def test_summary_with_one_bound(self, client, create_account, params, count):
        patient, _ = await create_account(Role.PATIENT)
        _, admin = await create_account(Role.ADMIN)
        await self._bill(client, admin, patient.patient.id, 20)

        response = await client.get("/api/billing/summary", params=params, headers=bearer(admin))
        assert response.status_code == 200
        assert response.json()["data"]["pendingRevenue"]["count"] == count

    async def test_doctor_cannot_read_summary(self, client, create_account):
        _, doctor = await create_account(Role.DOCTOR)
        assert (await client.get("/api/billing/summary", headers=bearer(doctor))).status_code == 403


class TestDashboard:
    async def test_stats(self, client, create_account):
        await create_account(Role.PATIENT)
        await create_account(Role.DOCTOR)
        _, admin = await create_account(Role.ADMIN)
        response = await client.get("/api/dashboard/stats", headers=bearer(admin))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["totalPatients"] == 1
        assert data["totalDoctors"] == 1
        assert data["pendingBills"] == 0

    async def test_stats_hidden_from_patients(self, client, create_account):
        _, token = await create_account(Role.PATIENT)
        assert (await client.get("/api/dashboard/stats", headers=bearer(token))).status_code == 403


@pytest.fixture
def rate_limiting(monkeypatch):
    """Turn the limiter on for one test with empty counters."""
    limiter.reset()
    monkeypatch.setattr(limiter, "enabled", True)
    yield
    limiter.reset()


class TestRateLimiting:
    async def test_login_attempts_limited(self, client, create_account, rate_limiting):
        await create_account(Role.ADMIN, email="admin@example.com")
        body = {"email": "admin@example.com", "password": "wrong-password"}
        for _ in range(5):
            assert (await client.post("/api/auth/login", json=body)).status_code == 401

        response = await client.post("/api/auth/login", json=body)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"
        assert response.json() == {"success": False, "message": "Too many login attempts, please try again later"}

    async def test_limit_is_off_when_disabled(self, client):
        body = {"email": "nobody@example.com", "password": "wrong-password"}
        for _ in range(7):
            assert (await client.post("/api/auth/login", json=body)).status_code == 401


class TestSecurityHeaders:
    @pytest.mark.parametrize("path", ["/api/health", "/api/does-not-exist"])
    async def test_headers_on_every_response(self, client, path):
        response = await client.get(path)
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "no-referrer"
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]
        assert response.headers["Content-Security-Policy"].startswith("default-src 'self'")


async def audit_entries(session_maker) -> list[AuditLog]:
    async with session_maker() as db:
        result = await db.execute(select(AuditLog).order_by(AuditLog.id))
        return list(result.scalars().all())


class TestAuditTrail:
    async def test_logins_are_recorded(self, client, create_account, session_maker):
        user, _ = await create_account(Role.ADMIN, email="admin@example.com")
        await client.post("/api/auth/login", json={"email": "admin@example.com", "password": "wrong-password"})
        await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})
        await client.post("/api/auth/login", json={"email": "admin@example.com", "password": TEST_PASSWORD})

        entries = await audit_entries(session_maker)
        assert [(e.action, e.outcome, e.reason) for e in entries] == [
            ("LOGIN", "FAILURE", "Wrong password"),
            ("LOGIN", "FAILURE", "Unknown email"),
            ("LOGIN", "SUCCESS", None),
        ]
        assert entries[0].user_id == user.id
        assert entries[1].user_id is None
        assert entries[1].details == {"email": "nobody@example.com"}
        assert entries[2].user_role == "ADMIN"
        assert entries[2].ip_address == "127.0.0.1"

    async def test_patient_record_access_is_recorded(self, client, create_account, session_maker):
        me, token = await create_account(Role.PATIENT)
        other, _ = await create_account(Role.PATIENT)

        assert (await client.get(f"/api/patients/{me.patient.id}", headers=bearer(token))).status_code == 200
        assert (await client.get(f"/api/patients/{other.patient.id}", headers=bearer(token))).status_code == 403

        read, denied = await audit_entries(session_maker)
        assert (read.action, read.outcome, read.patient_id) == ("ACCESS_PHI", "SUCCESS", me.patient.id)
        assert read.user_id == me.id
        assert (denied.action, denied.outcome, denied.patient_id) == ("ACCESS_DENIED", "FAILURE", other.patient.id)
        assert denied.risk_level == "HIGH"

    async def test_medical_history_changes_are_recorded(self, client, create_account, session_maker):
        patient, _ = await create_account(Role.PATIENT)
        doctor, doctor_token = await create_account(Role.DOCTOR)
        url = f"/api/patients/{patient.patient.id}/medical-history"
        history = {"allergies": [], "conditions": ["asthma"], "medications": []}

        await client.put(url, json={"medicalHistory": history}, headers=bearer(doctor_token))
        await client.get(url, headers=bearer(doctor_token))

        entries = await audit_entries(session_maker)
        assert [(e.action, e.resource) for e in entries] == [
            ("UPDATE", "MEDICAL_HISTORY"),
            ("ACCESS_PHI", "MEDICAL_HISTORY"),
        ]
        assert {e.user_id for e in entries} == {doctor.id}

    async def test_listing_is_admin_only(self, client, create_account):
        _, admin_token = await create_account(Role.ADMIN)
        _, doctor_token = await create_account(Role.DOCTOR)
        await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})

        assert (await client.get("/api/audit-logs", headers=bearer(doctor_token))).status_code == 403

        response = await client.get("/api/audit-logs", params={"outcome": "FAILURE"}, headers=bearer(admin_token))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["count"] == 1
        assert data["auditLogs"][0]["action"] == "LOGIN"
        assert data["auditLogs"][0]["riskLevel"] == "MEDIUM"

        verify = await client.get("/api/audit-logs/verify", headers=bearer(admin_token))
        assert verify.json()["data"] == {"valid": True, "checked": 1, "brokenAt": None}

    async def test_tampering_breaks_the_chain(self, session_maker):
        async with session_maker() as db:
            entries = [
                await audit_service.record(db, action, AuditResource.AUTH)
                for action in (AuditAction.LOGIN, AuditAction.ACCESS_PHI, AuditAction.LOGOUT)
            ]
            await db.commit()
            assert (await audit_service.verify_chain(db)).valid

            entries[1].outcome = "FAILURE"
            await db.commit()

            result = await audit_service.verify_chain(db)
            assert not result.valid
            assert result.broken_at == entries[1].id
            assert result.checked == 1
