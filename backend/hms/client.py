"""
Async client for the hospital API.

The client never owns global state: the bearer token lives in an injected
SessionContext and navigation goes through an injected callable, so one
client can be exercised in isolation with httpx.MockTransport.

A 401 clears the session and sends the user to the sign-in page once per
session; signing in again re-arms the redirect. There is no retry and no
in-band refresh.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from hms.guard import SIGN_IN_PATH, Unsupported

logger = logging.getLogger(__name__)

EXPIRED_SESSION_PATH = f"{SIGN_IN_PATH}?expired=true"
DEFAULT_TIMEOUT = 30.0

ENDPOINTS = {
    "auth": "/api/auth",
    "patients": "/api/patients",
    "doctors": "/api/doctors",
    "appointments": "/api/appointments",
    "billing": "/api/billing",
    "dashboard": "/api/dashboard",
    "audit": "/api/audit-logs",
    "health": "/api/health",
}


@dataclass
class SessionContext:
    """The one active session: token, cached user, and where the UI currently is."""
    token: Optional[str] = None
    user: Optional[dict] = None
    current_path: str = "/"
    # Set once this session's failure has sent the user to sign-in.
    expired_redirect_sent: bool = False

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def establish(self, token: str, user: Optional[dict] = None) -> None:
        self.token = token
        self.user = user
        self.expired_redirect_sent = False

    def clear(self) -> None:
        self.token = None
        self.user = None


@dataclass(eq=False)
class ApiError(Exception):
    status: int
    message: str
    retry_after: Optional[float] = None
    raw_body: Any = field(default=None, repr=False)

    def __str__(self) -> str:
        return f"{self.status}: {self.message}"


def is_well_formed_token(token: Optional[str]) -> bool:
    """Compact JWS shape: three non-empty dot-separated segments."""
    if not token:
        return False
    parts = token.split(".")
    return len(parts) == 3 and all(parts)


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        # HTTP-date form is not used by the API.
        return None


def _error_message(response: httpx.Response, body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "detail", "error"):
            if isinstance(body.get(key), str):
                return body[key]
    return response.reason_phrase or f"Request failed with status {response.status_code}"


class HospitalApiClient:
    def __init__(
        self,
        base_url: str,
        session: SessionContext,
        navigate: Callable[[str], None],
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self._navigate = navigate
        self._transport = transport
        self.timeout = timeout

    # ------------------------ Plumbing ------------------------

    async def _attach_token(self, request: httpx.Request) -> None:
        token = self.session.token
        if token is None:
            return
        if not is_well_formed_token(token):
            logger.warning("Stored session token is malformed; clearing it")
            self.session.clear()
            return
        request.headers["Authorization"] = f"Bearer {token}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            event_hooks={"request": [self._attach_token]},
        )

    def _handle_unauthorized(self) -> None:
        self.session.clear()
        if self.session.expired_redirect_sent or self.session.current_path.startswith(SIGN_IN_PATH):
            return
        self.session.expired_redirect_sent = True
        self._navigate(EXPIRED_SESSION_PATH)

    async def request(self, method: str, path: str, **kwargs) -> Any:
        async with self._client() as client:
            response = await client.request(method, path, **kwargs)

        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        if response.status_code == 401:
            self._handle_unauthorized()
            raise ApiError(401, _error_message(response, body), raw_body=body)
        if response.is_error:
            retry_after = None
            if response.status_code == 429:
                retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise ApiError(response.status_code, _error_message(response, body), retry_after, body)
        return body

    async def get(self, path: str, params: Optional[dict] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def patch(self, path: str, json: Any = None) -> Any:
        return await self.request("PATCH", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    # ------------------------ Auth ------------------------

    async def _start_session(self, path: str, payload: dict) -> dict:
        body = await self.post(path, payload)
        data = body.get("data") or {}
        self.session.establish(data.get("token"), data.get("user"))
        return body

    async def login(self, email: str, password: str) -> dict:
        return await self._start_session(f"{ENDPOINTS['auth']}/login", {"email": email, "password": password})

    async def register(self, payload: dict) -> dict:
        return await self._start_session(f"{ENDPOINTS['auth']}/register", payload)

    async def logout(self) -> None:
        try:
            if self.session.is_authenticated:
                await self.post(f"{ENDPOINTS['auth']}/logout")
        finally:
            self.session.clear()

    async def get_profile(self) -> dict:
        return await self.get(f"{ENDPOINTS['auth']}/me")

    async def update_profile(self, payload: dict) -> dict:
        return await self.put(f"{ENDPOINTS['auth']}/me", payload)

    async def change_password(self, current_password: str, new_password: str) -> dict:
        return await self.put(
            f"{ENDPOINTS['auth']}/change-password",
            {"currentPassword": current_password, "newPassword": new_password},
        )

    def refresh_session(self) -> Unsupported:
        return Unsupported(
            feature="refresh_session",
            reason="In-band token refresh is not wired into the client; sign in again",
        )

    # ------------------------ Patients ------------------------

    async def list_patients(self, **params) -> dict:
        return await self.get(ENDPOINTS["patients"], params or None)

    async def get_patient(self, patient_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['patients']}/{patient_id}")

    async def create_patient(self, payload: dict) -> dict:
        return await self.post(ENDPOINTS["patients"], payload)

    async def update_patient(self, patient_id: str, payload: dict) -> dict:
        return await self.put(f"{ENDPOINTS['patients']}/{patient_id}", payload)

    async def delete_patient(self, patient_id: str) -> dict:
        return await self.delete(f"{ENDPOINTS['patients']}/{patient_id}")

    async def get_medical_history(self, patient_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['patients']}/{patient_id}/medical-history")

    async def update_medical_history(self, patient_id: str, medical_history: dict) -> dict:
        return await self.put(
            f"{ENDPOINTS['patients']}/{patient_id}/medical-history",
            {"medicalHistory": medical_history},
        )

    # ------------------------ Doctors ------------------------

    async def list_doctors(self) -> dict:
        return await self.get(ENDPOINTS["doctors"])

    async def doctors_by_specialization(self, specialization: str) -> dict:
        return await self.get(f"{ENDPOINTS['doctors']}/specialization", {"specialization": specialization})

    async def get_doctor(self, doctor_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['doctors']}/{doctor_id}")

    async def create_doctor(self, payload: dict) -> dict:
        return await self.post(ENDPOINTS["doctors"], payload)

    async def update_doctor(self, doctor_id: str, payload: dict) -> dict:
        return await self.put(f"{ENDPOINTS['doctors']}/{doctor_id}", payload)

    async def delete_doctor(self, doctor_id: str) -> dict:
        return await self.delete(f"{ENDPOINTS['doctors']}/{doctor_id}")

    async def get_availability(self, doctor_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['doctors']}/{doctor_id}/availability")

    async def update_availability(self, doctor_id: str, availability: dict) -> dict:
        return await self.put(f"{ENDPOINTS['doctors']}/{doctor_id}/availability", {"availability": availability})

    # ------------------------ Appointments ------------------------

    async def list_appointments(self) -> dict:
        return await self.get(ENDPOINTS["appointments"])

    async def get_appointment(self, appointment_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['appointments']}/{appointment_id}")

    async def create_appointment(self, payload: dict) -> dict:
        return await self.post(ENDPOINTS["appointments"], payload)

    async def update_appointment(self, appointment_id: str, payload: dict) -> dict:
        return await self.put(f"{ENDPOINTS['appointments']}/{appointment_id}", payload)

    async def delete_appointment(self, appointment_id: str) -> dict:
        return await self.delete(f"{ENDPOINTS['appointments']}/{appointment_id}")

    async def patient_appointments(self, patient_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['appointments']}/patient/{patient_id}")

    async def doctor_appointments(self, doctor_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['appointments']}/doctor/{doctor_id}")

    async def confirm_appointment(self, appointment_id: str) -> dict:
        return await self.patch(f"{ENDPOINTS['appointments']}/{appointment_id}/confirm")

    async def cancel_appointment(self, appointment_id: str) -> dict:
        return await self.patch(f"{ENDPOINTS['appointments']}/{appointment_id}/cancel")

    # ------------------------ Billing ------------------------

    async def list_bills(self, status: Optional[str] = None) -> dict:
        return await self.get(ENDPOINTS["billing"], {"status": status} if status else None)

    async def get_bill(self, billing_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['billing']}/{billing_id}")

    async def create_bill(self, payload: dict) -> dict:
        return await self.post(ENDPOINTS["billing"], payload)

    async def update_bill(self, billing_id: str, payload: dict) -> dict:
        return await self.put(f"{ENDPOINTS['billing']}/{billing_id}", payload)

    async def delete_bill(self, billing_id: str) -> dict:
        return await self.delete(f"{ENDPOINTS['billing']}/{billing_id}")

    async def patient_bills(self, patient_id: str) -> dict:
        return await self.get(f"{ENDPOINTS['billing']}/patient/{patient_id}")

    async def mark_bill_paid(self, billing_id: str) -> dict:
        return await self.patch(f"{ENDPOINTS['billing']}/{billing_id}/pay")

    async def billing_summary(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> dict:
        params = {k: v for k, v in (("startDate", start_date), ("endDate", end_date)) if v}
        return await self.get(f"{ENDPOINTS['billing']}/summary", params or None)

    # ------------------------ Misc ------------------------

    async def dashboard_stats(self) -> dict:
        return await self.get(f"{ENDPOINTS['dashboard']}/stats")

    async def audit_logs(self, **params) -> dict:
        return await self.get(ENDPOINTS["audit"], params or None)

    async def verify_audit_chain(self) -> dict:
        return await self.get(f"{ENDPOINTS['audit']}/verify")

    async def health(self) -> dict:
        return await self.get(ENDPOINTS["health"])
