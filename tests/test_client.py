"""Tests for the API client against a mocked transport."""

import httpx
import pytest

from hms.client import ApiError, HospitalApiClient, SessionContext, is_well_formed_token
from hms.guard import Unsupported

pytestmark = pytest.mark.anyio

TOKEN = "header.payload.signature"


class Recorder:
    """MockTransport handler that answers from a fixed response and keeps the requests."""

    def __init__(self, status_code=200, json=None, headers=None):
        self.status_code = status_code
        self.json = {"success": True, "data": {}} if json is None else json
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.json, headers=self.headers)


@pytest.fixture
def navigations():
    return []


def make_client(recorder, session, navigations):
    return HospitalApiClient(
        "http://api.test",
        session=session,
        navigate=navigations.append,
        transport=httpx.MockTransport(recorder),
    )


class TestTokenAttachment:
    async def test_bearer_token_attached(self, navigations):
        recorder = Recorder()
        client = make_client(recorder, SessionContext(token=TOKEN), navigations)
        await client.list_doctors()
        assert recorder.requests[0].headers["Authorization"] == f"Bearer {TOKEN}"
        assert recorder.requests[0].url.path == "/api/doctors"

    async def test_no_token_no_header(self, navigations):
        recorder = Recorder()
        await make_client(recorder, SessionContext(), navigations).health()
        assert "Authorization" not in recorder.requests[0].headers

    async def test_malformed_token_cleared_not_sent(self, navigations, caplog):
        recorder = Recorder()
        session = SessionContext(token="not-a-jwt", user={"id": "u-1"})
        await make_client(recorder, session, navigations).list_doctors()
        assert "Authorization" not in recorder.requests[0].headers
        assert session.token is None
        assert session.user is None
        assert "malformed" in caplog.text

    @pytest.mark.parametrize("token, expected", [(TOKEN, True), ("a.b", False), ("a..c", False), ("", False), (None, False)])
    def test_token_shape(self, token, expected):
        assert is_well_formed_token(token) is expected


class TestUnauthorized:
    async def test_clears_session_and_navigates_once(self, navigations):
        recorder = Recorder(401, {"success": False, "message": "Session expired or invalid"})
        session = SessionContext(token=TOKEN, current_path="/patients")
        client = make_client(recorder, session, navigations)

        with pytest.raises(ApiError) as exc_info:
            await client.list_patients()
        assert exc_info.value.status == 401
        assert exc_info.value.message == "Session expired or invalid"
        assert session.token is None
        assert navigations == ["/sign-in?expired=true"]

        with pytest.raises(ApiError):
            await client.list_patients()
        assert navigations == ["/sign-in?expired=true"]
        assert len(recorder.requests) == 2

    async def test_new_session_rearms_redirect(self, navigations):
        responses = [
            httpx.Response(401, json={"success": False, "message": "Session expired or invalid"}),
            httpx.Response(200, json={"success": True, "data": {"token": TOKEN, "user": {"id": "u-1"}}}),
            httpx.Response(401, json={"success": False, "message": "Session expired or invalid"}),
        ]
        transport = httpx.MockTransport(lambda request: responses.pop(0))
        session = SessionContext(token=TOKEN, current_path="/patients")
        client = HospitalApiClient("http://api.test", session=session, navigate=navigations.append, transport=transport)

        with pytest.raises(ApiError):
            await client.list_patients()
        await client.login("a@example.com", "password123")
        assert session.is_authenticated
        with pytest.raises(ApiError):
            await client.list_patients()

        assert navigations == ["/sign-in?expired=true", "/sign-in?expired=true"]
        assert not session.is_authenticated

    async def test_no_navigation_from_sign_in_page(self, navigations):
        recorder = Recorder(401, {"success": False, "message": "Invalid credentials"})
        session = SessionContext(current_path="/sign-in")
        with pytest.raises(ApiError) as exc_info:
            await make_client(recorder, session, navigations).login("a@example.com", "wrong-password")
        assert exc_info.value.message == "Invalid credentials"
        assert navigations == []


class TestErrors:
    async def test_rate_limit_carries_retry_after(self, navigations):
        recorder = Recorder(429, {"success": False, "message": "Too many requests"}, {"Retry-After": "30"})
        with pytest.raises(ApiError) as exc_info:
            await make_client(recorder, SessionContext(), navigations).list_doctors()
        assert exc_info.value.status == 429
        assert exc_info.value.retry_after == 30.0

    async def test_error_body_is_kept(self, navigations):
        body = {"success": False, "message": "Validation failed", "errors": [{"field": "amount", "message": "bad"}]}
        with pytest.raises(ApiError) as exc_info:
            await make_client(Recorder(400, body), SessionContext(token=TOKEN), navigations).create_bill({})
        assert exc_info.value.raw_body == body
        assert exc_info.value.retry_after is None
        assert navigations == []


class TestSession:
    async def test_login_establishes_session(self, navigations):
        recorder = Recorder(json={"success": True, "data": {"token": TOKEN, "user": {"id": "u-1"}}})
        session = SessionContext(current_path="/sign-in")
        await make_client(recorder, session, navigations).login("a@example.com", "password123")
        assert session.token == TOKEN
        assert session.user == {"id": "u-1"}

    async def test_logout_clears_session(self, navigations):
        session = SessionContext(token=TOKEN, user={"id": "u-1"})
        await make_client(Recorder(), session, navigations).logout()
        assert not session.is_authenticated

    def test_refresh_is_unsupported(self, navigations):
        client = make_client(Recorder(), SessionContext(token=TOKEN), navigations)
        result = client.refresh_session()
        assert isinstance(result, Unsupported)
        assert result.feature == "refresh_session"


class TestQueries:
    async def test_billing_summary_sends_only_given_bounds(self, navigations):
        recorder = Recorder()
        client = make_client(recorder, SessionContext(token=TOKEN), navigations)
        await client.billing_summary(start_date="2030-01-01")
        await client.billing_summary(end_date="2030-12-31")
        await client.billing_summary()
        assert [dict(r.url.params) for r in recorder.requests] == [
            {"startDate": "2030-01-01"},
            {"endDate": "2030-12-31"},
            {},
        ]

    async def test_audit_endpoints(self, navigations):
        recorder = Recorder()
        client = make_client(recorder, SessionContext(token=TOKEN), navigations)
        await client.audit_logs(outcome="FAILURE", limit=10)
        await client.verify_audit_chain()
        assert recorder.requests[0].url.path == "/api/audit-logs"
        assert dict(recorder.requests[0].url.params) == {"outcome": "FAILURE", "limit": "10"}
        assert recorder.requests[1].url.path == "/api/audit-logs/verify"
