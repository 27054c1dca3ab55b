"""
Edge route gate.

Paths fall into three disjoint buckets: public, auth-component and protected.
Anything that matches none of them is allowed through, and so is any request
for which classification or identity resolution blows up. That fail-open
behaviour trades security for availability: a bug in this layer never takes
the site down, but it also never blocks anything. API handlers under /api are
unclassified here and authenticate themselves.
"""

import enum
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional
from urllib.parse import quote

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from hms.auth import bearer_token, verify_token
from hms.exceptions import InvalidTokenError
from hms.guard import SIGN_IN_PATH

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session"

PUBLIC_ROUTES = ("/", "/sign-in(/.*)?", "/sign-up(/.*)?", "/auth/login", "/auth/register", "/api/health")
AUTH_COMPONENT_ROUTES = ("/settings(/.*)?", "/user-profile(/.*)?")
PROTECTED_ROUTES = (
    "/dashboard(/.*)?",
    "/patients(/.*)?",
    "/doctors(/.*)?",
    "/appointments(/.*)?",
    "/billing(/.*)?",
    "/medical-history(/.*)?",
    "/prescriptions(/.*)?",
    "/admin(/.*)?",
)


class RouteKind(str, enum.Enum):
    PUBLIC = "public"
    AUTH_COMPONENT = "auth_component"
    PROTECTED = "protected"
    UNCLASSIFIED = "unclassified"


def create_route_matcher(patterns: Iterable[str]) -> Callable[[str], bool]:
    """Compile patterns into a predicate; a path must match a pattern in full."""
    compiled = [re.compile(p) for p in patterns]

    def matches(path: str) -> bool:
        return any(c.fullmatch(path) for c in compiled)

    return matches


is_public = create_route_matcher(PUBLIC_ROUTES)
is_auth_component = create_route_matcher(AUTH_COMPONENT_ROUTES)
is_protected = create_route_matcher(PROTECTED_ROUTES)


def classify_route(path: str) -> RouteKind:
    if is_public(path):
        return RouteKind.PUBLIC
    if is_auth_component(path):
        return RouteKind.AUTH_COMPONENT
    if is_protected(path):
        return RouteKind.PROTECTED
    return RouteKind.UNCLASSIFIED


@dataclass(frozen=True)
class GateDecision:
    allow: bool
    redirect_to: Optional[str] = None


def sign_in_redirect(path: str, query: str = "") -> str:
    requested = f"{path}?{query}" if query else path
    return f"{SIGN_IN_PATH}?redirect_url={quote(requested, safe='')}"


def evaluate_route(path: str, signed_in: bool, query: str = "") -> GateDecision:
    kind = classify_route(path)
    if kind in (RouteKind.AUTH_COMPONENT, RouteKind.PROTECTED) and not signed_in:
        return GateDecision(allow=False, redirect_to=sign_in_redirect(path, query))
    return GateDecision(allow=True)


def resolve_signed_in(request: Request) -> bool:
    """True when the request carries a verifiable session token."""
    token = bearer_token(request) or request.cookies.get(SESSION_COOKIE)
    if not token:
        return False
    try:
        verify_token(token)
    except InvalidTokenError:
        return False
    return True


class RouteGateMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, identity_resolver: Callable[[Request], bool] = resolve_signed_in):
        super().__init__(app)
        self.identity_resolver = identity_resolver

    async def dispatch(self, request: Request, call_next):
        try:
            path = request.url.path
            if classify_route(path) in (RouteKind.PUBLIC, RouteKind.UNCLASSIFIED):
                return await call_next(request)
            decision = evaluate_route(path, self.identity_resolver(request), request.url.query)
        except Exception:
            logger.exception("Route gate failed for %s, allowing request", request.url.path)
            return await call_next(request)

        if not decision.allow:
            return RedirectResponse(decision.redirect_to, status_code=307)
        return await call_next(request)
