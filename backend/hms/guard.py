"""
Role guard: the single authorization decision and the stateful view around it.

authorize() is pure. RoleGuard owns the side effect (navigation) and the
loading state while claims are still being resolved.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from hms.roles import Role

logger = logging.getLogger(__name__)

SIGN_IN_PATH = "/sign-in"
DASHBOARD_PATH = "/dashboard"


@dataclass(frozen=True)
class Claims:
    """Decoded identity assertion: subject id, email, role, expiry."""
    id: str
    email: str
    role: Role
    expires_at: Optional[datetime] = None


def parse_claims(raw: Any) -> Optional[Claims]:
    """Accept Claims or a token-style mapping; None when it cannot be read."""
    if isinstance(raw, Claims):
        return raw
    if not isinstance(raw, Mapping):
        return None
    subject = raw.get("id") or raw.get("sub") or raw.get("userId")
    email = raw.get("email")
    role = Role.parse(raw.get("role"))
    if not subject or not isinstance(email, str) or role is None:
        return None
    return Claims(id=str(subject), email=email, role=role)


# ------------------------ Decision ------------------------


@dataclass(frozen=True)
class Allowed:
    pass


@dataclass(frozen=True)
class DenyRedirect:
    target: str


Decision = Union[Allowed, DenyRedirect]


def authorize(claims: Any, allowed_roles: Iterable[Role]) -> Decision:
    parsed = parse_claims(claims)
    if parsed is None:
        return DenyRedirect(SIGN_IN_PATH)
    allowed = {Role.parse(r) for r in allowed_roles}
    if parsed.role in allowed:
        return Allowed()
    return DenyRedirect(DASHBOARD_PATH)


# ------------------------ Claims resolution ------------------------


class ClaimsStatus(str, enum.Enum):
    PENDING = "pending"   # identity provider has not answered yet
    ABSENT = "absent"     # resolved, nobody signed in
    PRESENT = "present"   # resolved, claims available


@dataclass(frozen=True)
class ClaimsState:
    status: ClaimsStatus
    claims: Optional[Claims] = None

    @classmethod
    def pending(cls) -> "ClaimsState":
        return cls(ClaimsStatus.PENDING)

    @classmethod
    def absent(cls) -> "ClaimsState":
        return cls(ClaimsStatus.ABSENT)

    @classmethod
    def present(cls, claims: Claims) -> "ClaimsState":
        return cls(ClaimsStatus.PRESENT, claims)

    @property
    def is_resolved(self) -> bool:
        return self.status != ClaimsStatus.PENDING


@dataclass(frozen=True)
class IdentitySnapshot:
    """What the external identity provider hands us about the current session."""
    is_loaded: bool
    is_signed_in: bool = False
    user_id: Optional[str] = None
    email: Optional[str] = None
    public_metadata: Mapping[str, Any] = field(default_factory=dict)


def claims_state_from_identity(snapshot: IdentitySnapshot) -> ClaimsState:
    if not snapshot.is_loaded:
        return ClaimsState.pending()
    if not snapshot.is_signed_in or not snapshot.user_id:
        return ClaimsState.absent()
    role = Role.parse(snapshot.public_metadata.get("role"))
    if role is None:
        # Signed in but no usable role: treat as unparseable claims.
        logger.warning("Identity %s has no recognised role in public metadata", snapshot.user_id)
        return ClaimsState.absent()
    return ClaimsState.present(Claims(id=snapshot.user_id, email=snapshot.email or "", role=role))


# ------------------------ Guard view ------------------------


class GuardView(str, enum.Enum):
    LOADING = "loading"
    CONTENT = "content"
    REDIRECTING = "redirecting"


class RoleGuard:
    """
    Wraps authorize() for a protected view.

    While claims are pending the guard shows LOADING and never navigates, so
    protected content cannot flash before the decision is known. A denial
    navigates once per target; re-rendering with the same state does not
    navigate again.
    """

    def __init__(self, allowed_roles: Iterable[Role], navigate: Callable[[str], None]):
        self.allowed_roles = frozenset(allowed_roles)
        self._navigate = navigate
        self._redirected_to: Optional[str] = None

    def render(self, state: ClaimsState) -> GuardView:
        if not state.is_resolved:
            return GuardView.LOADING
        decision = authorize(state.claims, self.allowed_roles)
        if isinstance(decision, Allowed):
            self._redirected_to = None
            return GuardView.CONTENT
        if self._redirected_to != decision.target:
            self._redirected_to = decision.target
            self._navigate(decision.target)
        return GuardView.REDIRECTING


# ------------------------ Legacy entry points ------------------------


@dataclass(frozen=True)
class Unsupported:
    """Returned by operations kept for compatibility but no longer implemented."""
    feature: str
    reason: str
