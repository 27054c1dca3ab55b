"""
Auth module: password hashing, JWT issuance/verification and the FastAPI
dependencies that turn a bearer token into a UserPrincipal.

Tokens are HS256 only. verify_token pins the accepted algorithm list, so a
token signed with any other algorithm (or alg=none) is rejected outright.
Every verification failure surfaces as InvalidTokenError; callers cannot tell
expiry from a bad signature.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from jose import jwt, JWTError
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.config import get_settings
from hms.database import get_db
from hms.exceptions import InvalidArgumentError, InvalidTokenError, WeakCredentialError
from hms.guard import Allowed, Claims, SIGN_IN_PATH, authorize
from hms.models import User
from hms.roles import Role, RolePolicy, policy_for

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)


# ------------------------ Passwords ------------------------


def hash_password(password: Optional[str]) -> str:
    if password is None:
        raise InvalidArgumentError("password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise WeakCredentialError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return pwd_context.hash(password)


def compare_password(password: Optional[str], hashed_password: Optional[str]) -> bool:
    if not password or not hashed_password:
        raise InvalidArgumentError("password and hashed password are both required")
    if not pwd_context.identify(hashed_password):
        raise InvalidArgumentError("hashed password is not a recognised hash")
    return pwd_context.verify(password, hashed_password)


# ------------------------ Tokens ------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_token(user) -> str:
    """Create a signed access token for a User (or anything with id/email/role)."""
    settings = get_settings()
    secret = settings.require_jwt_secret()
    role = Role.parse(user.role)
    if role is None:
        raise InvalidArgumentError(f"Unknown role: {user.role!r}")
    issued = _now()
    payload = {
        "id": str(user.id),
        "email": user.email,
        "role": role.value,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(minutes=settings.access_token_expire_minutes)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def generate_refresh_token(user_id: str) -> str:
    settings = get_settings()
    secret = settings.require_jwt_secret()
    issued = _now()
    payload = {
        "userId": str(user_id),
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(days=settings.refresh_token_expire_days)).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def _decode(token: str) -> dict:
    secret = get_settings().require_jwt_secret()
    if not token or not isinstance(token, str):
        raise InvalidTokenError("Token is missing")
    try:
        # Every token we issue is time-limited; one without exp/iat was not ours.
        return jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require_exp": True, "require_iat": True})
    except JWTError as e:
        # Keep the detail in the logs only.
        logger.debug("Token rejected: %s", e)
        raise InvalidTokenError("Token verification failed")


def verify_token(token: str) -> Claims:
    """Verify an access token and return its claims."""
    payload = _decode(token)
    user_id = payload.get("id")
    email = payload.get("email")
    role = Role.parse(payload.get("role"))
    if not user_id or not email or role is None:
        raise InvalidTokenError("Token payload is malformed")
    expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
    return Claims(id=str(user_id), email=email, role=role, expires_at=expires_at)


def verify_refresh_token(token: str) -> str:
    """Verify a refresh token and return the user id it was issued for."""
    payload = _decode(token)
    user_id = payload.get("userId")
    if not user_id or "role" in payload:
        raise InvalidTokenError("Token payload is malformed")
    return str(user_id)


# ------------------------ Request principal ------------------------


@dataclass
class UserPrincipal:
    """Resolved identity attached to each authenticated request."""
    id: str
    email: str
    role: Role
    first_name: str = ""
    last_name: str = ""
    patient_id: Optional[str] = None
    doctor_id: Optional[str] = None

    @property
    def policy(self) -> RolePolicy:
        return policy_for(self.role)

    @property
    def claims(self) -> Claims:
        return Claims(id=self.id, email=self.email, role=self.role)

    def has_access_to_patient(self, patient_id: str) -> bool:
        return self.policy.can_access_patient(self.patient_id, patient_id)

    def has_access_to_appointment(self, appointment) -> bool:
        return self.policy.can_access_appointment(
            self.patient_id, self.doctor_id, appointment.patient_id, appointment.doctor_id
        )

    def can_act_for_doctor(self, doctor_id: str) -> bool:
        return self.policy.can_act_for_doctor(self.doctor_id, doctor_id)

    def appointment_scope(self) -> Optional[dict]:
        return self.policy.appointment_scope(self.patient_id, self.doctor_id)


def bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> UserPrincipal:
    """
    FastAPI dependency. Verifies the bearer token and reloads the user so the
    role reflects the database rather than whatever the token was issued with.
    """
    token = bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = verify_token(token)

    user = await db.scalar(select(User).where(User.id == claims.id))
    if user is None:
        raise InvalidTokenError(f"User {claims.id} no longer exists")

    return UserPrincipal(
        id=user.id,
        email=user.email,
        role=Role.parse(user.role),
        first_name=user.first_name,
        last_name=user.last_name,
        patient_id=user.patient.id if user.patient else None,
        doctor_id=user.doctor.id if user.doctor else None,
    )


def require_roles(*roles: Role) -> Callable:
    """
    Dependency factory enforcing an allowed-role set through authorize().
    Usage: Depends(require_roles(Role.ADMIN, Role.DOCTOR))
    """
    allowed = frozenset(roles)

    async def checker(current_user: UserPrincipal = Depends(get_current_user)) -> UserPrincipal:
        decision = authorize(current_user.claims, allowed)
        if isinstance(decision, Allowed):
            return current_user
        if decision.target == SIGN_IN_PATH:
            raise HTTPException(status_code=401, detail="Authentication required.")
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    return checker


def require_permission(permission: str) -> Callable:
    """
    Dependency factory gating a route on a RolePolicy flag.
    Usage: Depends(require_permission("can_manage_billing"))
    """
    if not isinstance(getattr(RolePolicy, permission, None), property):
        raise ValueError(f"Unknown permission: {permission}")

    async def checker(current_user: UserPrincipal = Depends(get_current_user)) -> UserPrincipal:
        if not getattr(current_user.policy, permission):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return current_user

    return checker
