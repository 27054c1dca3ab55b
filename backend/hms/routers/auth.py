import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import (
    UserPrincipal,
    compare_password,
    generate_refresh_token,
    generate_token,
    get_current_user,
    hash_password,
    verify_refresh_token,
)
from hms.database import get_db
from hms.exceptions import InvalidArgumentError, InvalidTokenError
from hms.models import User
from hms.rate_limit import auth_limit
from hms.roles import Role
from hms.schemas.audit import AuditAction, AuditOutcome, AuditResource
from hms.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from hms.schemas.common import envelope
from hms.services.account_service import account_service
from hms.services.audit_service import audit_service

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_CREDENTIALS = "Invalid credentials"


def _session_payload(user: User) -> TokenResponse:
    return TokenResponse(
        user=UserResponse.model_validate(user),
        token=generate_token(user),
        refresh_token=generate_refresh_token(user.id),
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
@auth_limit
async def register(request: Request, body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    role = Role(body.role)
    doctor = patient = None
    if role == Role.DOCTOR:
        doctor = {"specialization": body.specialization, "license_number": body.license_number}
    elif role == Role.PATIENT:
        patient = {
            "date_of_birth": body.date_of_birth,
            "gender": body.gender.value if body.gender else None,
            "phone": body.phone,
            "address": body.address,
        }

    user = await account_service.create_account(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role=role,
        doctor=doctor,
        patient=patient,
    )
    await audit_service.record(db, AuditAction.REGISTER, AuditResource.AUTH, request=request, user=user)
    return envelope(_session_payload(user), "User registered successfully")


@router.post("/login")
@auth_limit
async def login(request: Request, body: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await db.scalar(select(User).where(User.email == body.email))
    matches = False
    if user is not None:
        try:
            matches = compare_password(body.password, user.password)
        except InvalidArgumentError:
            logger.warning("Stored password hash for user %s is unusable", user.id)

    # Same answer for an unknown email and a wrong password.
    if not matches:
        await audit_service.record(
            db,
            AuditAction.LOGIN,
            AuditResource.AUTH,
            request=request,
            user=user,
            outcome=AuditOutcome.FAILURE,
            reason="Unknown email" if user is None else "Wrong password",
            details={"email": body.email},
            commit=True,
        )
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    await audit_service.record(db, AuditAction.LOGIN, AuditResource.AUTH, request=request, user=user)
    logger.info("User %s signed in", user.id)
    return envelope(_session_payload(user), "Login successful")


@router.post("/refresh")
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    user_id = verify_refresh_token(body.refresh_token)
    user = await db.scalar(select(User).where(User.id == user_id))
    if user is None:
        raise InvalidTokenError(f"User {user_id} no longer exists")
    return envelope({"token": generate_token(user), "refreshToken": generate_refresh_token(user.id)})


@router.get("/me")
async def me(
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    user = await db.scalar(select(User).where(User.id == current_user.id))
    return envelope(UserResponse.model_validate(user))


@router.put("/me")
async def update_me(
    body: ProfileUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    user = await db.scalar(select(User).where(User.id == current_user.id))
    changes = body.model_dump(exclude_unset=True, exclude_none=True)

    new_email = changes.get("email")
    if new_email and new_email != user.email and await account_service.email_taken(db, new_email):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    for key, value in changes.items():
        setattr(user, key, value)
    await db.flush()
    await db.refresh(user)
    return envelope(UserResponse.model_validate(user), "Profile updated successfully")


@router.put("/change-password")
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    user = await db.scalar(select(User).where(User.id == current_user.id))
    if not compare_password(body.current_password, user.password):
        await audit_service.record(
            db,
            AuditAction.PASSWORD_CHANGE,
            AuditResource.AUTH,
            request=request,
            user=current_user,
            outcome=AuditOutcome.FAILURE,
            reason="Current password is incorrect",
            commit=True,
        )
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user.password = hash_password(body.new_password)
    await db.flush()
    await audit_service.record(db, AuditAction.PASSWORD_CHANGE, AuditResource.AUTH, request=request, user=current_user)
    logger.info("User %s changed password", user.id)
    return envelope(message="Password changed successfully")


@router.post("/logout")
async def logout(
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: UserPrincipal = Depends(get_current_user),
):
    # Tokens are stateless; the client drops its copy.
    await audit_service.record(db, AuditAction.LOGOUT, AuditResource.AUTH, request=request, user=current_user)
    logger.info("User %s signed out", current_user.id)
    return envelope(message="Logged out successfully")
