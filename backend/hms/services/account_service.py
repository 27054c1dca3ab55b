"""Creates users together with the profile row their role calls for."""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hms.auth import hash_password
from hms.exceptions import InvalidArgumentError
from hms.models import Doctor, Patient, User
from hms.roles import Role

logger = logging.getLogger(__name__)

# Which profile table each role owns; roles not listed have none.
EXTENSION_FOR_ROLE = {Role.DOCTOR: Doctor, Role.PATIENT: Patient}


def availability_to_json(availability: Optional[dict]) -> Optional[dict]:
    if availability is None:
        return None
    return {day: (window.model_dump() if window is not None else None) for day, window in availability.items()}


class AccountService:
    async def email_taken(self, db: AsyncSession, email: str) -> bool:
        return await db.scalar(select(User.id).where(User.email == email)) is not None

    async def create_account(
        self,
        db: AsyncSession,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: Role,
        doctor: Optional[dict] = None,
        patient: Optional[dict] = None,
    ) -> User:
        """
        Insert a user and, for DOCTOR/PATIENT, its profile row in the same flush.
        Passing the profile for the wrong role is refused.
        """
        role = Role(role)
        for extension, profile in ((Doctor, doctor), (Patient, patient)):
            if profile is not None and EXTENSION_FOR_ROLE.get(role) is not extension:
                name = extension.__name__
                raise InvalidArgumentError(f"{name} profile requires the {name.upper()} role")

        if await self.email_taken(db, email):
            raise HTTPException(status_code=400, detail="User with this email already exists")

        user = User(
            email=email,
            password=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role=role.value,
        )

        if role == Role.DOCTOR:
            profile = doctor or {}
            license_number = profile.get("license_number")
            if not license_number or not profile.get("specialization"):
                raise InvalidArgumentError("Doctors need a specialization and a license number")
            existing = await db.scalar(select(Doctor.id).where(Doctor.license_number == license_number))
            if existing is not None:
                raise HTTPException(status_code=400, detail="Doctor with this license number already exists")
            user.doctor = Doctor(
                specialization=profile["specialization"],
                license_number=license_number,
                availability=availability_to_json(profile.get("availability")),
            )
        elif role == Role.PATIENT:
            user.patient = Patient(**(patient or {}))

        db.add(user)
        await db.flush()
        await db.refresh(user)
        logger.info("Created %s account %s", role.value, user.id)
        return user


account_service = AccountService()
