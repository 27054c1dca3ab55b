"""
Named request schemas and the helpers that run them.

check_payload is total: any input yields either a normalized model or a list
of field violations. validate_payload is the raising variant used by callers
that want an exception.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import pydantic
from pydantic import BaseModel

from hms.exceptions import FieldViolation, InvalidArgumentError, ValidationError
from hms.schemas.appointment import AppointmentCreate
from hms.schemas.auth import LoginRequest, RegisterRequest
from hms.schemas.billing import BillingCreate
from hms.schemas.patient import PatientProfile

SCHEMAS: dict[str, type[BaseModel]] = {
    "register": RegisterRequest,
    "login": LoginRequest,
    "patient": PatientProfile,
    "appointment": AppointmentCreate,
    "billing": BillingCreate,
}


@dataclass(frozen=True)
class ValidationOutcome:
    value: Optional[BaseModel] = None
    violations: list[FieldViolation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None


def violations_from_errors(errors: Iterable[dict], skip_prefix: tuple = ()) -> list[FieldViolation]:
    """Flatten pydantic/FastAPI error dicts into field-level violations."""
    violations = []
    for err in errors:
        loc = list(err.get("loc", ()))
        if loc and skip_prefix and loc[0] in skip_prefix:
            loc = loc[1:]
        name = ".".join(str(part) for part in loc)
        message = err.get("msg", "Invalid value")
        # "Value error, is required ..." -> "is required ..."
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        violations.append(FieldViolation(field=name, message=message))
    return violations


def _schema(name: str) -> type[BaseModel]:
    try:
        return SCHEMAS[name]
    except KeyError:
        raise InvalidArgumentError(f"Unknown schema: {name!r}")


def check_payload(schema: str, payload: Any) -> ValidationOutcome:
    model = _schema(schema)
    try:
        return ValidationOutcome(value=model.model_validate(payload))
    except pydantic.ValidationError as e:
        return ValidationOutcome(violations=violations_from_errors(e.errors()))


def validate_payload(schema: str, payload: Any) -> BaseModel:
    outcome = check_payload(schema, payload)
    if not outcome.ok:
        raise ValidationError(outcome.violations)
    return outcome.value
