from dataclasses import dataclass


class HospitalError(Exception):
    """Base class for errors the API layer knows how to report."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, reason: str, details: dict = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


class ConfigurationError(HospitalError):
    public_message = "Server is not configured correctly"


class WeakCredentialError(HospitalError):
    status_code = 400

    @property
    def public_message(self) -> str:
        return self.reason


class InvalidArgumentError(HospitalError):
    status_code = 400

    @property
    def public_message(self) -> str:
        return self.reason


class InvalidTokenError(HospitalError):
    # Expiry, bad signature and algorithm mismatch all look the same to callers.
    status_code = 401
    public_message = "Session expired or invalid"


@dataclass(frozen=True)
class FieldViolation:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class ValidationError(HospitalError):
    status_code = 400
    public_message = "Validation failed"

    def __init__(self, violations: list[FieldViolation]):
        self.violations = list(violations)
        fields = ", ".join(v.field or "<root>" for v in self.violations)
        super().__init__(f"Invalid fields: {fields}")

    def fields(self) -> list[str]:
        return [v.field for v in self.violations]
