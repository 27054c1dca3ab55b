import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Response/base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RequestModel(CamelModel):
    """Request payloads reject keys they do not declare."""
    model_config = ConfigDict(extra="forbid")


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class UserSummary(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: Optional[str] = None


def envelope(data=None, message: Optional[str] = None) -> dict:
    """Success envelope shared by every endpoint: {success, data, message}."""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body
