from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from blur.logging import get_correlation_id
from blur.storage.models import Account, Role

# Request bodies only bound string lengths here; field rules live in
# blur.service.validation so every entry point applies the same checks.
MAX_FIELD_LENGTH = 1024

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


class SignupRequest(BaseModel):
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    nickname: str = Field(..., max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., max_length=MAX_FIELD_LENGTH)


class SigninRequest(BaseModel):
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    password: str = Field(..., max_length=MAX_FIELD_LENGTH)


class ReissueRequest(BaseModel):
    refresh_token: str = Field(..., max_length=4096)


class AuthCodeRequest(BaseModel):
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    code: str = Field(..., max_length=32)


class PasswordResetRequest(BaseModel):
    email: str = Field(..., max_length=MAX_FIELD_LENGTH)
    new_password: str = Field(..., max_length=MAX_FIELD_LENGTH)


class RoleChangeRequest(BaseModel):
    role: Role


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    access_expires_at: datetime
    refresh_expires_at: datetime


class MemberResponse(BaseModel):
    id: str
    email: str
    nickname: str
    role: Role
    status: str
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "MemberResponse":
        return cls(
            id=account.id,
            email=account.email,
            nickname=account.nickname,
            role=account.role,
            status=account.status.value,
            created_at=account.created_at,
        )
