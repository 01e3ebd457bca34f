"""Field validation for signup, verification and password-reset payloads.

Validators return a :class:`ValidationResult` instead of raising so the auth
service can check a payload before any side effect and report every failing
field at once.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

T = TypeVar("T")

EMAIL_MAX_LENGTH = 254
NICKNAME_MIN_LENGTH = 2
NICKNAME_MAX_LENGTH = 16
PASSWORD_MIN_LENGTH = 4
PASSWORD_MAX_LENGTH = 64

# Applied with fullmatch; "$" alone would accept a trailing newline
_EMAIL_LOCAL_PART = re.compile(r"[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+")
_EMAIL_DOMAIN_LABEL = re.compile(r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?")
# Letters of any script, digits, underscore and hyphen
_NICKNAME_PATTERN = re.compile(r"[\w-]+")
_ZERO_WIDTH = "​‌‍﻿"
_BIDI_OVERRIDES = {chr(c) for c in range(0x202A, 0x202F)} | {
    chr(c) for c in range(0x2066, 0x206A)
}


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    input: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return {"field": self.field, "message": self.message, "input": self.input}


@dataclass
class ValidationResult(Generic[T]):
    value: Optional[T] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def details(self) -> dict[str, Any]:
        return {"errors": [err.as_dict() for err in self.errors]}


@dataclass(frozen=True)
class SignupData:
    email: str
    nickname: str
    password: str


def normalize_text(value: str) -> str:
    """Strip zero-width and bidi override characters, then NFKC-normalize."""
    cleaned = "".join(
        c for c in value if c not in _ZERO_WIDTH and c not in _BIDI_OVERRIDES
    )
    return unicodedata.normalize("NFKC", cleaned)


def _email_error(value: Any) -> tuple[Optional[str], Optional[str]]:
    """Return ``(normalized, None)`` or ``(None, message)``."""
    if not isinstance(value, str) or not value.strip():
        return None, "email is required"
    # Lowercase after NFKC; compatibility forms can fold to capitals
    normalized = normalize_text(value.strip()).lower()
    if len(normalized) > EMAIL_MAX_LENGTH:
        return None, "email address too long"
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        return None, "invalid email address"
    if len(local) > 64 or not _EMAIL_LOCAL_PART.fullmatch(local):
        return None, "invalid email address format"
    labels = domain.split(".")
    if len(labels) < 2:
        return None, "invalid email address format"
    for label in labels:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.fullmatch(label):
            return None, "invalid email address format"
    return normalized, None


def _nickname_error(value: Any) -> tuple[Optional[str], Optional[str]]:
    if not isinstance(value, str) or not value.strip():
        return None, "nickname is required"
    normalized = normalize_text(value.strip())
    if not NICKNAME_MIN_LENGTH <= len(normalized) <= NICKNAME_MAX_LENGTH:
        return None, (
            f"nickname must be {NICKNAME_MIN_LENGTH}-{NICKNAME_MAX_LENGTH} characters"
        )
    if not _NICKNAME_PATTERN.fullmatch(normalized):
        return None, "nickname may contain only letters, digits, '_' and '-'"
    return normalized, None


def _password_error(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return "password is required"
    if len(value) < PASSWORD_MIN_LENGTH:
        return f"password must be at least {PASSWORD_MIN_LENGTH} characters"
    if len(value) > PASSWORD_MAX_LENGTH:
        return f"password must be at most {PASSWORD_MAX_LENGTH} characters"
    return None


def validate_email(value: Any) -> ValidationResult[str]:
    normalized, message = _email_error(value)
    if message:
        return ValidationResult(errors=[FieldError("email", message, _as_input(value))])
    return ValidationResult(value=normalized)


def validate_nickname(value: Any) -> ValidationResult[str]:
    normalized, message = _nickname_error(value)
    if message:
        return ValidationResult(
            errors=[FieldError("nickname", message, _as_input(value))]
        )
    return ValidationResult(value=normalized)


def validate_password(value: Any, *, field_name: str = "password") -> ValidationResult[str]:
    message = _password_error(value)
    if message:
        # Never echo a password back to the client
        return ValidationResult(errors=[FieldError(field_name, message)])
    return ValidationResult(value=value)


def validate_signup(data: SignupData) -> ValidationResult[SignupData]:
    """Check every signup field and return normalized data or all field errors."""
    email = validate_email(data.email)
    nickname = validate_nickname(data.nickname)
    password = validate_password(data.password)
    errors = [*email.errors, *nickname.errors, *password.errors]
    if errors:
        return ValidationResult(errors=errors)
    return ValidationResult(
        value=SignupData(
            email=email.value or "",
            nickname=nickname.value or "",
            password=data.password,
        )
    )


def _as_input(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if len(text) <= 256 else text[:253] + "..."
