from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Member roles, ordered from least to most privileged."""

    BASIC = "basic"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def allows(self, required: "Role") -> bool:
        return self.rank >= required.rank


_ROLE_RANK = {Role.BASIC: 0, Role.AUTHENTICATED: 1, Role.ADMIN: 2}


class AccountStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


@dataclass
class Account:
    id: str
    email: str
    nickname: str
    password_hash: str
    role: Role = Role.BASIC
    status: AccountStatus = AccountStatus.ACTIVE
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    @classmethod
    def new(
        cls,
        email: str,
        nickname: str,
        password_hash: str,
        *,
        role: Role = Role.BASIC,
    ) -> "Account":
        return cls(
            id=str(uuid.uuid4()),
            email=email,
            nickname=nickname,
            password_hash=password_hash,
            role=role,
        )

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE
