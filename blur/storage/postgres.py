from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from blur.logging import get_logger
from blur.storage.errors import ConstraintViolation
from blur.storage.models import Account, AccountStatus, Role

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS member (
    id UUID PRIMARY KEY,
    email TEXT NOT NULL,
    nickname TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'basic',
    status TEXT NOT NULL DEFAULT 'active',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ,
    CONSTRAINT member_email_key UNIQUE (email),
    CONSTRAINT member_nickname_key UNIQUE (nickname)
)
"""

# Unique constraint name -> account field it protects
_CONSTRAINT_FIELDS = {
    "member_email_key": "email",
    "member_nickname_key": "nickname",
}
_CONSTRAINT_NAME = re.compile(r'unique constraint "([^"]+)"')


def _violated_field(exc: errors.UniqueViolation) -> Optional[str]:
    """Map a unique violation back to ``email``/``nickname``."""
    diag = getattr(exc, "diag", None)
    name = getattr(diag, "constraint_name", None) if diag is not None else None
    if not name:
        match = _CONSTRAINT_NAME.search(str(exc))
        name = match.group(1) if match else None
    return _CONSTRAINT_FIELDS.get(name or "")


class PostgresStore:
    """Postgres-backed account store.

    Uniqueness of email and nickname is enforced by the table constraints, so
    two concurrent signups for the same address cannot both commit; the loser
    surfaces as ``ConstraintViolation`` with the offending field.
    """

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``member`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(_SCHEMA_SQL)

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_account(row: dict[str, Any]) -> Account:
        return Account(
            id=str(row["id"]),
            email=row["email"],
            nickname=row["nickname"],
            password_hash=row["password_hash"],
            role=Role(row.get("role") or Role.BASIC.value),
            status=AccountStatus(row.get("status") or AccountStatus.ACTIVE.value),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
            updated_at=row.get("updated_at"),
        )

    def create_account(
        self,
        email: str,
        nickname: str,
        password_hash: str,
        *,
        role: Role = Role.BASIC,
    ) -> Account:
        account_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO member (id, email, nickname, password_hash, role, status)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        account_id,
                        email,
                        nickname,
                        password_hash,
                        role.value,
                        AccountStatus.ACTIVE.value,
                    ),
                ).fetchone()
        except errors.UniqueViolation as exc:
            field = _violated_field(exc)
            self.logger.info("member_unique_violation", field=field)
            raise ConstraintViolation(
                f"{field or 'value'} already exists", {"field": field}
            ) from exc
        return self._row_to_account(row)

    def get_account(self, account_id: str) -> Optional[Account]:
        try:
            uuid.UUID(account_id)
        except (TypeError, ValueError):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM member WHERE id = %s", (account_id,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM member WHERE email = %s", (email,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def get_account_by_nickname(self, nickname: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM member WHERE nickname = %s", (nickname,)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def list_accounts(self, limit: int = 100) -> List[Account]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM member ORDER BY created_at DESC LIMIT %s", (limit,)
            ).fetchall()
        return [self._row_to_account(row) for row in rows]

    def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE member SET password_hash = %s, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (password_hash, account_id),
            ).fetchone()
        return self._row_to_account(row) if row else None

    def update_role(self, account_id: str, role: Role) -> Optional[Account]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE member SET role = %s, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (role.value, account_id),
            ).fetchone()
        return self._row_to_account(row) if row else None
