import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

import pytest
from psycopg import errors

from blur.logging import get_logger
from blur.storage.errors import ConstraintViolation
from blur.storage.models import AccountStatus, Role
from blur.storage.postgres import PostgresStore, _violated_field


class DummyPool:
    def connection(self):
        raise AssertionError("database access should be stubbed in unit tests")


class FakeCursor:
    def __init__(self, rows):
        self._rows = rows

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.statements = []

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        if self.error is not None:
            raise self.error
        return FakeCursor(self.rows)


def _store_with(conn: FakeConnection) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = DummyPool()
    store.logger = get_logger("test")

    @contextmanager
    def _connect():
        yield conn

    store._connect = _connect
    return store


def _row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "email": "a@x.com",
        "nickname": "nickA",
        "password_hash": "hash",
        "role": "basic",
        "status": "active",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "updated_at": None,
    }
    row.update(overrides)
    return row


def test_create_account_returns_inserted_row():
    row = _row()
    conn = FakeConnection(rows=[row])
    store = _store_with(conn)

    account = store.create_account("a@x.com", "nickA", "hash", role=Role.BASIC)

    assert account.id == str(row["id"])
    assert account.role == Role.BASIC
    assert account.status == AccountStatus.ACTIVE
    sql, params = conn.statements[0]
    assert sql.startswith("INSERT INTO member")
    assert params[1:] == ("a@x.com", "nickA", "hash", "basic", "active")


@pytest.mark.parametrize(
    "constraint,field",
    [("member_email_key", "email"), ("member_nickname_key", "nickname")],
)
def test_unique_violation_is_translated(constraint, field):
    error = errors.UniqueViolation(
        f'duplicate key value violates unique constraint "{constraint}"'
    )
    store = _store_with(FakeConnection(error=error))

    with pytest.raises(ConstraintViolation) as exc_info:
        store.create_account("a@x.com", "nickA", "hash")

    assert exc_info.value.field == field


def test_violated_field_unknown_constraint():
    error = errors.UniqueViolation('violates unique constraint "something_else"')
    assert _violated_field(error) is None


def test_get_account_skips_query_for_non_uuid():
    conn = FakeConnection(rows=[_row()])
    store = _store_with(conn)
    assert store.get_account("not-a-uuid") is None
    assert conn.statements == []


def test_lookup_by_email_and_nickname():
    row = _row(role="admin")
    conn = FakeConnection(rows=[row])
    store = _store_with(conn)

    assert store.get_account_by_email("a@x.com").role == Role.ADMIN
    assert store.get_account_by_nickname("nickA").email == "a@x.com"
    assert conn.statements[0] == ("SELECT * FROM member WHERE email = %s", ("a@x.com",))
    assert conn.statements[1] == ("SELECT * FROM member WHERE nickname = %s", ("nickA",))


def test_update_role_returns_none_when_missing():
    store = _store_with(FakeConnection(rows=[]))
    assert store.update_role(str(uuid.uuid4()), Role.ADMIN) is None


def test_update_password_uses_returning_row():
    row = _row(password_hash="new-hash", updated_at=datetime.now(timezone.utc))
    conn = FakeConnection(rows=[row])
    store = _store_with(conn)

    account = store.update_password(str(row["id"]), "new-hash")

    assert account.password_hash == "new-hash"
    assert conn.statements[0][1] == ("new-hash", str(row["id"]))
