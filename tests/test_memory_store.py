import threading

import pytest

from blur.storage.errors import ConstraintViolation
from blur.storage.memory import MemoryStore
from blur.storage.models import Role


def test_create_and_lookup(memory_store):
    account = memory_store.create_account("a@x.com", "nickA", "hash")

    assert memory_store.get_account(account.id) is account
    assert memory_store.get_account_by_email("a@x.com") is account
    assert memory_store.get_account_by_nickname("nickA") is account
    assert memory_store.get_account_by_email("b@x.com") is None
    assert account.role == Role.BASIC


@pytest.mark.parametrize(
    "email,nickname,field",
    [("a@x.com", "other", "email"), ("b@x.com", "nickA", "nickname")],
)
def test_uniqueness_enforced(memory_store, email, nickname, field):
    memory_store.create_account("a@x.com", "nickA", "hash")
    with pytest.raises(ConstraintViolation) as exc_info:
        memory_store.create_account(email, nickname, "hash")
    assert exc_info.value.field == field


def test_updates_touch_updated_at(memory_store):
    account = memory_store.create_account("a@x.com", "nickA", "hash")
    assert account.updated_at is None

    memory_store.update_password(account.id, "new-hash")
    assert memory_store.get_account(account.id).password_hash == "new-hash"
    assert account.updated_at is not None

    memory_store.update_role(account.id, Role.ADMIN)
    assert memory_store.get_account(account.id).role == Role.ADMIN


def test_updates_on_missing_account(memory_store):
    assert memory_store.update_password("missing", "h") is None
    assert memory_store.update_role("missing", Role.ADMIN) is None


def test_concurrent_signups_for_same_email_yield_one_account():
    store = MemoryStore()
    outcomes: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(10)

    def _signup(idx: int) -> None:
        barrier.wait()
        try:
            store.create_account("race@x.com", f"nick{idx}", "hash")
            result = "ok"
        except ConstraintViolation as exc:
            result = exc.field or "unknown"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_signup, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("email") == 9
    assert len(store.list_accounts()) == 1
