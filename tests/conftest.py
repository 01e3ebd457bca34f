import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Configure the environment before any import that might build the runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="blur_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
# Always run against the in-process cache so tests never share a Redis database
os.environ["REDIS_URL"] = ""
os.environ.pop("SMTP_HOST", None)

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from blur.config import Settings  # noqa: E402
from blur.service.auth import AuthService  # noqa: E402
from blur.service.runtime import reset_runtime_for_tests  # noqa: E402
from blur.storage.cache import MemoryCache  # noqa: E402
from blur.storage.memory import MemoryStore  # noqa: E402


class FakeClock:
    """Manually advanced clock shared by the cache, issuer and service."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailer:
    """Captures outgoing codes instead of talking to SMTP."""

    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    def _record(self, kind: str, to_email: str, code: str) -> bool:
        self.sent.append((kind, to_email, code))
        return not self.fail

    def send_email_auth_code(self, to_email: str, code: str, *, ttl_seconds: int = 300) -> bool:
        return self._record("email", to_email, code)

    def send_password_auth_code(
        self, to_email: str, code: str, *, ttl_seconds: int = 300
    ) -> bool:
        return self._record("password", to_email, code)

    def last_code(self, to_email: str) -> str:
        for _, recipient, code in reversed(self.sent):
            if recipient == to_email:
                return code
        raise AssertionError(f"no code sent to {to_email}")


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        jwt_secret="Test-Secret-Key_for-Automation-Only-987654321!",
        access_token_ttl_minutes=15,
        refresh_token_ttl_minutes=60 * 24,
        email_auth_code_ttl_seconds=300,
        password_auth_code_ttl_seconds=300,
        auth_code_retention_seconds=600,
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def auth_service(memory_store, cache, settings, mailer, clock):
    return AuthService(memory_store, cache, settings, mailer=mailer, clock=clock)


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
