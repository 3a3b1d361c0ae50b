import asyncio
import inspect
import os
import sys
import tempfile
import time
from pathlib import Path

# Environment must be in place before anything imports the app module
_test_tmp_dir = tempfile.mkdtemp(prefix="viureview_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("LOG_JSON", "false")

import pyotp  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from viureview.app import create_app  # noqa: E402
from viureview.config import Settings  # noqa: E402
from viureview.service.runtime import Runtime  # noqa: E402
from viureview.storage.memory import MemoryStore  # noqa: E402
from viureview.storage.models import Role  # noqa: E402

PASSWORD = "Correct-Horse-42"
MFA_KEY = "test-mfa-key-material-not-for-production-use"


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


def wrong_totp(secret: str) -> str:
    """A six-digit code outside the accepted window for ``secret``."""
    totp = pyotp.TOTP(secret)
    now = time.time()
    accepted = {totp.at(now + offset) for offset in (-60, -30, 0, 30, 60)}
    return next(c for c in ("000000", "111111", "222222", "333333", "444444", "555555") if c not in accepted)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        shared_fs_root=str(tmp_path),
        use_memory_store=True,
        test_mode=True,
        allow_redis_fallback_dev=True,
        redis_url=None,
        mfa_secret_key=MFA_KEY,
    )


@pytest.fixture
def store(settings):
    return MemoryStore(fs_root=settings.shared_fs_root, mfa_encryption_key=MFA_KEY)


@pytest.fixture
def runtime(settings, store):
    rt = Runtime(settings, store=store)
    yield rt
    asyncio.run(rt.close())


@pytest.fixture
def make_user(runtime):
    """Create a principal with a stored password hash."""

    def _make(
        email: str = "designer@example.com",
        *,
        password: str | None = PASSWORD,
        role: str = Role.DESIGNER.value,
        is_active: bool = True,
    ):
        user = runtime.store.create_user(email, role=role, is_active=is_active)
        if password is not None:
            runtime.store.save_password(
                user.id, runtime.verifier.hash(password), runtime.verifier.algo
            )
        return user

    return _make


@pytest.fixture
def client(settings, runtime):
    with TestClient(create_app(settings, runtime)) as test_client:
        yield test_client


@pytest.fixture
def login(client):
    """Log in over HTTP and return the Authorization header."""

    def _login(email: str, password: str = PASSWORD) -> dict:
        resp = client.post("/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return {"Authorization": f"Bearer {resp.json()['data']['token']}"}

    return _login


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def bad_code():
    return wrong_totp
