import importlib.util
from pathlib import Path

import pytest

from viureview.config import Settings
from viureview.service.runtime import Runtime

ROOT = Path(__file__).resolve().parent.parent


def _load_script():
    spec = importlib.util.spec_from_file_location(
        "bootstrap_admin", ROOT / "scripts" / "bootstrap_admin.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def script(tmp_path, monkeypatch):
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path))
    monkeypatch.setenv("USE_MEMORY_STORE", "true")
    monkeypatch.setenv("TEST_MODE", "true")
    return _load_script()


@pytest.mark.parametrize(
    "candidate,ok",
    [
        ("Short-1", False),
        ("alllowercaseletters", False),
        ("lowercase-and-digits-42", True),
        ("Correct-Horse-Battery", True),
    ],
)
def test_validate_password(candidate, ok):
    assert _load_script().validate_password(candidate) is ok


async def test_create_then_already_admin(script):
    first = await script.bootstrap_admin("Root@Example.com", "Admin-Password-1")
    second = await script.bootstrap_admin("root@example.com", "Admin-Password-1")

    assert first["status"] == "created"
    assert first["email"] == "root@example.com"
    assert second == {"user_id": first["user_id"], "email": "root@example.com", "status": "already_admin"}


async def test_dry_run_creates_nothing(script):
    result = await script.bootstrap_admin("dry@example.com", "Admin-Password-1", dry_run=True)

    assert result["status"] == "dry_run"
    runtime = Runtime(Settings.from_env())
    try:
        assert runtime.store.get_user_by_email("dry@example.com") is None
    finally:
        await runtime.close()


async def test_promote_existing_user_sets_password(script):
    runtime = Runtime(Settings.from_env())
    try:
        user = runtime.store.create_user("lead@example.com", role="DESIGNER")
    finally:
        await runtime.close()

    result = await script.bootstrap_admin("lead@example.com", "Admin-Password-1")

    assert result["status"] == "promoted"
    runtime = Runtime(Settings.from_env())
    try:
        promoted = runtime.store.get_user(user.id)
        assert promoted.role == "ADMIN"
        digest, _ = runtime.store.get_password_record(user.id)
        assert runtime.verifier.verify("Admin-Password-1", digest)
    finally:
        await runtime.close()
