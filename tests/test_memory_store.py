"""Tests for the in-memory store and its on-disk snapshot."""

import json

import pytest

from viureview.storage.errors import ConstraintViolation, MissingRecord
from viureview.storage.memory import MemoryStore

MFA_KEY = "memory-store-test-key-material-0123456789"


def test_duplicate_email_rejected(store):
    store.create_user("dup@example.com")

    with pytest.raises(ConstraintViolation):
        store.create_user("dup@example.com")


def test_session_requires_existing_user(store):
    with pytest.raises(ConstraintViolation):
        store.create_session("missing", "hash", 60)


def test_save_password_requires_user(store):
    with pytest.raises(MissingRecord):
        store.save_password("missing", "hash", "argon2id")


def test_state_survives_reload(tmp_path):
    first = MemoryStore(fs_root=str(tmp_path), mfa_encryption_key=MFA_KEY)
    user = first.create_user("persist@example.com", role="CLIENT")
    first.save_password(user.id, "digest", "argon2id")
    first.enable_two_factor(user.id, "JBSWY3DPEHPK3PXP", ["h1", "h2"])
    sess = first.create_session(user.id, "token-digest", 3600)

    second = MemoryStore(fs_root=str(tmp_path), mfa_encryption_key=MFA_KEY)

    reloaded = second.get_user_by_email("persist@example.com")
    assert reloaded.id == user.id
    assert reloaded.role == "CLIENT"
    assert reloaded.two_factor_enabled is True
    assert second.get_password_record(user.id) == ("digest", "argon2id")
    assert second.get_two_factor_config(user.id).secret == "JBSWY3DPEHPK3PXP"
    assert second.get_session(sess.id).expires_at == sess.expires_at


def test_totp_secret_encrypted_on_disk(tmp_path):
    store = MemoryStore(fs_root=str(tmp_path), mfa_encryption_key=MFA_KEY)
    user = store.create_user("cipher@example.com")
    store.enable_two_factor(user.id, "JBSWY3DPEHPK3PXP", [])

    raw = (tmp_path / "state" / "memory_store.json").read_text()

    assert "JBSWY3DPEHPK3PXP" not in raw
    assert json.loads(raw)


def test_consume_backup_code_once(store):
    user = store.create_user("codes@example.com")
    store.enable_two_factor(user.id, "JBSWY3DPEHPK3PXP", ["h1", "h2"])

    assert store.consume_backup_code(user.id, "h1") is True
    assert store.consume_backup_code(user.id, "h1") is False
    assert store.get_two_factor_config(user.id).backup_code_hashes == ["h2"]


def test_replace_backup_codes_requires_enrollment(store):
    user = store.create_user("none@example.com")

    with pytest.raises(MissingRecord):
        store.replace_backup_codes(user.id, ["h"])


def test_deactivate_user_sessions_keeps_current(store):
    user = store.create_user("many@example.com")
    keep = store.create_session(user.id, "a", 60)
    drop = store.create_session(user.id, "b", 60)

    assert store.deactivate_user_sessions(user.id, except_session_id=keep.id) == 1
    assert store.get_session(keep.id).is_active is True
    assert store.get_session(drop.id).is_active is False


def test_count_users_by_two_factor(store):
    a = store.create_user("a@example.com")
    store.create_user("b@example.com")
    store.enable_two_factor(a.id, "JBSWY3DPEHPK3PXP", [])

    assert store.count_users() == 2
    assert store.count_users(two_factor_enabled=True) == 1
    assert store.count_users(two_factor_enabled=False) == 1


def test_project_requires_designer(store):
    with pytest.raises(ConstraintViolation):
        store.create_project("Orphan", "missing-designer")
