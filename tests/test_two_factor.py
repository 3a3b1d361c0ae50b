"""Tests for TOTP enrollment, login-time verification and backup codes."""

import pyotp
import pytest

from viureview.service.errors import (
    AlreadyEnabled,
    BadRequestError,
    InvalidCode,
    NoPasswordConfigured,
    NotEnabled,
    NotFoundError,
    WrongPassword,
)
from viureview.service.two_factor import BACKUP_CODE_PATTERN, generate_backup_code
from viureview.storage.models import AuditAction


@pytest.fixture
def engine(runtime):
    return runtime.two_factor


@pytest.fixture
def user(make_user):
    return make_user("totp@example.com")


async def _enroll(engine, user_id):
    material = engine.begin_enrollment(user_id)
    code = pyotp.TOTP(material.secret).now()
    await engine.complete_enrollment(user_id, material.secret, code, material.backup_codes)
    return material


def test_backup_code_format():
    for _ in range(20):
        assert BACKUP_CODE_PATTERN.match(generate_backup_code())


class TestEnrollment:
    def test_begin_returns_material_without_persisting(self, engine, user, store):
        material = engine.begin_enrollment(user.id)

        assert len(material.secret) >= 16
        assert material.manual_entry_key == material.secret
        assert material.provisioning_uri.startswith("otpauth://totp/")
        assert "issuer=VIU%20Platform" in material.provisioning_uri
        assert len(material.backup_codes) == 10
        assert all(BACKUP_CODE_PATTERN.match(c) for c in material.backup_codes)
        assert store.get_two_factor_config(user.id) is None
        assert store.get_user(user.id).two_factor_enabled is False

    async def test_begin_twice_is_independent(self, engine, user, store):
        first = engine.begin_enrollment(user.id)
        second = engine.begin_enrollment(user.id)

        assert first.secret != second.secret
        assert not set(first.backup_codes) & set(second.backup_codes)
        assert store.get_two_factor_config(user.id) is None

        code = pyotp.TOTP(first.secret).now()
        await engine.complete_enrollment(user.id, first.secret, code, first.backup_codes)

        assert store.get_two_factor_config(user.id).secret == first.secret
        assert (await engine.verify_at_login(user.id, second.backup_codes[0])).valid is False
        assert (await engine.verify_at_login(user.id, first.backup_codes[0])).valid is True

    def test_begin_unknown_user(self, engine):
        with pytest.raises(NotFoundError):
            engine.begin_enrollment("missing-user")

    async def test_complete_enables_and_hashes_backup_codes(self, engine, user, store):
        material = await _enroll(engine, user.id)

        config = store.get_two_factor_config(user.id)
        assert store.get_user(user.id).two_factor_enabled is True
        assert config.secret == material.secret
        assert len(config.backup_code_hashes) == len(material.backup_codes)
        assert not set(config.backup_code_hashes) & set(material.backup_codes)

    async def test_complete_is_audited(self, engine, user, store):
        await _enroll(engine, user.id)

        logs, _ = store.list_audit_logs(user_id=user.id)
        assert [log.action for log in logs] == [AuditAction.ENABLE_2FA.value]

    async def test_wrong_code_leaves_account_unchanged(self, engine, user, store, bad_code):
        material = engine.begin_enrollment(user.id)

        with pytest.raises(InvalidCode):
            await engine.complete_enrollment(
                user.id, material.secret, bad_code(material.secret), material.backup_codes
            )
        assert store.get_user(user.id).two_factor_enabled is False
        assert store.get_two_factor_config(user.id) is None

    async def test_malformed_backup_codes_rejected(self, engine, user):
        material = engine.begin_enrollment(user.id)
        code = pyotp.TOTP(material.secret).now()

        with pytest.raises(BadRequestError):
            await engine.complete_enrollment(user.id, material.secret, code, ["not-a-code"])

    async def test_second_enrollment_rejected(self, engine, user):
        await _enroll(engine, user.id)

        with pytest.raises(AlreadyEnabled):
            engine.begin_enrollment(user.id)


class TestVerifyAtLogin:
    async def test_current_totp_accepted(self, engine, user):
        material = await _enroll(engine, user.id)

        result = await engine.verify_at_login(user.id, pyotp.TOTP(material.secret).now())

        assert result.valid is True
        assert result.used_backup_code is False

    async def test_wrong_totp_rejected(self, engine, user, bad_code):
        material = await _enroll(engine, user.id)

        result = await engine.verify_at_login(user.id, bad_code(material.secret))

        assert result.valid is False

    async def test_backup_code_is_single_use(self, engine, user, store):
        material = await _enroll(engine, user.id)
        code = material.backup_codes[0]

        first = await engine.verify_at_login(user.id, code)
        second = await engine.verify_at_login(user.id, code)

        assert first.valid and first.used_backup_code
        assert second.valid is False
        assert len(store.get_two_factor_config(user.id).backup_code_hashes) == 9

    async def test_backup_code_case_insensitive(self, engine, user):
        material = await _enroll(engine, user.id)

        result = await engine.verify_at_login(user.id, f"  {material.backup_codes[1].lower()} ")

        assert result.valid and result.used_backup_code

    async def test_not_enabled(self, engine, user):
        with pytest.raises(NotEnabled):
            await engine.verify_at_login(user.id, "123456")


class TestDisableAndRegenerate:
    async def test_disable_requires_password(self, engine, user, store):
        await _enroll(engine, user.id)

        with pytest.raises(WrongPassword):
            await engine.disable(user.id, "wrong-password")
        assert store.get_user(user.id).two_factor_enabled is True

    async def test_disable_clears_configuration(self, engine, user, store, password):
        await _enroll(engine, user.id)

        await engine.disable(user.id, password)

        assert store.get_user(user.id).two_factor_enabled is False
        assert store.get_two_factor_config(user.id) is None
        assert engine.is_enabled(user.id) is False

    async def test_disable_when_not_enabled(self, engine, user, password):
        with pytest.raises(NotEnabled):
            await engine.disable(user.id, password)

    async def test_disable_without_password_record(self, engine, make_user):
        passwordless = make_user("sso@example.com", password=None)
        await _enroll(engine, passwordless.id)

        with pytest.raises(NoPasswordConfigured):
            await engine.disable(passwordless.id, "anything")

    async def test_regenerate_replaces_old_codes(self, engine, user, password):
        material = await _enroll(engine, user.id)

        fresh = await engine.regenerate_backup_codes(user.id, password)

        assert len(fresh) == 10
        assert not set(fresh) & set(material.backup_codes)
        assert (await engine.verify_at_login(user.id, material.backup_codes[0])).valid is False
        assert (await engine.verify_at_login(user.id, fresh[0])).used_backup_code is True

    async def test_regenerate_wrong_password(self, engine, user, store):
        material = await _enroll(engine, user.id)
        before = list(store.get_two_factor_config(user.id).backup_code_hashes)

        with pytest.raises(WrongPassword):
            await engine.regenerate_backup_codes(user.id, "nope")

        assert store.get_two_factor_config(user.id).backup_code_hashes == before
        assert (await engine.verify_at_login(user.id, material.backup_codes[0])).valid is True


class TestStats:
    def test_no_principals(self, engine):
        assert engine.stats() == {
            "total": 0,
            "enabled": 0,
            "disabled": 0,
            "enabled_percentage": "0",
        }

    async def test_percentage_has_two_decimals(self, engine, make_user):
        users = [make_user(f"user{i}@example.com") for i in range(3)]
        await _enroll(engine, users[0].id)

        stats = engine.stats()

        assert stats["total"] == 3
        assert stats["enabled"] == 1
        assert stats["disabled"] == 2
        assert stats["enabled_percentage"] == "33.33"
