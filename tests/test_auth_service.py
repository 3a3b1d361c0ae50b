"""Unit tests for bearer authentication and the login flow."""

import pyotp
import pytest

from viureview.service.errors import (
    AccountLocked,
    ConflictError,
    InvalidCode,
    MissingCredential,
    NotFoundError,
    Unauthorized,
)
from viureview.storage.models import AuditAction, AuditStatus, SecurityEventType


@pytest.fixture
def auth(runtime):
    return runtime.auth


@pytest.fixture
def user(make_user):
    return make_user("login@example.com")


async def _enable_2fa(runtime, user_id):
    material = runtime.two_factor.begin_enrollment(user_id)
    await runtime.two_factor.complete_enrollment(
        user_id, material.secret, pyotp.TOTP(material.secret).now(), material.backup_codes
    )
    return material


class TestAuthenticate:
    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "bearer x:y"])
    async def test_missing_credential(self, auth, header):
        with pytest.raises(MissingCredential):
            await auth.authenticate(header)

    @pytest.mark.parametrize("token", ["garbage", "a:b:c", "00000000-0000-0000-0000-000000000000:x"])
    async def test_bad_tokens_collapse_to_unauthorized(self, auth, token):
        with pytest.raises(Unauthorized) as excinfo:
            await auth.authenticate(f"Bearer {token}")
        assert excinfo.value.message == "authentication required"

    async def test_valid_session(self, auth, user, password):
        result = await auth.login(user.email, password)

        ctx = await auth.authenticate(f"Bearer {result.token}")

        assert ctx.user_id == user.id
        assert ctx.role == user.role
        assert ctx.session_id == result.token.split(":")[0]

    async def test_revoked_session_is_opaque(self, auth, user, password):
        result = await auth.login(user.email, password)
        ctx = await auth.authenticate(f"Bearer {result.token}")
        auth.logout(ctx)

        with pytest.raises(Unauthorized) as excinfo:
            await auth.authenticate(f"Bearer {result.token}")
        assert excinfo.value.message == "authentication required"

    async def test_deactivated_principal_rejected(self, auth, user, password, store):
        result = await auth.login(user.email, password)
        store.deactivate_user(user.id)

        with pytest.raises(Unauthorized):
            await auth.authenticate(f"Bearer {result.token}")


class TestLogin:
    async def test_success_issues_session_and_audits(self, auth, user, password, store):
        result = await auth.login(user.email, password, ip_addr="10.0.0.9", user_agent="pytest")

        assert result.requires_2fa is False
        assert result.token and ":" in result.token
        sess = store.get_session(result.token.split(":")[0])
        assert sess.ip_addr == "10.0.0.9"
        assert sess.user_agent == "pytest"
        logs, _ = store.list_audit_logs(user_id=user.id, action=AuditAction.LOGIN.value)
        assert logs[0].status == AuditStatus.SUCCESS.value

    async def test_unknown_email_is_opaque(self, auth, store):
        with pytest.raises(Unauthorized) as excinfo:
            await auth.login("nobody@example.com", "whatever")

        assert excinfo.value.message == "invalid credentials"
        assert store.list_security_events() == []

    async def test_wrong_password_matches_unknown_email(self, auth, user, store):
        with pytest.raises(Unauthorized) as wrong:
            await auth.login(user.email, "wrong")
        with pytest.raises(Unauthorized) as unknown:
            await auth.login("nobody@example.com", "wrong")

        assert (wrong.value.message, wrong.value.detail) == (
            unknown.value.message,
            unknown.value.detail,
        )
        logs, _ = store.list_audit_logs(user_id=user.id)
        assert logs[0].status == AuditStatus.FAILURE.value
        assert logs[0].details == {"error": "invalid credentials"}

    @pytest.mark.parametrize("kind", ["unknown", "inactive", "passwordless", "wrong"])
    async def test_every_rejection_runs_one_verification(
        self, auth, make_user, password, monkeypatch, kind
    ):
        if kind == "inactive":
            make_user("subject@example.com", is_active=False)
        elif kind == "passwordless":
            make_user("subject@example.com", password=None)
        elif kind == "wrong":
            make_user("subject@example.com")
        await auth._dummy_hash()
        calls = []
        original = auth.verifier.verify_async

        async def counting_verify(secret, hashed):
            calls.append(hashed)
            return await original(secret, hashed)

        monkeypatch.setattr(auth.verifier, "verify_async", counting_verify)

        with pytest.raises(Unauthorized):
            await auth.login("subject@example.com", "not-" + password)

        assert len(calls) == 1

    async def test_inactive_principal(self, auth, make_user, password):
        inactive = make_user("gone@example.com", is_active=False)

        with pytest.raises(Unauthorized):
            await auth.login(inactive.email, password)

    async def test_missing_password_counts_as_failure(self, auth, make_user, store):
        passwordless = make_user("nopass@example.com", password=None)

        with pytest.raises(Unauthorized):
            await auth.login(passwordless.email, "anything")

        assert store.count_security_events(
            passwordless.id, SecurityEventType.FAILED_LOGIN.value, passwordless.created_at
        ) == 1

    async def test_lockout_blocks_correct_password(self, auth, user, password):
        for _ in range(4):
            with pytest.raises(Unauthorized):
                await auth.login(user.email, "wrong")
        with pytest.raises(AccountLocked):
            await auth.login(user.email, "wrong")

        with pytest.raises(AccountLocked):
            await auth.login(user.email, password)


class TestTwoFactorLogin:
    async def test_password_step_returns_challenge_only(self, runtime, auth, user, password, store):
        await _enable_2fa(runtime, user.id)

        result = await auth.login(user.email, password)

        assert result.requires_2fa is True
        assert result.token is None
        assert result.challenge
        assert store.list_sessions(user.id) == []

    async def test_totp_completes_login(self, runtime, auth, user, password):
        material = await _enable_2fa(runtime, user.id)
        first = await auth.login(user.email, password)

        result = await auth.complete_two_factor_login(
            user.id, pyotp.TOTP(material.secret).now(), first.challenge
        )

        assert result.token
        assert result.used_backup_code is False
        ctx = await auth.authenticate(f"Bearer {result.token}")
        assert ctx.user_id == user.id

    async def test_backup_code_completes_login(self, runtime, auth, user, password):
        material = await _enable_2fa(runtime, user.id)
        first = await auth.login(user.email, password)

        result = await auth.complete_two_factor_login(
            user.id, material.backup_codes[0], first.challenge
        )

        assert result.used_backup_code is True

    async def test_challenge_is_required(self, runtime, auth, user):
        material = await _enable_2fa(runtime, user.id)

        with pytest.raises(Unauthorized):
            await auth.complete_two_factor_login(
                user.id, pyotp.TOTP(material.secret).now(), "forged-challenge"
            )

    async def test_challenge_is_single_use(self, runtime, auth, user, password):
        material = await _enable_2fa(runtime, user.id)
        first = await auth.login(user.email, password)
        code = pyotp.TOTP(material.secret).now()
        await auth.complete_two_factor_login(user.id, code, first.challenge)

        with pytest.raises(Unauthorized):
            await auth.complete_two_factor_login(user.id, code, first.challenge)

    async def test_wrong_code_tracks_failure(self, runtime, auth, user, password, store, bad_code):
        material = await _enable_2fa(runtime, user.id)
        first = await auth.login(user.email, password)

        with pytest.raises(InvalidCode):
            await auth.complete_two_factor_login(user.id, bad_code(material.secret), first.challenge)

        assert store.list_security_events(
            user_id=user.id, event_type=SecurityEventType.MULTIPLE_FAILED_2FA.value
        )

    async def test_expired_challenge_rejected(self, runtime, auth, user, password):
        material = await _enable_2fa(runtime, user.id)
        first = await auth.login(user.email, password)
        challenge, _ = auth._pending_2fa[user.id]
        auth._pending_2fa[user.id] = (challenge, user.created_at)

        with pytest.raises(Unauthorized):
            await auth.complete_two_factor_login(
                user.id, pyotp.TOTP(material.secret).now(), first.challenge
            )
        assert auth.cleanup_pending() == 0


class TestUserLifecycle:
    async def test_register_hashes_password_and_audits(self, auth, store, password):
        user = await auth.register("new@example.com", password, role="CLIENT", ip_addr="10.0.0.1")

        digest, algo = store.get_password_record(user.id)
        assert digest != password
        assert algo == auth.verifier.algo
        assert user.role == "CLIENT"
        result = await auth.login("new@example.com", password)
        assert result.user.id == user.id
        logs, _ = store.list_audit_logs(action=AuditAction.REGISTER.value)
        assert logs[0].resource_id == user.id

    async def test_register_duplicate_email_conflicts(self, auth, user, password):
        with pytest.raises(ConflictError):
            await auth.register(user.email, password)

    async def test_deactivate_revokes_sessions(self, auth, user, password, store):
        result = await auth.login(user.email, password)
        ctx = await auth.authenticate(f"Bearer {result.token}")

        deactivated = auth.deactivate(ctx, user.id)

        assert deactivated.is_active is False
        assert store.list_sessions(user.id, active=True) == []
        with pytest.raises(Unauthorized):
            await auth.authenticate(f"Bearer {result.token}")
        with pytest.raises(Unauthorized):
            await auth.login(user.email, password)

    async def test_deactivate_missing_user(self, auth, user, password):
        result = await auth.login(user.email, password)
        ctx = await auth.authenticate(f"Bearer {result.token}")

        with pytest.raises(NotFoundError):
            auth.deactivate(ctx, "missing-user")
