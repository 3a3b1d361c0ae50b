from __future__ import annotations

import hmac
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Protocol, Tuple

from viureview.config import Settings
from viureview.logging import get_logger
from viureview.service.audit import AuditSink
from viureview.service.credentials import CredentialVerifier
from viureview.service.errors import (
    AccountLocked,
    AuthenticationError,
    ConflictError,
    InvalidCode,
    MissingCredential,
    NotFoundError,
    Unauthorized,
)
from viureview.service.security import SecurityMonitor
from viureview.service.sessions import IssuedSession, SessionStoreAdapter
from viureview.service.two_factor import TwoFactorEngine
from viureview.storage.errors import ConstraintViolation
from viureview.storage.models import (
    Approval,
    Art,
    AuditAction,
    AuditLog,
    Feedback,
    Project,
    Role,
    SecurityEvent,
    Session,
    Task,
    TwoFactorConfig,
    User,
    utcnow,
)

BEARER_PREFIX = "Bearer "
PENDING_2FA_TTL = timedelta(minutes=5)

logger = get_logger(__name__)


class AuthStore(Protocol):
    def create_user(
        self,
        email: str,
        name: Optional[str] = None,
        *,
        role: str = "DESIGNER",
        is_active: bool = True,
        meta: Optional[dict] = None,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def count_users(self, *, two_factor_enabled: Optional[bool] = None) -> int: ...

    def update_user_role(self, user_id: str, role: str) -> Optional[User]: ...

    def deactivate_user(self, user_id: str) -> Optional[User]: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...

    def enable_two_factor(
        self, user_id: str, secret: str, backup_code_hashes: List[str]
    ) -> None: ...

    def get_two_factor_config(self, user_id: str) -> Optional[TwoFactorConfig]: ...

    def replace_backup_codes(self, user_id: str, backup_code_hashes: List[str]) -> None: ...

    def consume_backup_code(self, user_id: str, code_hash: str) -> bool: ...

    def disable_two_factor(self, user_id: str) -> None: ...

    def create_session(
        self,
        user_id: str,
        token_hash: str,
        ttl_seconds: int,
        *,
        user_agent: str | None = None,
        ip_addr: str | None = None,
    ) -> Session: ...

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def list_sessions(self, user_id: str, *, active: Optional[bool] = None) -> List[Session]: ...

    def deactivate_session(self, session_id: str) -> bool: ...

    def deactivate_user_sessions(
        self, user_id: str, *, except_session_id: Optional[str] = None
    ) -> int: ...

    def create_security_event(
        self,
        event_type: str,
        severity: str,
        description: str,
        *,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> SecurityEvent: ...

    def count_security_events(
        self, user_id: str, event_type: str, since: datetime
    ) -> int: ...

    def list_security_events(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        severity: Optional[str] = None,
        resolved: Optional[bool] = None,
        user_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SecurityEvent]: ...

    def get_security_event(self, event_id: str) -> Optional[SecurityEvent]: ...

    def resolve_security_event(
        self, event_id: str, resolved_by: str
    ) -> Optional[SecurityEvent]: ...

    def delete_resolved_security_events(self, before: datetime) -> int: ...

    def create_audit_log(
        self,
        action: str,
        status: str,
        *,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditLog: ...

    def list_audit_logs(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[AuditLog], int]: ...

    def delete_audit_logs_before(self, before: datetime) -> int: ...

    def get_project(self, project_id: str) -> Optional[Project]: ...

    def list_arts(self, project_id: str) -> List[Art]: ...

    def get_art(self, art_id: str) -> Optional[Art]: ...

    def get_task(self, task_id: str) -> Optional[Task]: ...

    def get_feedback(self, feedback_id: str) -> Optional[Feedback]: ...

    def get_approval(self, approval_id: str) -> Optional[Approval]: ...

    def close(self) -> None: ...


@dataclass
class AuthContext:
    user_id: str
    role: str
    session_id: str
    user: User


@dataclass
class LoginResult:
    user: User
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    requires_2fa: bool = False
    challenge: Optional[str] = None
    used_backup_code: bool = False


class AuthService:
    """Bearer authentication, password login and the second-factor login step."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        verifier: CredentialVerifier,
        sessions: SessionStoreAdapter,
        security: SecurityMonitor,
        two_factor: TwoFactorEngine,
        audit: AuditSink,
    ) -> None:
        self.store = store
        self.settings = settings
        self.verifier = verifier
        self.sessions = sessions
        self.security = security
        self.two_factor = two_factor
        self.audit = audit
        self.logger = logger
        self._state_lock = threading.Lock()
        # user_id -> (challenge, expires_at) for logins waiting on a second factor
        self._pending_2fa: dict[str, tuple[str, datetime]] = {}
        self._dummy_digest: Optional[str] = None

    async def _dummy_hash(self) -> str:
        if self._dummy_digest is None:
            self._dummy_digest = await self.verifier.hash_async(secrets.token_urlsafe(16))
        return self._dummy_digest

    @staticmethod
    def _extract_bearer(header: Optional[str]) -> Optional[str]:
        if not header or not header.startswith(BEARER_PREFIX):
            return None
        return header[len(BEARER_PREFIX):].strip() or None

    async def authenticate(self, authorization: Optional[str]) -> AuthContext:
        """Resolve an ``Authorization`` header to the calling principal.

        Raises:
            MissingCredential: No header or not the ``Bearer`` scheme
            Unauthorized: Any other failure; the reason is only logged
        """
        token = self._extract_bearer(authorization)
        if not token:
            raise MissingCredential("authentication required")
        try:
            user, sess = await self.sessions.resolve_session(token)
        except AuthenticationError as exc:
            self.logger.info(
                "session_resolve_failed",
                reason=type(exc).__name__,
                detail=exc.message,
            )
            raise Unauthorized() from None
        if not user.is_active:
            self.logger.info(
                "session_resolve_failed", reason="PrincipalInactive", user_id=user.id
            )
            raise Unauthorized()
        return AuthContext(user_id=user.id, role=user.role, session_id=sess.id, user=user)

    async def _issue(
        self, user: User, *, ip_addr: Optional[str], user_agent: Optional[str]
    ) -> IssuedSession:
        return await self.sessions.issue(
            user.id,
            self.settings.session_ttl_minutes * 60,
            user_agent=user_agent,
            ip_addr=ip_addr,
        )

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip_addr: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        user = self.store.get_user_by_email(email)
        if not user or not user.is_active:
            if user:
                self.logger.info("login_inactive_user", user_id=user.id)
            else:
                self.logger.info("login_unknown_email")
            # spend one hash verification like the known-user path does
            await self.verifier.verify_async(password, await self._dummy_hash())
            raise Unauthorized("invalid credentials")
        if self.security.is_account_locked(user.id):
            self.logger.warning("login_rejected_locked", user_id=user.id)
            raise AccountLocked()

        record = self.store.get_password_record(user.id)
        stored_hash = record[0] if record else await self._dummy_hash()
        password_ok = await self.verifier.verify_async(password, stored_hash) and bool(record)
        if not password_ok:
            outcome = self.security.track_failed_login(user.id, ip_addr, user_agent)
            self.audit.failure(
                AuditAction.LOGIN,
                "auth",
                "invalid credentials",
                user_id=user.id,
                ip_address=ip_addr,
                user_agent=user_agent,
            )
            if outcome.locked:
                raise AccountLocked()
            # the count stays server-side; clients see the unknown-email response
            self.logger.info(
                "login_failed",
                user_id=user.id,
                remaining_attempts=outcome.remaining_attempts,
            )
            raise Unauthorized("invalid credentials")

        if user.two_factor_enabled:
            self.cleanup_pending()
            challenge = secrets.token_urlsafe(32)
            with self._state_lock:
                self._pending_2fa[user.id] = (challenge, utcnow() + PENDING_2FA_TTL)
            self.logger.info("login_second_factor_required", user_id=user.id)
            return LoginResult(user=user, requires_2fa=True, challenge=challenge)

        issued = await self._issue(user, ip_addr=ip_addr, user_agent=user_agent)
        self.audit.success(
            AuditAction.LOGIN,
            "auth",
            user_id=user.id,
            resource_id=issued.session_id,
            ip_address=ip_addr,
            user_agent=user_agent,
        )
        return LoginResult(user=user, token=issued.token, expires_at=issued.expires_at)

    def _pending_challenge_matches(self, user_id: str, challenge: str) -> bool:
        with self._state_lock:
            pending = self._pending_2fa.get(user_id)
            if not pending:
                return False
            expected, expires_at = pending
            if expires_at <= utcnow():
                self._pending_2fa.pop(user_id, None)
                return False
            return hmac.compare_digest(expected, challenge or "")

    async def complete_two_factor_login(
        self,
        user_id: str,
        code: str,
        challenge: str,
        *,
        ip_addr: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        """Finish a login that stopped at ``requires_2fa``."""
        user = self.store.get_user(user_id)
        if not user or not user.is_active or not user.two_factor_enabled:
            raise Unauthorized("invalid credentials")
        if not self._pending_challenge_matches(user_id, challenge):
            self.logger.info("two_factor_challenge_invalid", user_id=user_id)
            raise Unauthorized("login challenge expired or invalid")
        if self.security.is_account_locked(user_id):
            raise AccountLocked()

        result = await self.two_factor.verify_at_login(user_id, code)
        if not result.valid:
            self.security.track_failed_2fa(user_id, ip_addr)
            self.audit.failure(
                AuditAction.LOGIN,
                "auth",
                "invalid two-factor code",
                user_id=user_id,
                ip_address=ip_addr,
                user_agent=user_agent,
            )
            raise InvalidCode()

        with self._state_lock:
            self._pending_2fa.pop(user_id, None)
        issued = await self._issue(user, ip_addr=ip_addr, user_agent=user_agent)
        self.audit.success(
            AuditAction.LOGIN,
            "auth",
            user_id=user_id,
            resource_id=issued.session_id,
            ip_address=ip_addr,
            user_agent=user_agent,
            details={"two_factor": True, "used_backup_code": result.used_backup_code},
        )
        return LoginResult(
            user=user,
            token=issued.token,
            expires_at=issued.expires_at,
            used_backup_code=result.used_backup_code,
        )

    def logout(self, ctx: AuthContext, *, ip_addr: Optional[str] = None) -> None:
        self.sessions.revoke(ctx.session_id)
        self.audit.success(
            AuditAction.LOGOUT,
            "session",
            user_id=ctx.user_id,
            resource_id=ctx.session_id,
            ip_address=ip_addr,
        )

    def revoke_session(
        self, ctx: AuthContext, session_id: str, *, ip_addr: Optional[str] = None
    ) -> Session:
        sess = self.sessions.revoke_owned(ctx.user_id, session_id)
        self.audit.success(
            AuditAction.REVOKE_SESSION,
            "session",
            user_id=ctx.user_id,
            resource_id=session_id,
            ip_address=ip_addr,
        )
        return sess

    async def register(
        self,
        email: str,
        password: str,
        *,
        name: Optional[str] = None,
        role: str = Role.DESIGNER.value,
        ip_addr: Optional[str] = None,
    ) -> User:
        """Create a principal with an argon2 password hash.

        Raises:
            ConflictError: If the email is already registered
        """
        digest = await self.verifier.hash_async(password)
        try:
            user = self.store.create_user(email, name, role=role)
        except ConstraintViolation as exc:
            self.logger.info("register_conflict", reason=exc.message)
            raise ConflictError("email already registered", detail={"field": "email"}) from None
        self.store.save_password(user.id, digest, self.verifier.algo)
        self.logger.info("user_registered", user_id=user.id, role=user.role)
        self.audit.success(
            AuditAction.REGISTER,
            "user",
            user_id=user.id,
            resource_id=user.id,
            ip_address=ip_addr,
        )
        return user

    def deactivate(
        self, ctx: AuthContext, user_id: str, *, ip_addr: Optional[str] = None
    ) -> User:
        """Soft-delete a principal and sign out every session it holds."""
        user = self.store.deactivate_user(user_id)
        if not user:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        revoked = self.store.deactivate_user_sessions(user_id)
        self.logger.info(
            "user_deactivated", user_id=user_id, by=ctx.user_id, sessions_revoked=revoked
        )
        self.audit.success(
            AuditAction.DEACTIVATE_USER,
            "user",
            user_id=ctx.user_id,
            resource_id=user_id,
            ip_address=ip_addr,
            details={"sessions_revoked": revoked},
        )
        return user

    def cleanup_pending(self) -> int:
        """Drop expired second-factor challenges."""
        now = utcnow()
        with self._state_lock:
            expired = [uid for uid, (_, exp) in self._pending_2fa.items() if exp <= now]
            for uid in expired:
                self._pending_2fa.pop(uid, None)
        return len(expired)

    async def set_password(self, user_id: str, password: str) -> None:
        digest = await self.verifier.hash_async(password)
        self.store.save_password(user_id, digest, self.verifier.algo)
