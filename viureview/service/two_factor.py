from __future__ import annotations

import re
import secrets
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import pyotp

from viureview.logging import get_logger
from viureview.service.credentials import CredentialVerifier
from viureview.service.errors import (
    AlreadyEnabled,
    BadRequestError,
    InvalidCode,
    NoPasswordConfigured,
    NotEnabled,
    NotFoundError,
    WrongPassword,
)
from viureview.storage.models import AuditAction, User

if TYPE_CHECKING:
    from viureview.service.audit import AuditSink
    from viureview.service.auth import AuthStore

DEFAULT_ISSUER = "VIU Platform"
BACKUP_CODE_PATTERN = re.compile(r"^[0-9A-F]{4}-[0-9A-F]{4}$")
TOTP_PATTERN = re.compile(r"^\d{6}$")

logger = get_logger(__name__)


@dataclass
class EnrollmentMaterial:
    """Shown to the principal once; nothing here is persisted until enrollment completes."""

    secret: str
    provisioning_uri: str
    backup_codes: List[str] = field(default_factory=list)

    @property
    def manual_entry_key(self) -> str:
        return self.secret


@dataclass
class VerificationResult:
    valid: bool
    used_backup_code: bool = False


def generate_backup_code() -> str:
    raw = secrets.token_hex(4).upper()
    return f"{raw[:4]}-{raw[4:]}"


def normalize_code(code: str) -> str:
    return (code or "").strip().replace(" ", "").upper()


class TwoFactorEngine:
    """TOTP enrollment, login verification and backup-code lifecycle.

    TOTP secrets are stored Fernet-encrypted by the store so codes can be
    re-derived at login. Backup codes are argon2-hashed and single use.
    """

    def __init__(
        self,
        store: "AuthStore",
        verifier: CredentialVerifier,
        *,
        issuer: str = DEFAULT_ISSUER,
        backup_code_count: int = 10,
        audit: Optional["AuditSink"] = None,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.issuer = issuer
        self.backup_code_count = backup_code_count
        self.audit = audit

    def _require_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("user not found", detail={"user_id": user_id})
        return user

    def _audit(self, action: AuditAction, user_id: str, ip_address: Optional[str]) -> None:
        if self.audit:
            self.audit.success(
                action, "user", user_id=user_id, resource_id=user_id, ip_address=ip_address
            )

    def generate_backup_codes(self) -> List[str]:
        return [generate_backup_code() for _ in range(self.backup_code_count)]

    def begin_enrollment(self, user_id: str) -> EnrollmentMaterial:
        user = self._require_user(user_id)
        if user.two_factor_enabled:
            raise AlreadyEnabled()
        secret = pyotp.random_base32()
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.issuer)
        return EnrollmentMaterial(
            secret=secret,
            provisioning_uri=uri,
            backup_codes=self.generate_backup_codes(),
        )

    async def complete_enrollment(
        self,
        user_id: str,
        secret: str,
        code: str,
        backup_codes: List[str],
        *,
        ip_address: Optional[str] = None,
    ) -> None:
        user = self._require_user(user_id)
        if user.two_factor_enabled:
            raise AlreadyEnabled()
        normalized = [normalize_code(c) for c in backup_codes]
        if not normalized or any(not BACKUP_CODE_PATTERN.match(c) for c in normalized):
            raise BadRequestError("backup codes must be the XXXX-XXXX codes issued at setup")
        if not self._verify_totp(secret, code):
            raise InvalidCode()
        hashes = [await self.verifier.hash_async(c) for c in normalized]
        self.store.enable_two_factor(user_id, secret, hashes)
        logger.info("two_factor_enabled", user_id=user_id)
        self._audit(AuditAction.ENABLE_2FA, user_id, ip_address)

    async def verify_at_login(self, user_id: str, code: str) -> VerificationResult:
        """Check a login-time code against backup codes, then the live TOTP.

        Never reports which stored factor failed.
        """
        config = self.store.get_two_factor_config(user_id)
        if not config:
            raise NotEnabled()
        candidate = normalize_code(code)
        if BACKUP_CODE_PATTERN.match(candidate):
            for stored_hash in config.backup_code_hashes:
                if not await self.verifier.verify_async(candidate, stored_hash):
                    continue
                if self.store.consume_backup_code(user_id, stored_hash):
                    logger.info(
                        "backup_code_used",
                        user_id=user_id,
                        remaining=len(config.backup_code_hashes) - 1,
                    )
                    return VerificationResult(valid=True, used_backup_code=True)
                # another request consumed it first
                return VerificationResult(valid=False)
        if config.secret and self._verify_totp(config.secret, candidate):
            return VerificationResult(valid=True)
        if not config.secret:
            logger.error("two_factor_secret_unavailable", user_id=user_id)
        return VerificationResult(valid=False)

    async def _check_password(self, user_id: str, password: str) -> None:
        record = self.store.get_password_record(user_id)
        if not record:
            raise NoPasswordConfigured()
        stored_hash, _ = record
        if not await self.verifier.verify_async(password, stored_hash):
            raise WrongPassword()

    async def disable(
        self, user_id: str, password: str, *, ip_address: Optional[str] = None
    ) -> None:
        user = self._require_user(user_id)
        if not user.two_factor_enabled:
            raise NotEnabled()
        await self._check_password(user_id, password)
        self.store.disable_two_factor(user_id)
        logger.info("two_factor_disabled", user_id=user_id)
        self._audit(AuditAction.DISABLE_2FA, user_id, ip_address)

    async def regenerate_backup_codes(
        self, user_id: str, password: str, *, ip_address: Optional[str] = None
    ) -> List[str]:
        user = self._require_user(user_id)
        if not user.two_factor_enabled:
            raise NotEnabled()
        await self._check_password(user_id, password)
        codes = self.generate_backup_codes()
        hashes = [await self.verifier.hash_async(c) for c in codes]
        self.store.replace_backup_codes(user_id, hashes)
        logger.info("backup_codes_regenerated", user_id=user_id)
        self._audit(AuditAction.REGENERATE_BACKUP_CODES, user_id, ip_address)
        return codes

    def is_enabled(self, user_id: str) -> bool:
        user = self.store.get_user(user_id)
        return bool(user and user.two_factor_enabled)

    def stats(self) -> dict:
        total = self.store.count_users()
        enabled = self.store.count_users(two_factor_enabled=True)
        return {
            "total": total,
            "enabled": enabled,
            "disabled": total - enabled,
            "enabled_percentage": f"{enabled / total * 100:.2f}" if total else "0",
        }

    @staticmethod
    def _verify_totp(secret: str, code: str) -> bool:
        candidate = (code or "").strip()
        if not TOTP_PATTERN.match(candidate):
            return False
        try:
            # current step plus one either side for clock skew
            return pyotp.TOTP(secret).verify(candidate, valid_window=1)
        except (TypeError, ValueError):
            logger.warning("totp_secret_invalid")
            return False
