from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    DESIGNER = "DESIGNER"
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


class SecurityEventType(str, Enum):
    FAILED_LOGIN = "FAILED_LOGIN"
    ACCOUNT_LOCKOUT = "ACCOUNT_LOCKOUT"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    MULTIPLE_FAILED_2FA = "MULTIPLE_FAILED_2FA"
    PRIVILEGE_ESCALATION_ATTEMPT = "PRIVILEGE_ESCALATION_ATTEMPT"
    UNAUTHORIZED_ACCESS_ATTEMPT = "UNAUTHORIZED_ACCESS_ATTEMPT"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    ENABLE_2FA = "ENABLE_2FA"
    DISABLE_2FA = "DISABLE_2FA"
    REGENERATE_BACKUP_CODES = "REGENERATE_BACKUP_CODES"
    REVOKE_SESSION = "REVOKE_SESSION"
    RESOLVE_SECURITY_EVENT = "RESOLVE_SECURITY_EVENT"
    REGISTER = "REGISTER"
    DEACTIVATE_USER = "DEACTIVATE_USER"
    PRUNE_SECURITY_DATA = "PRUNE_SECURITY_DATA"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass
class User:
    id: str
    email: str
    name: Optional[str] = None
    role: str = Role.DESIGNER.value
    created_at: datetime = field(default_factory=utcnow)
    is_active: bool = True
    two_factor_enabled: bool = False
    meta: Dict | None = None


@dataclass
class TwoFactorConfig:
    """Decrypted view of a principal's second factor; never serialized to clients."""

    user_id: str
    secret: str
    backup_code_hashes: List[str] = field(default_factory=list)
    enabled_at: datetime = field(default_factory=utcnow)


@dataclass
class Session:
    id: str
    user_id: str
    token_hash: str
    created_at: datetime
    expires_at: datetime
    is_active: bool = True
    user_agent: Optional[str] = None
    ip_addr: Optional[str] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        token_hash: str,
        ttl_seconds: int = 60 * 60 * 24 * 7,
        *,
        user_agent: str | None = None,
        ip_addr: str | None = None,
    ) -> "Session":
        now = utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=token_hash,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            user_agent=user_agent,
            ip_addr=ip_addr,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at < (now or utcnow())


@dataclass
class SecurityEvent:
    id: str
    event_type: str
    severity: str
    description: str
    created_at: datetime = field(default_factory=utcnow)
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[dict] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


@dataclass
class AuditLog:
    id: str
    action: str
    status: str
    created_at: datetime = field(default_factory=utcnow)
    user_id: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[dict] = None


@dataclass
class Project:
    id: str
    name: str
    designer_id: str
    client_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Art:
    id: str
    project_id: str
    title: str
    author_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Task:
    id: str
    project_id: str
    title: str
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Feedback:
    id: str
    art_id: str
    author_id: str
    content: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Approval:
    id: str
    art_id: str
    approver_id: str
    status: str = "PENDENTE"
    created_at: datetime = field(default_factory=utcnow)
