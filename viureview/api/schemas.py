from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "rate_limited",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def normalize_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


class _Response(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# auth
class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return normalize_email(value)


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=8, max_length=128)
    name: Optional[str] = Field(None, max_length=255)
    # ADMIN accounts come from the bootstrap script, never self-registration
    role: str = Field("DESIGNER", pattern="^(DESIGNER|CLIENT)$")

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return normalize_email(value)


class TwoFactorLoginRequest(BaseModel):
    user_id: str = Field(..., max_length=64)
    code: str = Field(..., min_length=6, max_length=16)
    challenge: str = Field(..., max_length=128)


class UserSummary(_Response):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    is_active: bool = True
    two_factor_enabled: bool = False


class LoginResponse(BaseModel):
    token: str
    token_type: Literal["bearer"] = "bearer"
    expires_at: datetime
    user: UserSummary
    used_backup_code: bool = False


class TwoFactorChallengeResponse(BaseModel):
    requires_2fa: Literal[True] = True
    user_id: str
    challenge: str


# two-factor
class TwoFactorSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str
    manual_entry_key: str
    backup_codes: List[str]


class TwoFactorEnableRequest(BaseModel):
    secret: str = Field(..., min_length=16, max_length=64)
    code: str = Field(..., min_length=6, max_length=6)
    backup_codes: List[str] = Field(..., min_length=1, max_length=20)


class PasswordConfirmRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=128)


class TwoFactorVerifyRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=16)


class TwoFactorVerifyResponse(BaseModel):
    valid: bool
    used_backup_code: bool = False


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]


class TwoFactorStatusResponse(BaseModel):
    enabled: bool


class TwoFactorStatsResponse(BaseModel):
    total: int
    enabled: int
    disabled: int
    enabled_percentage: str


# sessions
class SessionResponse(_Response):
    id: str
    created_at: datetime
    expires_at: datetime
    is_active: bool
    user_agent: Optional[str] = None
    ip_addr: Optional[str] = None


class SessionListResponse(BaseModel):
    items: List[SessionResponse]
    current_session_id: str


# security / audit
class SecurityEventResponse(_Response):
    id: str
    event_type: str
    severity: str
    description: str
    created_at: datetime
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class SecurityStatsResponse(BaseModel):
    total: int
    unresolved: int
    resolved: int
    by_severity: List[Dict[str, Any]]
    top_event_types: List[Dict[str, Any]]
    failed_logins: int
    account_lockouts: int


class SecurityDashboardResponse(BaseModel):
    last_24_hours: SecurityStatsResponse
    last_7_days: SecurityStatsResponse
    critical_events: List[SecurityEventResponse]
    recent_events: List[SecurityEventResponse]


class AuditLogResponse(_Response):
    id: str
    action: str
    status: str
    created_at: datetime
    user_id: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AuditLogPage(BaseModel):
    logs: List[AuditLogResponse]
    pagination: Pagination


class AuditStatsResponse(BaseModel):
    total: int
    success_count: int
    failure_count: int
    success_rate: str
    top_actions: List[Dict[str, Any]]
    resource_breakdown: List[Dict[str, Any]]


class UserSecurityResponse(BaseModel):
    user: UserSummary
    locked: bool
    recent_failed_logins: int
    events: List[SecurityEventResponse]
    audit_logs: List[AuditLogResponse]


class ResolveEventResponse(BaseModel):
    event: SecurityEventResponse


class RetentionResponse(BaseModel):
    days_to_keep: int
    audit_logs_deleted: int
    security_events_deleted: int


# review resources
class ProjectResponse(_Response):
    id: str
    name: str
    designer_id: str
    client_id: Optional[str] = None
    created_at: datetime


class ArtResponse(_Response):
    id: str
    project_id: str
    title: str
    author_id: Optional[str] = None
    created_at: datetime


class TaskResponse(_Response):
    id: str
    project_id: str
    title: str
    created_at: datetime


class FeedbackResponse(_Response):
    id: str
    art_id: str
    author_id: str
    content: str
    created_at: datetime


class ApprovalResponse(_Response):
    id: str
    art_id: str
    approver_id: str
    status: str
    created_at: datetime
