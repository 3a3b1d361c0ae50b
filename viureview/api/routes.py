from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from viureview.api.deps import (
    client_ip,
    enforce_rate_limit,
    get_principal,
    get_runtime,
    require_admin,
    require_author,
    require_ownership,
    require_project_access,
)
from viureview.api.schemas import (
    ApprovalResponse,
    ArtResponse,
    AuditLogPage,
    AuditLogResponse,
    AuditStatsResponse,
    BackupCodesResponse,
    Envelope,
    FeedbackResponse,
    LoginRequest,
    LoginResponse,
    PasswordConfirmRequest,
    ProjectResponse,
    RegisterRequest,
    ResolveEventResponse,
    RetentionResponse,
    SecurityDashboardResponse,
    SecurityEventResponse,
    SecurityStatsResponse,
    SessionListResponse,
    SessionResponse,
    TaskResponse,
    TwoFactorChallengeResponse,
    TwoFactorEnableRequest,
    TwoFactorLoginRequest,
    TwoFactorSetupResponse,
    TwoFactorStatsResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyRequest,
    TwoFactorVerifyResponse,
    UserSecurityResponse,
    UserSummary,
)
from viureview.logging import get_logger
from viureview.service.auth import AuthContext, LoginResult
from viureview.service.errors import NotFoundError
from viureview.service.runtime import Runtime
from viureview.storage.models import AuditAction, User

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

_SEVERITY_PATTERN = "^(LOW|MEDIUM|HIGH|CRITICAL)$"
_MFA_WINDOW_SECONDS = 60


def _user_summary(user: User) -> UserSummary:
    return UserSummary.model_validate(user)


def _login_payload(result: LoginResult) -> LoginResponse:
    return LoginResponse(
        token=result.token,
        expires_at=result.expires_at,
        user=_user_summary(result.user),
        used_backup_code=result.used_backup_code,
    )


def _event_payload(events) -> list[SecurityEventResponse]:
    return [SecurityEventResponse.model_validate(e) for e in events]


def _audit_payload(logs) -> list[AuditLogResponse]:
    return [AuditLogResponse.model_validate(log) for log in logs]


# auth
@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(
    body: LoginRequest,
    request: Request,
    runtime: Runtime = Depends(get_runtime),
):
    """Authenticate with email and password.

    Returns a bearer token, or a second-factor challenge when the account has
    two-factor authentication enabled.

    Raises:
        401: If credentials are invalid
        429: If the account is locked or the per-email rate limit is exceeded
    """
    await enforce_rate_limit(
        runtime,
        f"login:{body.email}",
        runtime.settings.login_rate_limit_per_minute,
        60,
    )
    result = await runtime.auth.login(
        body.email,
        body.password,
        ip_addr=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if result.requires_2fa:
        return Envelope(
            status="ok",
            data=TwoFactorChallengeResponse(
                user_id=result.user.id, challenge=result.challenge
            ),
        )
    return Envelope(status="ok", data=_login_payload(result))


@router.post("/auth/login/2fa", response_model=Envelope, tags=["auth"])
async def login_second_factor(
    body: TwoFactorLoginRequest,
    request: Request,
    runtime: Runtime = Depends(get_runtime),
):
    await enforce_rate_limit(
        runtime,
        f"mfa:{body.user_id}",
        runtime.settings.mfa_rate_limit_per_minute,
        _MFA_WINDOW_SECONDS,
    )
    result = await runtime.auth.complete_two_factor_login(
        body.user_id,
        body.code,
        body.challenge,
        ip_addr=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return Envelope(status="ok", data=_login_payload(result))


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    request: Request,
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    runtime.auth.logout(principal, ip_addr=client_ip(request))
    return Envelope(status="ok", data={"logged_out": True})


@router.get("/me", response_model=Envelope, tags=["auth"])
async def me(principal: AuthContext = Depends(get_principal)):
    return Envelope(status="ok", data=_user_summary(principal.user))


# two-factor
@router.post("/2fa/setup", response_model=Envelope, tags=["2fa"])
async def two_factor_setup(
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    """Start enrollment: a fresh TOTP secret, its provisioning URI and backup codes.

    Nothing is stored until the caller proves possession via ``/2fa/enable``.
    """
    material = runtime.two_factor.begin_enrollment(principal.user_id)
    return Envelope(
        status="ok",
        data=TwoFactorSetupResponse(
            secret=material.secret,
            provisioning_uri=material.provisioning_uri,
            manual_entry_key=material.manual_entry_key,
            backup_codes=material.backup_codes,
        ),
    )


@router.post("/2fa/enable", response_model=Envelope, tags=["2fa"])
async def two_factor_enable(
    body: TwoFactorEnableRequest,
    request: Request,
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    await enforce_rate_limit(
        runtime,
        f"mfa:enable:{principal.user_id}",
        runtime.settings.mfa_rate_limit_per_minute,
        _MFA_WINDOW_SECONDS,
    )
    await runtime.two_factor.complete_enrollment(
        principal.user_id,
        body.secret,
        body.code,
        body.backup_codes,
        ip_address=client_ip(request),
    )
    return Envelope(status="ok", data=TwoFactorStatusResponse(enabled=True))


@router.post("/2fa/disable", response_model=Envelope, tags=["2fa"])
async def two_factor_disable(
    body: PasswordConfirmRequest,
    request: Request,
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    """Disable two-factor authentication. Requires the current password."""
    await enforce_rate_limit(
        runtime,
        f"mfa:disable:{principal.user_id}",
        runtime.settings.mfa_rate_limit_per_minute,
        _MFA_WINDOW_SECONDS,
    )
    await runtime.two_factor.disable(
        principal.user_id, body.password, ip_address=client_ip(request)
    )
    # other sessions must re-authenticate without the second factor in place
    revoked = runtime.store.deactivate_user_sessions(
        principal.user_id, except_session_id=principal.session_id
    )
    logger.info("two_factor_disable_sessions_revoked", user_id=principal.user_id, count=revoked)
    return Envelope(status="ok", data=TwoFactorStatusResponse(enabled=False))


@router.post("/2fa/verify", response_model=Envelope, tags=["2fa"])
async def two_factor_verify(
    body: TwoFactorVerifyRequest,
    request: Request,
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    await enforce_rate_limit(
        runtime,
        f"mfa:verify:{principal.user_id}",
        runtime.settings.mfa_rate_limit_per_minute,
        _MFA_WINDOW_SECONDS,
    )
    result = await runtime.two_factor.verify_at_login(principal.user_id, body.code)
    if not result.valid:
        runtime.security.track_failed_2fa(principal.user_id, client_ip(request))
    return Envelope(
        status="ok",
        data=TwoFactorVerifyResponse(
            valid=result.valid, used_backup_code=result.used_backup_code
        ),
    )


@router.post("/2fa/regenerate-backup-codes", response_model=Envelope, tags=["2fa"])
async def two_factor_regenerate_backup_codes(
    body: PasswordConfirmRequest,
    request: Request,
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    await enforce_rate_limit(
        runtime,
        f"mfa:regenerate:{principal.user_id}",
        runtime.settings.mfa_rate_limit_per_minute,
        _MFA_WINDOW_SECONDS,
    )
    codes = await runtime.two_factor.regenerate_backup_codes(
        principal.user_id, body.password, ip_address=client_ip(request)
    )
    return Envelope(status="ok", data=BackupCodesResponse(backup_codes=codes))


@router.get("/2fa/status", response_model=Envelope, tags=["2fa"])
async def two_factor_status(
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    return Envelope(
        status="ok",
        data=TwoFactorStatusResponse(enabled=runtime.two_factor.is_enabled(principal.user_id)),
    )


@router.get("/2fa/stats", response_model=Envelope, tags=["2fa"])
async def two_factor_stats(
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    return Envelope(status="ok", data=TwoFactorStatsResponse(**runtime.two_factor.stats()))


# sessions
@router.get("/sessions", response_model=Envelope, tags=["sessions"])
async def list_sessions(
    active: Optional[str] = Query(None, pattern="^(true|false)$"),
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    sessions = runtime.sessions.list_for_owner(principal.user_id, active)
    return Envelope(
        status="ok",
        data=SessionListResponse(
            items=[SessionResponse.model_validate(s) for s in sessions],
            current_session_id=principal.session_id,
        ),
    )


@router.delete("/sessions/{session_id}", response_model=Envelope, tags=["sessions"])
async def revoke_session(
    session_id: str,
    request: Request,
    principal: AuthContext = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    sess = runtime.auth.revoke_session(principal, session_id, ip_addr=client_ip(request))
    return Envelope(status="ok", data=SessionResponse.model_validate(sess))


# security monitoring (admin)
@router.get("/security/events", response_model=Envelope, tags=["security"])
async def security_events(
    severity: Optional[str] = Query(None, pattern=_SEVERITY_PATTERN),
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    """Unresolved security events, most severe first."""
    events = runtime.security.unresolved_events(severity)
    return Envelope(status="ok", data=_event_payload(events))


@router.post("/security/events/{event_id}/resolve", response_model=Envelope, tags=["security"])
async def resolve_security_event(
    event_id: str,
    request: Request,
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    event = runtime.security.resolve_event(event_id, principal.user_id)
    runtime.audit.success(
        AuditAction.RESOLVE_SECURITY_EVENT,
        "security_event",
        user_id=principal.user_id,
        resource_id=event_id,
        ip_address=client_ip(request),
    )
    return Envelope(
        status="ok", data=ResolveEventResponse(event=SecurityEventResponse.model_validate(event))
    )


@router.get("/security/dashboard", response_model=Envelope, tags=["security"])
async def security_dashboard(
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    dashboard = runtime.security.dashboard()
    return Envelope(
        status="ok",
        data=SecurityDashboardResponse(
            last_24_hours=SecurityStatsResponse(**dashboard["last_24_hours"]),
            last_7_days=SecurityStatsResponse(**dashboard["last_7_days"]),
            critical_events=_event_payload(dashboard["critical_events"]),
            recent_events=_event_payload(dashboard["recent_events"]),
        ),
    )


@router.get("/security/stats", response_model=Envelope, tags=["security"])
async def security_stats(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    stats = runtime.security.security_stats(start=start, end=end)
    return Envelope(status="ok", data=SecurityStatsResponse(**stats))


@router.get("/security/recent-activity", response_model=Envelope, tags=["security"])
async def security_recent_activity(
    limit: int = Query(20, ge=1, le=100),
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    return Envelope(status="ok", data=_audit_payload(runtime.audit.recent_activity(limit)))


@router.get("/security/audit-logs", response_model=Envelope, tags=["security"])
async def security_audit_logs(
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    status: Optional[str] = Query(None, pattern="^(SUCCESS|FAILURE)$"),
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    result = runtime.audit.find_logs(
        user_id=user_id,
        action=action,
        resource=resource,
        status=status,
        start=start,
        end=end,
        page=page,
        limit=limit,
    )
    return Envelope(
        status="ok",
        data=AuditLogPage(logs=_audit_payload(result["logs"]), pagination=result["pagination"]),
    )


@router.get("/security/audit-logs/stats", response_model=Envelope, tags=["security"])
async def security_audit_stats(
    user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    stats = runtime.audit.stats(user_id=user_id, start=start, end=end)
    return Envelope(status="ok", data=AuditStatsResponse(**stats))


@router.get("/security/users/{user_id}", response_model=Envelope, tags=["security"])
async def security_user_overview(
    user_id: str,
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    user = runtime.store.get_user(user_id)
    if not user:
        raise NotFoundError("user not found", detail={"user_id": user_id})
    return Envelope(
        status="ok",
        data=UserSecurityResponse(
            user=_user_summary(user),
            locked=runtime.security.is_account_locked(user_id),
            recent_failed_logins=runtime.security.recent_failed_logins(user_id),
            events=_event_payload(runtime.security.user_events(user_id)),
            audit_logs=_audit_payload(runtime.audit.user_logs(user_id)["logs"]),
        ),
    )


@router.post("/security/maintenance/prune", response_model=Envelope, tags=["security"])
async def security_prune(
    request: Request,
    days_to_keep: int = Query(90, ge=1, le=3650),
    principal: AuthContext = Depends(require_admin),
    runtime: Runtime = Depends(get_runtime),
):
    """Delete audit logs and resolved security events older than ``days_to_keep``."""
    audit_deleted = runtime.audit.clean_old_logs(days_to_keep)
    events_deleted = runtime.security.clean_old_resolved_events(days_to_keep)
    runtime.audit.success(
        AuditAction.PRUNE_SECURITY_DATA,
        "maintenance",
        user_id=principal.user_id,
        ip_address=client_ip(request),
        details={
            "days_to_keep": days_to_keep,
            "audit_logs_deleted": audit_deleted,
            "security_events_deleted": events_deleted,
        },
    )
    return Envelope(
        status="ok",
        data=RetentionResponse(
            days_to_keep=days_to_keep,
            audit_logs_deleted=audit_deleted,
            security_events_deleted=events_deleted,
        ),
    )


# users
@router.post("/users", response_model=Envelope, status_code=201, tags=["users"])
async def register_user(
    body: RegisterRequest,
    request: Request,
    runtime: Runtime = Depends(get_runtime),
):
    """Create a DESIGNER or CLIENT account.

    Raises:
        409: If the email is already registered
        429: If the per-address registration rate limit is exceeded
    """
    await enforce_rate_limit(
        runtime,
        f"register:{client_ip(request)}",
        runtime.settings.login_rate_limit_per_minute,
        60,
    )
    user = await runtime.auth.register(
        body.email,
        body.password,
        name=body.name,
        role=body.role,
        ip_addr=client_ip(request),
    )
    return Envelope(status="ok", data=_user_summary(user))


@router.get("/users/{user_id}", response_model=Envelope, tags=["users"])
async def get_user_profile(
    user_id: str,
    principal: AuthContext = Depends(require_ownership("user", "user_id")),
    runtime: Runtime = Depends(get_runtime),
):
    user = runtime.store.get_user(user_id)
    if not user:
        raise NotFoundError("user not found", detail={"user_id": user_id})
    return Envelope(status="ok", data=_user_summary(user))


@router.delete("/users/{user_id}", response_model=Envelope, tags=["users"])
async def deactivate_user(
    user_id: str,
    request: Request,
    principal: AuthContext = Depends(require_ownership("user", "user_id")),
    runtime: Runtime = Depends(get_runtime),
):
    """Soft-delete an account; its sessions stop authenticating immediately."""
    user = runtime.auth.deactivate(principal, user_id, ip_addr=client_ip(request))
    return Envelope(status="ok", data=_user_summary(user))


# review resources

@router.get("/projects/{project_id}", response_model=Envelope, tags=["projects"])
async def get_project(
    project_id: str,
    principal: AuthContext = Depends(require_ownership("project", "project_id")),
    runtime: Runtime = Depends(get_runtime),
):
    project = runtime.store.get_project(project_id)
    if not project:
        raise NotFoundError("project not found", detail={"project_id": project_id})
    return Envelope(status="ok", data=ProjectResponse.model_validate(project))


@router.get("/projects/{project_id}/arts", response_model=Envelope, tags=["projects"])
async def list_project_arts(
    project_id: str,
    principal: AuthContext = Depends(require_project_access),
    runtime: Runtime = Depends(get_runtime),
):
    arts = runtime.store.list_arts(project_id)
    return Envelope(status="ok", data=[ArtResponse.model_validate(a) for a in arts])


@router.get("/arts/{id}", response_model=Envelope, tags=["projects"])
async def get_art(
    id: str,
    principal: AuthContext = Depends(require_project_access),
    runtime: Runtime = Depends(get_runtime),
):
    art = runtime.store.get_art(id)
    if not art:
        raise NotFoundError("art not found", detail={"id": id})
    return Envelope(status="ok", data=ArtResponse.model_validate(art))


@router.get("/tasks/{id}", response_model=Envelope, tags=["projects"])
async def get_task(
    id: str,
    principal: AuthContext = Depends(require_project_access),
    runtime: Runtime = Depends(get_runtime),
):
    task = runtime.store.get_task(id)
    if not task:
        raise NotFoundError("task not found", detail={"id": id})
    return Envelope(status="ok", data=TaskResponse.model_validate(task))


@router.get("/feedback/{id}", response_model=Envelope, tags=["review"])
async def get_feedback(
    id: str,
    principal: AuthContext = Depends(require_author("id")),
    runtime: Runtime = Depends(get_runtime),
):
    feedback = runtime.store.get_feedback(id)
    if not feedback:
        raise NotFoundError("feedback not found", detail={"id": id})
    return Envelope(status="ok", data=FeedbackResponse.model_validate(feedback))


@router.get("/approvals/{id}", response_model=Envelope, tags=["review"])
async def get_approval(
    id: str,
    principal: AuthContext = Depends(require_author("id")),
    runtime: Runtime = Depends(get_runtime),
):
    approval = runtime.store.get_approval(id)
    if not approval:
        raise NotFoundError("approval not found", detail={"id": id})
    return Envelope(status="ok", data=ApprovalResponse.model_validate(approval))
