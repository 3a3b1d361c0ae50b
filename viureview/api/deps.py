"""Request guards composed as FastAPI dependencies.

Every protected route runs the same pipeline: authenticate, then the
route's authorization guard, then body validation, then the handler.
Guards raise service errors that the exception handlers turn into envelopes.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping, Optional

from fastapi import Depends, Header, Request

from viureview.logging import get_logger
from viureview.service.auth import AuthContext
from viureview.service.errors import RateLimitedError
from viureview.service.runtime import Runtime, check_rate_limit
from viureview.storage.models import Role

logger = get_logger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH"}


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def enforce_rate_limit(runtime: Runtime, key: str, limit: int, window_seconds: int = 60) -> None:
    allowed, remaining, reset_seconds = await check_rate_limit(
        runtime, key, limit, window_seconds, return_remaining=True
    )
    if not allowed:
        raise RateLimitedError(
            "rate limit exceeded", detail={"retry_after": max(1, reset_seconds)}
        )


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    runtime = get_runtime(request)
    ctx = await runtime.auth.authenticate(authorization)
    request.state.principal = ctx
    return ctx


async def _json_body(request: Request) -> Optional[Mapping[str, Any]]:
    if request.method not in _BODY_METHODS:
        return None
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


def require_roles(*roles: Role | str) -> Callable:
    def dependency(
        request: Request, ctx: AuthContext = Depends(get_principal)
    ) -> AuthContext:
        get_runtime(request).authorization.require_role(
            ctx.user,
            roles,
            action=f"{request.method} {request.url.path}",
            ip_address=client_ip(request),
        )
        return ctx

    return dependency


require_admin = require_roles(Role.ADMIN)


def require_ownership(resource_kind: str, param: str) -> Callable:
    def dependency(
        request: Request, ctx: AuthContext = Depends(get_principal)
    ) -> AuthContext:
        resource_id = request.path_params[param]
        get_runtime(request).authorization.require_ownership(
            ctx.user, resource_kind, resource_id
        )
        return ctx

    return dependency


async def require_project_access(
    request: Request, ctx: AuthContext = Depends(get_principal)
) -> AuthContext:
    body = await _json_body(request)
    get_runtime(request).authorization.require_project_access(
        ctx.user, request.path_params, body
    )
    return ctx


def require_author(param: str = "id") -> Callable:
    def dependency(
        request: Request, ctx: AuthContext = Depends(get_principal)
    ) -> AuthContext:
        get_runtime(request).authorization.require_author(
            ctx.user, request.path_params[param]
        )
        return ctx

    return dependency
