from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from viureview.api.error_handling import register_exception_handlers
from viureview.api.routes import router
from viureview.config import Settings
from viureview.logging import get_logger, set_correlation_id
from viureview.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


def _allowed_origins(settings: Settings) -> List[str]:
    if settings.cors_allow_origins:
        return settings.cors_allow_origins
    # local dev hosts; never a wildcard when credentials are enabled
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


async def _run_bounded(label: str, func) -> bool:
    try:
        await asyncio.wait_for(asyncio.to_thread(func), HEALTH_CHECK_TIMEOUT_SECONDS)
        return True
    except asyncio.TimeoutError:
        logger.error(
            "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
        )
    except Exception as exc:
        logger.error("health_check_failed", component=label, error=str(exc))
    return False


def create_app(
    settings: Optional[Settings] = None, runtime: Optional[Runtime] = None
) -> FastAPI:
    """Build the API application.

    The runtime is constructed in the lifespan unless one is injected, so
    importing this module never opens a database pool or Redis connection.
    An injected runtime is left open on shutdown; its owner closes it.
    """
    settings = settings or (runtime.settings if runtime else Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        app.state.runtime = runtime or Runtime(settings)
        logger.info("app_started", build=settings.build_sha, owned_runtime=owned)
        try:
            yield
        finally:
            if owned:
                try:
                    await app.state.runtime.close()
                except Exception as exc:
                    logger.error("shutdown_failed", error=str(exc))
            logger.info("app_stopped")

    app = FastAPI(title="VIU Review API", version=__version__, lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID", "API-Version"],
        max_age=3600,
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("API-Version", __version__)
        if request.url.path.startswith("/v1/") or request.url.path == "/healthz":
            response.headers.setdefault(
                "Cache-Control", "no-store, no-cache, must-revalidate, private"
            )
        if request.url.scheme == "https" and settings.enable_hsts:
            response.headers.setdefault(
                "Strict-Transport-Security", "max-age=63072000; includeSubDomains"
            )
        return response

    # registered last so it runs outermost and every log line carries the id
    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.get("/healthz")
    async def health(request: Request) -> Dict[str, Any]:
        """Report store and Redis reachability along with the build id."""
        rt: Runtime = request.app.state.runtime
        checks: Dict[str, Dict[str, Any]] = {}

        store_connect = getattr(rt.store, "_connect", None)
        if store_connect is not None:

            def _db_probe() -> None:
                with store_connect() as conn:
                    conn.execute("SELECT 1").fetchone()

            db_ok = await _run_bounded("database", _db_probe)
            checks["database"] = {"status": "healthy" if db_ok else "unhealthy"}
        else:
            db_ok = True
            checks["database"] = {"status": "healthy", "type": "memory"}

        redis_ok = True
        if rt.cache is not None:
            redis_ok = await _run_bounded("redis", rt.cache.verify_connection)
            checks["redis"] = {"status": "healthy" if redis_ok else "unhealthy"}
        else:
            checks["redis"] = {"status": "not_configured"}

        return {
            "status": "healthy" if db_ok and redis_ok else "unhealthy",
            "checks": checks,
            "version": __version__,
            "build": settings.build_sha,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()
