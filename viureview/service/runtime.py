from __future__ import annotations

import inspect
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple, Union
from urllib.parse import urlparse, urlunparse

from viureview.config import Settings
from viureview.logging import get_logger
from viureview.service.audit import StoreAuditSink
from viureview.service.auth import AuthService, AuthStore
from viureview.service.authorization import AuthorizationGate
from viureview.service.credentials import CredentialVerifier, fast_verifier
from viureview.service.security import SecurityMonitor
from viureview.service.sessions import SessionStoreAdapter
from viureview.service.two_factor import TwoFactorEngine
from viureview.storage.memory import MemoryStore
from viureview.storage.postgres import PostgresStore
from viureview.storage.redis_cache import CacheBackend, RedisCache, SyncRedisCache

logger = get_logger(__name__)

# in-process buckets are swept once this many keys are tracked
LOCAL_RATE_LIMIT_PRUNE_THRESHOLD = 1024


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a URL with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Explicitly constructed service graph owned by one app instance.

    The store and cache live for the lifetime of the runtime and are released
    by :meth:`close`.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[AuthStore] = None,
        cache: CacheBackend = None,
        verifier: Optional[CredentialVerifier] = None,
    ) -> None:
        self.settings = settings
        logger.info(
            "runtime_init_started",
            use_memory_store=settings.use_memory_store,
            test_mode=settings.test_mode,
        )
        self.store: AuthStore = store or self._build_store(settings)
        self.cache = cache if cache is not None else self._build_cache(settings)

        if verifier is None:
            verifier = fast_verifier() if settings.test_mode else CredentialVerifier()
        self.verifier = verifier
        self.audit = StoreAuditSink(self.store)
        self.security = SecurityMonitor(
            self.store,
            failed_login_threshold=settings.failed_login_threshold,
            failed_login_window=timedelta(minutes=settings.failed_login_window_minutes),
            lockout_duration=timedelta(minutes=settings.lockout_duration_minutes),
            failed_2fa_threshold=settings.failed_2fa_threshold,
            failed_2fa_window=timedelta(minutes=settings.failed_2fa_window_minutes),
        )
        self.sessions = SessionStoreAdapter(
            self.store,
            self.verifier,
            default_ttl_seconds=settings.session_ttl_minutes * 60,
        )
        self.two_factor = TwoFactorEngine(
            self.store,
            self.verifier,
            issuer=settings.app_name,
            backup_code_count=settings.backup_code_count,
            audit=self.audit,
        )
        self.authorization = AuthorizationGate(self.store, self.security)
        self.auth = AuthService(
            self.store,
            settings,
            verifier=self.verifier,
            sessions=self.sessions,
            security=self.security,
            two_factor=self.two_factor,
            audit=self.audit,
        )
        # key -> (tokens, last_seen, time the bucket is full again)
        self._local_rate_limits: Dict[str, Tuple[float, datetime, datetime]] = {}
        self._local_rate_limit_lock = threading.Lock()
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            redis_enabled=self.cache is not None,
        )

    @staticmethod
    def _build_store(settings: Settings) -> AuthStore:
        store_type = "memory" if settings.use_memory_store else "postgres"
        try:
            key_material = settings.resolve_mfa_key_material()
            if settings.use_memory_store:
                store: AuthStore = MemoryStore(
                    fs_root=settings.shared_fs_root, mfa_encryption_key=key_material
                )
            else:
                store = PostgresStore(
                    settings.database_url,
                    fs_root=settings.shared_fs_root,
                    mfa_encryption_key=key_material,
                )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)
        return store

    @staticmethod
    def _build_cache(settings: Settings) -> CacheBackend:
        cache: CacheBackend = None
        redis_error: Exception | None = None
        if settings.redis_url:
            try:
                # sync client in test mode avoids event loop binding issues
                cache = (
                    SyncRedisCache(settings.redis_url)
                    if settings.test_mode
                    else RedisCache(settings.redis_url)
                )
                cache.verify_connection()
            except Exception as exc:
                redis_error = exc
                cache = None

        if cache is None:
            if not settings.test_mode and not settings.allow_redis_fallback_dev:
                raise RuntimeError(
                    "Redis is required for rate limits; start Redis or set "
                    "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                ) from redis_error
            mode = "TEST_MODE" if settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
            logger.warning(
                "redis_disabled_fallback",
                redis_url=_mask_url_password(settings.redis_url),
                error=str(redis_error) if redis_error else "redis_url_missing",
                message=f"Running without Redis under {mode}; rate limits are per-process.",
                mode=mode,
            )
        return cache

    async def close(self) -> None:
        if self.cache is not None:
            try:
                await self.cache.close()
            except Exception as exc:
                logger.warning("runtime_cache_close_failed", error=str(exc))
        close_store = getattr(self.store, "close", None)
        if close_store is not None:
            result = close_store()
            if inspect.isawaitable(result):
                await result
        logger.info("runtime_closed")


def _prune_full_buckets(
    buckets: Dict[str, Tuple[float, datetime, datetime]], now: datetime
) -> int:
    """Drop buckets that have refilled; a missing key starts full anyway."""
    stale = [key for key, (_, _, full_at) in buckets.items() if full_at <= now]
    for key in stale:
        del buckets[key]
    if stale:
        logger.debug("rate_limit_buckets_pruned", pruned=len(stale), remaining=len(buckets))
    return len(stale)


async def check_rate_limit(
    runtime: Runtime,
    key: str,
    limit: int,
    window_seconds: int,
    *,
    return_remaining: bool = False,
    cost: int = 1,
) -> Union[bool, Tuple[bool, int, int]]:
    """Token-bucket rate limit, in Redis when available and in-process otherwise.

    Returns:
        bool if return_remaining is False, else (allowed, remaining, reset_seconds)
    """
    if limit <= 0:
        return (True, limit, 0) if return_remaining else True
    if window_seconds <= 0:
        logger.warning("rate_limit_invalid_window", key=key, window_seconds=window_seconds)
        window_seconds = 60
    if runtime.cache:
        return await runtime.cache.check_rate_limit(
            key, limit, window_seconds, return_remaining=return_remaining, cost=cost
        )
    now = datetime.now(timezone.utc)
    refill_rate = float(limit) / float(window_seconds)
    with runtime._local_rate_limit_lock:
        if len(runtime._local_rate_limits) >= LOCAL_RATE_LIMIT_PRUNE_THRESHOLD:
            _prune_full_buckets(runtime._local_rate_limits, now)
        tokens, last_ts, _ = runtime._local_rate_limits.get(key, (float(limit), now, now))
        elapsed = max(0.0, (now - last_ts).total_seconds())
        tokens = min(float(limit), tokens + elapsed * refill_rate)
        allowed = tokens >= cost
        if allowed:
            tokens -= cost
        full_at = now + timedelta(seconds=(float(limit) - tokens) / refill_rate)
        runtime._local_rate_limits[key] = (tokens, now, full_at)
        reset_seconds = int((cost - tokens) / refill_rate) if not allowed else 0
        remaining = int(tokens)
    if return_remaining:
        return (allowed, remaining, reset_seconds)
    return allowed
