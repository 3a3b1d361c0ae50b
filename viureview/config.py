from __future__ import annotations

import os
import secrets
import tempfile
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from viureview.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the review platform API."""

    database_url: str = env_field(
        "postgresql://localhost:5432/viureview", "DATABASE_URL"
    )
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    shared_fs_root: str = env_field("/srv/viureview", "SHARED_FS_ROOT")
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Enable deterministic test behaviors and the in-process rate limiter.",
    )
    app_name: str = env_field(
        "VIU Platform", "APP_NAME", description="Issuer shown in authenticator apps"
    )
    build_sha: str = env_field("dev", "BUILD_SHA")

    # Sessions
    session_ttl_minutes: int = env_field(
        60 * 24 * 7,
        "SESSION_TTL_MINUTES",
        description="Lifetime of an issued session credential",
    )

    # Two-factor
    mfa_secret_key: str | None = env_field(
        None,
        "MFA_SECRET_KEY",
        description="Key material for encrypting TOTP secrets at rest",
    )
    backup_code_count: int = env_field(10, "BACKUP_CODE_COUNT")

    # Lockout policy
    failed_login_threshold: int = env_field(5, "FAILED_LOGIN_THRESHOLD")
    failed_login_window_minutes: int = env_field(15, "FAILED_LOGIN_WINDOW_MINUTES")
    lockout_duration_minutes: int = env_field(30, "LOCKOUT_DURATION_MINUTES")
    failed_2fa_threshold: int = env_field(3, "FAILED_2FA_THRESHOLD")
    failed_2fa_window_minutes: int = env_field(5, "FAILED_2FA_WINDOW_MINUTES")

    # Rate limits
    login_rate_limit_per_minute: int = env_field(20, "LOGIN_RATE_LIMIT_PER_MINUTE")
    mfa_rate_limit_per_minute: int = env_field(10, "MFA_RATE_LIMIT_PER_MINUTE")

    # HTTP
    cors_allow_origins: list[str] = env_field(
        ["http://localhost:3000", "http://localhost:5173"], "ALLOWED_ORIGINS"
    )
    cors_allow_credentials: bool = env_field(False, "CORS_ALLOW_CREDENTIALS")
    enable_hsts: bool = env_field(False, "ENABLE_HSTS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator(
        "session_ttl_minutes",
        "backup_code_count",
        "failed_login_threshold",
        "failed_login_window_minutes",
        "lockout_duration_minutes",
        "failed_2fa_threshold",
        "failed_2fa_window_minutes",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    def resolve_mfa_key_material(self) -> str:
        """Return TOTP encryption key material, persisting a generated one if unset."""
        if self.mfa_secret_key:
            return self.mfa_secret_key

        fs_root = Path(self.shared_fs_root)
        secret_path = fs_root / ".mfa_secret"
        try:
            fs_root.mkdir(parents=True, exist_ok=True)
        except PermissionError:
            pass

        if secret_path.exists() and not secret_path.is_symlink():
            try:
                persisted = secret_path.read_text().strip()
                if persisted and len(persisted) >= 32:
                    return persisted
            except OSError as exc:
                logger.error("mfa_key_read_failed", error=str(exc), path=str(secret_path))

        generated = secrets.token_urlsafe(64)
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(fs_root), prefix=".mfa_secret_", suffix=".tmp"
            )
            try:
                os.write(fd, generated.encode())
                os.fchmod(fd, 0o600)
            finally:
                os.close(fd)
            os.rename(tmp_path, str(secret_path))
        except OSError as exc:
            logger.error("mfa_key_persist_failed", error=str(exc), path=str(secret_path))
            raise RuntimeError(
                "Unable to persist MFA key; set MFA_SECRET_KEY or make SHARED_FS_ROOT writable"
            ) from exc
        logger.warning("mfa_key_generated", path=str(secret_path))
        return generated


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
