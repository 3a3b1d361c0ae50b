import os
import stat

import pytest
from pydantic import ValidationError

from viureview.config import Settings, get_settings, reset_settings_cache


def test_from_env_reads_named_variables(monkeypatch):
    monkeypatch.setenv("FAILED_LOGIN_THRESHOLD", "7")
    monkeypatch.setenv("APP_NAME", "Review Staging")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example")

    settings = Settings.from_env()

    assert settings.failed_login_threshold == 7
    assert settings.app_name == "Review Staging"
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]


def test_defaults():
    settings = Settings()

    assert settings.session_ttl_minutes == 60 * 24 * 7
    assert settings.failed_login_threshold == 5
    assert settings.failed_login_window_minutes == 15
    assert settings.lockout_duration_minutes == 30
    assert settings.failed_2fa_threshold == 3
    assert settings.failed_2fa_window_minutes == 5
    assert settings.backup_code_count == 10


def test_blank_redis_url_means_disabled():
    assert Settings(redis_url="  ").redis_url is None


@pytest.mark.parametrize("field", ["failed_login_threshold", "session_ttl_minutes"])
def test_non_positive_thresholds_rejected(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_mfa_key_generated_once_and_private(tmp_path):
    settings = Settings(shared_fs_root=str(tmp_path), mfa_secret_key=None)

    first = settings.resolve_mfa_key_material()
    second = settings.resolve_mfa_key_material()

    assert first == second
    key_path = tmp_path / ".mfa_secret"
    assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600


def test_configured_mfa_key_wins(tmp_path):
    settings = Settings(shared_fs_root=str(tmp_path), mfa_secret_key="configured-key")

    assert settings.resolve_mfa_key_material() == "configured-key"
    assert not (tmp_path / ".mfa_secret").exists()


def test_settings_cache_reset(monkeypatch):
    reset_settings_cache()
    monkeypatch.setenv("APP_NAME", "First")
    assert get_settings().app_name == "First"

    monkeypatch.setenv("APP_NAME", "Second")
    assert get_settings().app_name == "First"

    reset_settings_cache()
    assert get_settings().app_name == "Second"
    reset_settings_cache()
