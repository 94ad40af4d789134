"""Tests for core/config.py Settings.

Covers:
- Defaults match the documented thresholds
- Env vars map onto fields (LOGIN_MAX_ATTEMPTS -> login_max_attempts)
- Non-positive limits are rejected at startup
- Settings -> RateLimitConfig conversion
- DEBUG and LOG_LEVEL -> effective log level
"""

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings

pytestmark = pytest.mark.usefixtures("clean_env")


def test_defaults():
    s = Settings(_env_file=None)
    assert s.login_window_ms == 10 * 60 * 1000
    assert s.login_max_attempts == 10
    assert s.login_lock_ms == 30 * 60 * 1000
    assert s.submit_max_per_ip == 20
    assert s.email_max_per_day == 3
    assert s.email_daily_window_ms == 24 * 60 * 60 * 1000
    assert s.cleanup_interval_ms == 5 * 60 * 1000
    assert s.disable_rate_limit is False


def test_env_vars_override_defaults(monkeypatch):
    monkeypatch.setenv("LOGIN_MAX_ATTEMPTS", "4")
    monkeypatch.setenv("EMAIL_MAX_PER_DAY", "1")
    monkeypatch.setenv("DISABLE_RATE_LIMIT", "true")
    s = get_settings()
    assert s.login_max_attempts == 4
    assert s.email_max_per_day == 1
    assert s.disable_rate_limit is True


def test_get_settings_is_cached():
    assert get_settings() is get_settings()


@pytest.mark.parametrize("name", ["LOGIN_MAX_ATTEMPTS", "SUBMIT_WINDOW_MS", "EMAIL_LOCK_MS", "CLEANUP_INTERVAL_MS"])
def test_non_positive_values_rejected(monkeypatch, name):
    monkeypatch.setenv(name, "0")
    with pytest.raises(ValidationError, match=name):
        Settings(_env_file=None)


def test_non_numeric_value_rejected(monkeypatch):
    monkeypatch.setenv("LOGIN_LOCK_MS", "thirty minutes")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_limiter_configs_follow_settings():
    s = Settings(
        _env_file=None,
        login_max_attempts=4,
        submit_max_per_ip=7,
        submit_lock_ms=1000,
        email_max_per_day=2,
        cleanup_interval_ms=250,
    )
    login = s.login_config()
    assert (login.name, login.max_attempts, login.cleanup_interval_ms) == ("login", 4, 250)
    submit_ip = s.submit_ip_config()
    assert (submit_ip.name, submit_ip.max_attempts, submit_ip.lockout_ms) == ("submit_ip", 7, 1000)
    submit_email = s.submit_email_config()
    assert (submit_email.name, submit_email.max_attempts) == ("submit_email", 2)
    assert submit_email.window_ms == s.email_daily_window_ms


def test_debug_forces_debug_log_level():
    assert Settings(_env_file=None, debug=True, log_level="WARNING").effective_log_level == "DEBUG"


def test_log_level_is_uppercased():
    assert Settings(_env_file=None, log_level="warning").effective_log_level == "WARNING"
    assert Settings(_env_file=None).effective_log_level == "INFO"


def test_debug_env_var_drives_log_level(monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    assert get_settings().effective_log_level == "DEBUG"
