from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from enervisio.config import Settings, env_flag, load_settings, resolve_settings_path, trusted_proxy_hosts


def test_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "absent.yaml")
    assert settings == Settings()
    assert settings.branding == "Electroline Corporation - Enervisio"
    assert settings.session_timeout == timedelta(minutes=30)


def test_yaml_sections_override_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text(
        """
timezone: Asia/Singapore
rates:
  second_bracket_increment: 0.6
  consumption_profile:
    residential: 300
security:
  max_login_attempts: 3
  lockout_minutes: 5
  session_timeout_minutes: 10
reports:
  performance:
    uptime: 98.5
system_status:
  status: maintenance
""",
        encoding="utf-8",
    )
    settings = load_settings(path)

    assert settings.default_timezone == "Asia/Singapore"
    assert settings.brackets.second == 0.6
    assert settings.brackets.third == 0.62
    assert settings.consumption_profile["residential"] == 300.0
    assert settings.consumption_profile["industrial"] == 4500.0
    assert settings.max_login_attempts == 3
    assert settings.lockout_period == timedelta(minutes=5)
    assert settings.session_timeout == timedelta(minutes=10)
    assert settings.performance.uptime == 98.5
    assert settings.system_status.status == "maintenance"


def test_invalid_sections_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("security: 5\n", encoding="utf-8")
    with pytest.raises(ValueError, match="security"):
        load_settings(path)


def test_env_helpers(monkeypatch, tmp_path: Path) -> None:
    assert env_flag("yes") is True
    assert env_flag(None, True) is True
    assert env_flag("off", True) is False
    assert resolve_settings_path(str(tmp_path / "x.yaml")) == (tmp_path / "x.yaml").resolve()

    monkeypatch.delenv("ENERVISIO_TRUSTED_PROXIES", raising=False)
    assert trusted_proxy_hosts() == "*"
    monkeypatch.setenv("ENERVISIO_TRUSTED_PROXIES", "10.0.0.1, 10.0.0.2")
    assert trusted_proxy_hosts() == ["10.0.0.1", "10.0.0.2"]


def test_partial_security_section_keeps_other_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.yaml"
    path.write_text("security:\n  lockout_minutes: 5\n", encoding="utf-8")
    settings = load_settings(path)
    defaults = Settings()

    assert settings.lockout_period == timedelta(minutes=5)
    assert settings.session_timeout == defaults.session_timeout
    assert settings.reset_token_ttl == defaults.reset_token_ttl
    assert settings.max_login_attempts == defaults.max_login_attempts
