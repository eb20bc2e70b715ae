"""Configuration management for the Enervisio dashboard."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

import yaml


@dataclass(frozen=True)
class BracketIncrements:
    """Offsets used to derive the second and third consumption bracket rates."""

    second: float = 0.56
    third: float = 0.62


@dataclass(frozen=True)
class PerformanceMetrics:
    """Operational figures shown on the system performance report."""

    uptime: float = 99.8
    response_time_ms: float = 250
    error_rate: float = 0.5
    user_satisfaction: float = 4.7


@dataclass(frozen=True)
class SystemStatus:
    status: str = "operational"
    uptime: str = "99.98%"
    last_maintenance: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    """Runtime settings loaded from YAML with sensible defaults."""

    company_name: str = "Electroline Corporation"
    product_name: str = "Enervisio"
    brackets: BracketIncrements = field(default_factory=BracketIncrements)
    session_timeout: timedelta = timedelta(minutes=30)
    max_login_attempts: int = 5
    lockout_period: timedelta = timedelta(minutes=15)
    reset_token_ttl: timedelta = timedelta(hours=1)
    default_timezone: str = "Asia/Manila"
    password_history_size: int = 3
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    system_status: SystemStatus = field(default_factory=SystemStatus)
    consumption_profile: Mapping[str, float] = field(
        default_factory=lambda: {"residential": 250.0, "commercial": 1000.0, "industrial": 4500.0}
    )

    @property
    def branding(self) -> str:
        return f"{self.company_name} - {self.product_name}"

    @staticmethod
    def from_dict(data: Mapping[str, object]) -> "Settings":
        """Create :class:`Settings` from raw dictionary data."""

        defaults = Settings()
        branding = _section(data, "branding")
        rates = _section(data, "rates")
        security = _section(data, "security")
        reports = _section(data, "reports")
        status_raw = _section(data, "system_status")

        brackets = BracketIncrements(
            second=float(rates.get("second_bracket_increment", defaults.brackets.second)),
            third=float(rates.get("third_bracket_increment", defaults.brackets.third)),
        )

        perf_raw = _section(reports, "performance")
        performance = PerformanceMetrics(
            uptime=float(perf_raw.get("uptime", defaults.performance.uptime)),
            response_time_ms=float(perf_raw.get("response_time_ms", defaults.performance.response_time_ms)),
            error_rate=float(perf_raw.get("error_rate", defaults.performance.error_rate)),
            user_satisfaction=float(perf_raw.get("user_satisfaction", defaults.performance.user_satisfaction)),
        )

        profile_raw = _section(rates, "consumption_profile")
        profile: Dict[str, float] = dict(defaults.consumption_profile)
        for key, value in profile_raw.items():
            profile[str(key)] = float(value)  # type: ignore[arg-type]

        maintenance = status_raw.get("last_maintenance")

        return Settings(
            company_name=str(branding.get("company", defaults.company_name)),
            product_name=str(branding.get("product", defaults.product_name)),
            brackets=brackets,
            session_timeout=_minutes(security, "session_timeout_minutes", defaults.session_timeout),
            max_login_attempts=int(security.get("max_login_attempts", defaults.max_login_attempts)),  # type: ignore[arg-type]
            lockout_period=_minutes(security, "lockout_minutes", defaults.lockout_period),
            reset_token_ttl=_minutes(security, "reset_token_minutes", defaults.reset_token_ttl),
            default_timezone=str(data.get("timezone", defaults.default_timezone)),
            password_history_size=int(
                security.get("password_history_size", defaults.password_history_size)  # type: ignore[arg-type]
            ),
            performance=performance,
            system_status=SystemStatus(
                status=str(status_raw.get("status", defaults.system_status.status)),
                uptime=str(status_raw.get("uptime", defaults.system_status.uptime)),
                last_maintenance=str(maintenance) if maintenance is not None else None,
            ),
            consumption_profile=profile,
        )


def _section(data: Mapping[str, object], key: str) -> Mapping[str, object]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Configuration section '{key}' must be a mapping")
    return value


def _minutes(section: Mapping[str, object], key: str, default: timedelta) -> timedelta:
    value = section.get(key)
    if value is None:
        return default
    return timedelta(minutes=int(value))  # type: ignore[arg-type]


def load_settings(config_path: Optional[Path]) -> Settings:
    """Load settings from a YAML file, falling back to defaults when absent."""

    if config_path is None or not config_path.exists():
        return Settings()
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, Mapping):
        raise ValueError("Settings file must contain a mapping at the top level")
    return Settings.from_dict(raw)


def resolve_settings_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the settings file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "settings.yaml").resolve(strict=False)


def env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def trusted_proxy_hosts() -> Union[List[str], str]:
    """Hosts whose forwarded headers are honoured, from ``ENERVISIO_TRUSTED_PROXIES``."""

    raw = os.getenv("ENERVISIO_TRUSTED_PROXIES")
    if not raw:
        return "*"
    hosts = [item.strip() for item in raw.split(",") if item.strip()]
    return hosts or "*"


__all__ = [
    "BracketIncrements",
    "PerformanceMetrics",
    "Settings",
    "SystemStatus",
    "env_flag",
    "trusted_proxy_hosts",
    "load_settings",
    "resolve_settings_path",
]
