"""
Centralized configuration with environment variable overrides.

The scheduling policy (fallback window and default service duration),
storage and logging settings are all configurable here. Nothing in the
calculator or ledger hardcodes opening hours.
"""

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Optional

from dotenv import load_dotenv

from salon_scheduler.logging_context import RequestIdFilter
from salon_scheduler.utils import parse_wall_clock

load_dotenv()

logger = logging.getLogger(__name__)

POLICY_PRESETS = ("salon_hours", "service_days")


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_optional_float(env_var: str) -> Optional[float]:
    """Parse an optional float; unset or empty means None."""
    raw = os.getenv(env_var, "")
    if not raw.strip():
        return None
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class SchedulingPolicy:
    """Fallback window and default duration used when configuration is missing.

    Two call paths in the booking flow disagree on these values, so both
    are kept as named presets instead of being unified.
    """

    name: str = "salon_hours"
    fallback_open: str = "09:00"
    fallback_close: str = "20:00"
    default_duration_minutes: int = 60

    def __post_init__(self) -> None:
        if self.default_duration_minutes < 1:
            raise ValueError(
                f"default_duration_minutes must be >= 1, got {self.default_duration_minutes}"
            )

    @classmethod
    def salon_hours(cls) -> "SchedulingPolicy":
        """General availability: 09:00-20:00, one hour when no duration is known."""
        return cls(
            name="salon_hours",
            fallback_open="09:00",
            fallback_close="20:00",
            default_duration_minutes=60,
        )

    @classmethod
    def service_days(cls) -> "SchedulingPolicy":
        """Service-specific booking: 07:00-21:00 on a half-hour grid."""
        return cls(
            name="service_days",
            fallback_open="07:00",
            fallback_close="21:00",
            default_duration_minutes=30,
        )

    @classmethod
    def from_name(cls, name: str) -> "SchedulingPolicy":
        if name == "salon_hours":
            return cls.salon_hours()
        if name == "service_days":
            return cls.service_days()
        raise ValueError(
            f"SCHEDULING_POLICY must be one of {list(POLICY_PRESETS)}, got {name!r}"
        )


def _policy_from_env() -> SchedulingPolicy:
    policy = SchedulingPolicy.from_name(os.getenv("SCHEDULING_POLICY", "salon_hours"))
    overrides: dict = {}
    if os.getenv("FALLBACK_OPEN"):
        overrides["fallback_open"] = os.environ["FALLBACK_OPEN"]
    if os.getenv("FALLBACK_CLOSE"):
        overrides["fallback_close"] = os.environ["FALLBACK_CLOSE"]
    if os.getenv("DEFAULT_DURATION_MINUTES"):
        overrides["default_duration_minutes"] = _safe_int("DEFAULT_DURATION_MINUTES", "0")
    return replace(policy, **overrides) if overrides else policy


@dataclass(frozen=True)
class StorageConfig:
    """Database connection and per-call deadline settings."""

    database_url: str = os.getenv(
        "DATABASE_URL", "sqlite+aiosqlite:///./salon_scheduler.db"
    )
    echo: bool = _safe_bool("DATABASE_ECHO", "false")
    timeout_seconds: Optional[float] = _safe_optional_float("STORE_TIMEOUT_SECONDS")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    policy: SchedulingPolicy = field(default_factory=_policy_from_env)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    policy = config.policy
    try:
        open_minutes = parse_wall_clock(policy.fallback_open)
    except ValueError:
        raise ValueError(
            f"FALLBACK_OPEN must be HH:MM, got {policy.fallback_open!r}"
        ) from None
    try:
        close_minutes = parse_wall_clock(policy.fallback_close)
    except ValueError:
        raise ValueError(
            f"FALLBACK_CLOSE must be HH:MM, got {policy.fallback_close!r}"
        ) from None
    if close_minutes <= open_minutes:
        raise ValueError(
            "FALLBACK_CLOSE must be after FALLBACK_OPEN, "
            f"got {policy.fallback_open}-{policy.fallback_close}"
        )
    timeout = config.storage.timeout_seconds
    if timeout is not None and timeout <= 0:
        raise ValueError(f"STORE_TIMEOUT_SECONDS must be > 0, got {timeout}")
    if not config.storage.database_url:
        raise ValueError("DATABASE_URL must not be empty")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RequestIdFilter())
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s [%(request_id)s]: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
    )
    logger.info("Configuration loaded with '%s' scheduling policy", config.policy.name)
    return config


# Singleton instance
settings = load_config()
