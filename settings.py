from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple


_ENDPOINT_ENV = "WARP10_ENDPOINT"
_TOKEN_ENV = "WARP10_TOKEN"
_ALLOWED_USERS_ENV = "ALLOWED_USERS"
_KEYS_SOURCE_ENV = "TORQUE_KEYS_SOURCE"
_FAILURE_POLICY_ENV = "FORWARD_FAILURE_POLICY"
_FORWARD_TIMEOUT_ENV = "FORWARD_TIMEOUT"
_TIMESTAMP_SCALE_ENV = "TIMESTAMP_SCALE"
_LOG_LEVEL_ENV = "LOG_LEVEL"

DEFAULT_KEYS_SOURCE = "https://raw.githubusercontent.com/PierreZ/Torque2Warp10/master/keys.csv"
FAILURE_POLICIES = ("log", "fatal")


class ConfigurationError(RuntimeError):
    """Raised when the relay cannot be configured at startup."""


@dataclass(frozen=True)
class Settings:
    warp10_endpoint: str
    warp10_token: str
    allowed_users: Tuple[str, ...]
    keys_source: str
    failure_policy: str
    forward_timeout: Optional[float]
    timestamp_scale: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_required_env(name: str) -> str:
    candidate = (os.getenv(name) or "").strip()
    if not candidate:
        raise ConfigurationError(f"Environment variable {name} must be set.")
    return candidate


def _read_allowed_users() -> Tuple[str, ...]:
    raw = os.getenv(_ALLOWED_USERS_ENV) or ""
    users = tuple(item.strip() for item in raw.split(",") if item.strip())
    if not users:
        raise ConfigurationError(
            f"Environment variable {_ALLOWED_USERS_ENV} must list at least one user."
        )
    return users


def _read_failure_policy(default: str) -> str:
    candidate = _read_str_env(_FAILURE_POLICY_ENV, default).lower()
    if candidate not in FAILURE_POLICIES:
        raise ConfigurationError(
            f"{_FAILURE_POLICY_ENV} must be one of {', '.join(FAILURE_POLICIES)}; got {candidate!r}."
        )
    return candidate


def _read_timeout(default: Optional[float]) -> Optional[float]:
    value = os.getenv(_FORWARD_TIMEOUT_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_timestamp_scale(default: int) -> int:
    value = os.getenv(_TIMESTAMP_SCALE_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def read_keys_source() -> str:
    return _read_str_env(_KEYS_SOURCE_ENV, DEFAULT_KEYS_SOURCE)


def read_log_level(default: str = "INFO") -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    """Read the relay configuration, failing fast on missing required values."""
    return Settings(
        warp10_endpoint=_read_required_env(_ENDPOINT_ENV).rstrip("/"),
        warp10_token=_read_required_env(_TOKEN_ENV),
        allowed_users=_read_allowed_users(),
        keys_source=read_keys_source(),
        failure_policy=_read_failure_policy("log"),
        forward_timeout=_read_timeout(None),
        timestamp_scale=_read_timestamp_scale(1000),
        log_level=read_log_level("INFO"),
    )
