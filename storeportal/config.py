"""Configuration management for the store portal service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import resolve_database_path

DEFAULT_SESSION_COOKIE = "hiremote-session"
DEFAULT_SESSION_TTL = timedelta(hours=12)
DEFAULT_RESET_TOKEN_TTL = timedelta(hours=1)
DEFAULT_RESET_CODE_TTL = timedelta(minutes=60)


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the portal API."""

    session_secret: str
    database_path: Path
    session_cookie: str = DEFAULT_SESSION_COOKIE
    session_ttl: timedelta = DEFAULT_SESSION_TTL
    reset_token_ttl: timedelta = DEFAULT_RESET_TOKEN_TTL
    reset_code_ttl: timedelta = DEFAULT_RESET_CODE_TTL
    secure_cookies: bool = False

    @property
    def cookie_max_age(self) -> int:
        return int(self.session_ttl.total_seconds())

    @staticmethod
    def from_dict(data: Mapping[str, object], *, require_secret: bool = True) -> "Settings":
        """Create :class:`Settings` from raw dictionary data.

        Offline tooling that never signs cookies passes ``require_secret=False``
        and gets an empty ``session_secret`` when none is configured.
        """

        secret = data.get("session_secret") or ""
        if not secret and require_secret:
            raise RuntimeError("STOREPORTAL_SESSION_SECRET must be configured to serve the portal API")

        raw_db = data.get("database_path")
        database_path = resolve_database_path(str(raw_db) if raw_db else None)

        def _minutes(key: str, default: timedelta) -> timedelta:
            value = data.get(key)
            if value is None or value == "":
                return default
            minutes = int(str(value))
            if minutes <= 0:
                raise ValueError(f"{key} must be a positive number of minutes")
            return timedelta(minutes=minutes)

        secure = data.get("secure_cookies")
        if isinstance(secure, bool):
            secure_cookies = secure
        else:
            secure_cookies = _env_flag(str(secure) if secure is not None else None, False)

        return Settings(
            session_secret=str(secret),
            database_path=database_path,
            session_cookie=str(data.get("session_cookie") or DEFAULT_SESSION_COOKIE),
            session_ttl=_minutes("session_ttl_minutes", DEFAULT_SESSION_TTL),
            reset_token_ttl=_minutes("reset_token_ttl_minutes", DEFAULT_RESET_TOKEN_TTL),
            reset_code_ttl=_minutes("reset_code_ttl_minutes", DEFAULT_RESET_CODE_TTL),
            secure_cookies=secure_cookies,
        )


_ENV_KEYS = {
    "session_secret": "STOREPORTAL_SESSION_SECRET",
    "database_path": "STOREPORTAL_DB_PATH",
    "session_cookie": "STOREPORTAL_SESSION_COOKIE",
    "session_ttl_minutes": "STOREPORTAL_SESSION_TTL_MINUTES",
    "reset_token_ttl_minutes": "STOREPORTAL_RESET_TOKEN_TTL_MINUTES",
    "reset_code_ttl_minutes": "STOREPORTAL_RESET_CODE_TTL_MINUTES",
    "secure_cookies": "STOREPORTAL_SESSION_SECURE",
}


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load raw settings from a YAML file.

    A relative ``database_path`` is resolved against the file's directory.
    """
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping of settings")

    raw_db = raw.get("database_path")
    if raw_db:
        expanded = Path(str(raw_db)).expanduser()
        if not expanded.is_absolute():
            raw["database_path"] = str(config_path.parent / expanded)
    return raw


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    require_secret: bool = True,
) -> Settings:
    """Build settings from the environment, layered over an optional YAML file."""

    env = os.environ if environ is None else environ
    data: Dict[str, object] = {}

    config_value = env.get("STOREPORTAL_CONFIG")
    if config_value:
        config_path = Path(config_value).expanduser().resolve(strict=False)
        data.update(load_config_file(config_path))

    for key, env_name in _ENV_KEYS.items():
        value = env.get(env_name)
        if value is not None and value.strip():
            data[key] = value.strip()

    return Settings.from_dict(data, require_secret=require_secret)


__all__ = ["Settings", "load_config_file", "load_settings"]
