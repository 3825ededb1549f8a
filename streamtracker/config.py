# streamtracker/config.py
import json
import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 15

@dataclass(frozen=True)
class AppConfig:
    """Settings resolved once at startup and handed to create_app."""
    database: str = "data/tracker.db"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 5000
    logging_level: str = "INFO"
    page_size: int = DEFAULT_PAGE_SIZE
    secret_key: str = "dev-key"
    auth_password: Optional[str] = None
    session_hours: int = 4
    secure_cookies: bool = False

    def public(self) -> dict:
        """Settings safe to log."""
        return {f.name: getattr(self, f.name) for f in fields(self)
                if f.name not in ("secret_key", "auth_password", "database")}

# environment variable -> field
ENV_KEYS = {
    "DATABASE_PATH": "database",
    "PAGE_SIZE": "page_size",
    "SECRET_KEY": "secret_key",
    "AUTH_PASSWORD": "auth_password",
    "LOG_LEVEL": "logging_level",
    "DEBUG": "debug",
    "PORT": "port",
    "SECURE_COOKIES": "secure_cookies",
}

def _int(raw, default: int, minimum: int = 1) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value >= minimum else default

def _bool(raw, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
    return default

def _read_file(path: str) -> dict:
    if not os.path.exists(path):
        logger.info("%s not found, using defaults", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to read %s: %s, using defaults", path, e)
        return {}
    if not isinstance(cfg, dict):
        logger.warning("%s must contain a JSON object, using defaults", path)
        return {}
    return cfg

def load_config(path: str = "config.json", environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Build the config: defaults, then config.json, then environment variables.
    Unknown keys in the file are ignored.
    """
    environ = os.environ if environ is None else environ
    known = {f.name for f in fields(AppConfig)}
    merged = {k: v for k, v in _read_file(path).items() if k in known}
    for env_key, field_name in ENV_KEYS.items():
        if environ.get(env_key):
            merged[field_name] = environ[env_key]
    defaults = AppConfig()
    for name in ("page_size", "port", "session_hours"):
        if name in merged:
            merged[name] = _int(merged[name], getattr(defaults, name))
    for name in ("debug", "secure_cookies"):
        if name in merged:
            merged[name] = _bool(merged[name], getattr(defaults, name))
    return replace(defaults, **merged)
