# streamtracker/auth.py
"""
Shared-password gate on top of Flask's signed session cookie.

A session is valid when it carries ``authenticated`` and a ``login_time``
(epoch milliseconds) no older than the configured number of hours.
There is no per-user identity.
"""
import functools
import hmac
import logging
import time
from datetime import timedelta
from typing import Optional

from flask import current_app, redirect, session, url_for

from streamtracker.config import AppConfig
from streamtracker.service import ValidationError

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "streaming_tracker_session"

def _now_ms() -> int:
    return int(time.time() * 1000)

def configure_sessions(app, cfg: AppConfig) -> None:
    app.secret_key = cfg.secret_key
    app.config.update(
        SESSION_COOKIE_NAME=SESSION_COOKIE_NAME,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        SESSION_COOKIE_SECURE=cfg.secure_cookies,
        PERMANENT_SESSION_LIFETIME=timedelta(hours=cfg.session_hours),
        AUTH_PASSWORD=cfg.auth_password,
    )
    if not cfg.auth_password:
        logger.warning("AUTH_PASSWORD is not set; logins will fail")

def verify_password(password: str) -> bool:
    expected = current_app.config.get("AUTH_PASSWORD")
    if not expected:
        logger.error("login attempted but AUTH_PASSWORD is not set")
        raise ValidationError("Login is not configured")
    return hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))

def is_authenticated(now_ms: Optional[int] = None) -> bool:
    if not session.get("authenticated"):
        return False
    login_time = session.get("login_time")
    if not login_time:
        return False
    now_ms = _now_ms() if now_ms is None else now_ms
    max_age = current_app.config["PERMANENT_SESSION_LIFETIME"]
    return now_ms - login_time <= max_age.total_seconds() * 1000

def create_session() -> None:
    session.clear()
    session.permanent = True
    session["authenticated"] = True
    session["login_time"] = _now_ms()
    logger.info("Session created")

def destroy_session() -> None:
    session.clear()
    logger.info("Session destroyed")

def require_auth(view):
    """Redirect to the login page unless the session is valid."""
    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if not is_authenticated():
            logger.debug("unauthenticated request to %s", view.__name__)
            return redirect(url_for("main.login"))
        return view(*args, **kwargs)
    return wrapped
