# Overview: Service-layer operations for login throttling; counts failed logins and locks out brute force.

"""
Login Throttling Service

WHY: Limit password guessing. After too many failed logins the username is
locked for a while, and a single address that keeps failing is locked out
regardless of which usernames it tries.

SECURITY FEATURES:
- Failed attempts are LOGIN_FAILED entries in the activity log (entity_id
  holds the username that was tried, ip_address the caller)
- Username lockout after LOGIN_MAX_FAILED_ATTEMPTS failures within
  LOGIN_LOCKOUT_WINDOW_MINUTES
- Address lockout after LOGIN_MAX_FAILED_PER_IP failures in the same window
- Lockout lasts LOGIN_LOCKOUT_DURATION_MINUTES from the latest failure
- A successful login starts the username count over
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import ActivityLog, User
from . import activity_service
from .activity_service import RequestContext
from invoicing.time_utils import utcnow


FAILED_ACTION = "LOGIN_FAILED"
SUCCESS_ACTION = "LOGIN"
ENTITY_TYPE = "login"


def _setting(key: str) -> int:
    return int(current_app.config[key])


def max_attempts() -> int:
    return _setting("LOGIN_MAX_FAILED_ATTEMPTS")


def _window() -> timedelta:
    return timedelta(minutes=_setting("LOGIN_LOCKOUT_WINDOW_MINUTES"))


def _duration() -> timedelta:
    return timedelta(minutes=_setting("LOGIN_LOCKOUT_DURATION_MINUTES"))


def _identifier_key(identifier: str) -> str:
    return identifier.strip()[:64]


def _failures_for_identifier(identifier: str):
    query = db.session.query(ActivityLog).filter(
        ActivityLog.action == FAILED_ACTION,
        ActivityLog.entity_id == _identifier_key(identifier),
        ActivityLog.created_at >= utcnow() - _window(),
    )

    last_success = (
        db.session.query(func.max(ActivityLog.created_at))
        .join(User, User.id == ActivityLog.user_id)
        .filter(ActivityLog.action == SUCCESS_ACTION, User.username == identifier.strip())
        .scalar()
    )
    if last_success is not None:
        query = query.filter(ActivityLog.created_at > last_success)
    return query


def _failures_for_ip(ip_address: str | None):
    if not ip_address:
        return None
    return db.session.query(ActivityLog).filter(
        ActivityLog.action == FAILED_ACTION,
        ActivityLog.ip_address == ip_address,
        ActivityLog.created_at >= utcnow() - _window(),
    )


def get_recent_failed_attempts(identifier: str) -> int:
    """Failed logins for identifier inside the window (since its last success)."""
    return _failures_for_identifier(identifier).count()


def _seconds_left(query) -> int | None:
    latest = query.order_by(ActivityLog.created_at.desc()).first()
    if latest is None:
        return None
    remaining = (latest.created_at + _duration() - utcnow()).total_seconds()
    return int(remaining) if remaining > 0 else None


def is_locked(identifier: str, ip_address: str | None = None) -> tuple[bool, int | None]:
    """
    Returns (True, seconds_remaining) while identifier or ip_address is
    locked out, else (False, None).
    """
    by_identifier = _failures_for_identifier(identifier)
    if by_identifier.count() >= max_attempts():
        seconds = _seconds_left(by_identifier)
        if seconds:
            return True, seconds

    by_ip = _failures_for_ip(ip_address)
    if by_ip is not None and by_ip.count() >= _setting("LOGIN_MAX_FAILED_PER_IP"):
        seconds = _seconds_left(by_ip)
        if seconds:
            return True, seconds

    return False, None


def record_failed_attempt(
    identifier: str,
    context: RequestContext | None = None,
    reason: str = "Invalid credentials",
) -> int:
    """
    Log one failed login and return the username's recent failure count.

    Committed immediately; the login request itself has no transaction.
    """
    key = _identifier_key(identifier)
    user = db.session.query(User).filter(User.username == identifier.strip()).first()

    activity_service.record(
        user.id if user else None,
        FAILED_ACTION,
        ENTITY_TYPE,
        key,
        {"identifier": key, "reason": reason},
        context,
        commit=True,
    )
    return get_recent_failed_attempts(identifier)


def get_lockout_status(identifier: str) -> dict:
    locked, seconds = is_locked(identifier)
    return {
        "locked": locked,
        "failed_attempts": get_recent_failed_attempts(identifier),
        "max_attempts": max_attempts(),
        "seconds_until_unlock": seconds,
        "lockout_window_minutes": _setting("LOGIN_LOCKOUT_WINDOW_MINUTES"),
        "lockout_duration_minutes": _setting("LOGIN_LOCKOUT_DURATION_MINUTES"),
    }
