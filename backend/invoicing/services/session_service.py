# Overview: Service-layer operations for session tokens; issue, validate, revoke and clean up.

"""
Session Token Management Service

WHY: Secure session management with automatic timeout and revocation.
Tokens are cryptographically secure, hashed in database, and time-limited.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_ABSOLUTE_TIMEOUT_HOURS, default 7 days)
- Idle timeout (SESSION_IDLE_TIMEOUT_HOURS, default 24 hours)
- Revocable on logout, password change or account deactivation
- Tracks client IP and user agent
"""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFoundError
from ..extensions import db
from ..models import SessionToken, User
from invoicing.time_utils import utcnow


@dataclass
class SessionContext:
    """Result of validate_session: the authenticated user and the session row."""
    user: User
    session: SessionToken


def _absolute_timeout() -> timedelta:
    return timedelta(hours=current_app.config["SESSION_ABSOLUTE_TIMEOUT_HOURS"])


def _idle_timeout() -> timedelta:
    return timedelta(hours=current_app.config["SESSION_IDLE_TIMEOUT_HOURS"])


def generate_token() -> str:
    """64 hex characters from the OS CSPRNG. Only the client ever sees this value."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Digest stored in session_tokens.token_hash.

    WHY SHA-256 and not bcrypt: the token already carries 256 bits of entropy,
    so a slow KDF adds latency to every request without adding safety.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Open a session for user_id.

    Returns (session_row, plaintext_token). The row holds only the digest,
    so a leaked database cannot be replayed against the API.
    """
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found")

    token = generate_token()
    issued = utcnow()
    row = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=issued,
        last_used_at=issued,
        expires_at=issued + _absolute_timeout(),
        user_agent=user_agent[:512] if user_agent else None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(row)
    db.session.commit()
    return row, token


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter(SessionToken.token_hash == hash_token(token), SessionToken.is_revoked.is_(False))
        .first()
    )


def _revoke(row: SessionToken, reason: str) -> None:
    row.is_revoked = True
    row.revoked_at = utcnow()
    row.revoked_reason = reason


def validate_session(token: str) -> SessionContext | None:
    """
    Resolve a bearer token to its user.

    WHY: every protected route funnels through here, so idle expiry and
    deactivated accounts are enforced in exactly one place. Idle and
    deactivated sessions are revoked on the spot; hard-expired ones are
    simply refused. A successful check slides last_used_at forward.
    """
    row = _live_session(token)
    if row is None:
        return None

    now = utcnow()
    if now > row.expires_at:
        return None

    reason = None
    if now - row.last_used_at > _idle_timeout():
        reason = "Idle timeout"
    elif row.user is None or not row.user.is_active:
        reason = "User account deactivated"

    if reason:
        _revoke(row, reason)
        db.session.commit()
        return None

    row.last_used_at = now
    db.session.commit()
    return SessionContext(user=row.user, session=row)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke one session token. Returns False if no live session matches."""
    row = _live_session(token)
    if row is None:
        return False
    _revoke(row, reason)
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions", *, commit: bool = True) -> int:
    """
    Revoke every live session of user_id and return how many were hit.

    commit=False leaves the flush to the caller's transaction (password
    change, deactivation).
    """
    rows = (
        db.session.query(SessionToken)
        .filter(SessionToken.user_id == user_id, SessionToken.is_revoked.is_(False))
        .all()
    )
    for row in rows:
        _revoke(row, reason)
    if commit:
        db.session.commit()
    return len(rows)


def cleanup_expired_sessions(older_than_days: int = 30) -> int:
    """Hard-delete dead sessions (expired or revoked) created before the cutoff."""
    now = utcnow()
    dead = or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True))
    deleted = (
        db.session.query(SessionToken)
        .filter(dead, SessionToken.created_at < now - timedelta(days=older_than_days))
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
