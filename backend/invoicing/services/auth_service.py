# Overview: Service-layer operations for users; credentials, profiles, permission flags and account lifecycle.

"""
Authentication and User Service

WHY: Every action must be attributable. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt; cost factor from BCRYPT_ROUNDS
- Minimum 6 characters required
- Session tokens managed separately (see session_service.py)
- An admin can neither delete nor deactivate their own account
- Account administration is admin-only. A null actor (CLI) is trusted.
"""

import re

import bcrypt
from flask import current_app
from sqlalchemy import or_

from ..errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import User
from ..permissions import (
    ADMIN_PERMISSIONS,
    DEFAULT_USER_PERMISSIONS,
    apply_permissions,
    parse_permission_map,
    permission_map,
)
from . import activity_service, session_service
from .activity_service import RequestContext
from .concurrency import transaction
from invoicing.time_utils import utcnow


MIN_PASSWORD_LENGTH = 6
ROLES = ("admin", "user")
ENTITY_TYPE = "users"

# Letters (including Cyrillic), digits and underscore
USERNAME_RE = re.compile(r"\w{3,50}")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet the length requirement."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


def validate_password_strength(password) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def validate_username(username) -> str:
    if not isinstance(username, str) or not USERNAME_RE.fullmatch(username.strip()):
        raise ValidationError(
            "Username must be 3-50 characters of letters, numbers and underscores", field="username"
        )
    return username.strip()


def _clean_email(email):
    if email is None:
        return None
    if not isinstance(email, str):
        raise ValidationError("Must be a valid email address", field="email")
    email = email.strip().lower()
    if not email:
        return None
    if "@" not in email or len(email) > 255:
        raise ValidationError("Must be a valid email address", field="email")
    return email


def _clean_full_name(full_name):
    if full_name is None:
        return None
    if not isinstance(full_name, str) or len(full_name.strip()) > 255:
        raise ValidationError("Full name must be less than 255 characters", field="full_name")
    return full_name.strip() or None


def hash_password(password: str) -> str:
    """Hash password with bcrypt after checking its length."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config["BCRYPT_ROUNDS"])
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt check; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def _ensure_admin_actor(actor_id: int | None) -> None:
    if actor_id is None:
        return
    actor = db.session.get(User, actor_id)
    if actor is None or not actor.is_admin:
        raise ForbiddenError("Access denied. Admin role required.")


def _ensure_unique(username: str, email: str | None, exclude_id: int | None = None) -> None:
    conditions = [User.username == username] if username else []
    if email:
        conditions.append(User.email == email)
    if not conditions:
        return
    query = db.session.query(User.id).filter(or_(*conditions))
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Username or email already exists")


def build_user(
    username,
    password,
    email=None,
    full_name=None,
    role: str = "user",
    permissions: dict | None = None,
) -> User:
    """Validate and construct (but do not add) a user."""
    username = validate_username(username)
    email = _clean_email(email)
    if role not in ROLES:
        raise ValidationError("Role must be admin or user", field="role")

    flags = dict(ADMIN_PERMISSIONS if role == "admin" else DEFAULT_USER_PERMISSIONS)
    if permissions:
        flags.update(parse_permission_map(permissions))

    _ensure_unique(username, email)

    user = User(
        username=username,
        email=email,
        full_name=_clean_full_name(full_name),
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    apply_permissions(user, flags)
    return user


def create_user(
    payload: dict,
    *,
    actor_id: int | None,
    context: RequestContext | None = None,
) -> User:
    """
    Admin-side user creation with role and permission flags.

    Raises ValidationError / PasswordValidationError on bad input and
    ConflictError when the username or email is taken.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if not payload.get("username") or not payload.get("password"):
        raise ValidationError("Username and password are required")

    with transaction():
        _ensure_admin_actor(actor_id)
        user = build_user(
            payload.get("username"),
            payload.get("password"),
            email=payload.get("email"),
            full_name=payload.get("full_name"),
            role=payload.get("role") or "user",
            permissions=payload.get("permissions"),
        )
        db.session.add(user)
        db.session.flush()

        activity_service.record(
            actor_id,
            "CREATE_USER",
            ENTITY_TYPE,
            user.id,
            {"created_username": user.username, "role": user.role},
            context,
        )

    return user


def register(payload: dict, *, context: RequestContext | None = None) -> User:
    """Self-registration: always a regular user with the default flags."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    with transaction():
        user = build_user(
            payload.get("username"),
            payload.get("password"),
            email=payload.get("email"),
            full_name=payload.get("full_name"),
        )
        db.session.add(user)
        db.session.flush()

        activity_service.record(user.id, "REGISTER", ENTITY_TYPE, user.id, {"username": user.username}, context)

    return user


def authenticate(username, password) -> User:
    """
    Check credentials and stamp last_login_at.

    Raises AuthenticationError for unknown users, wrong passwords and
    disabled accounts. The caller commits (session creation does).
    """
    if not username or not password:
        raise ValidationError("Username and password are required")

    user = db.session.query(User).filter(User.username == username).first()
    if user is None:
        raise AuthenticationError("Invalid credentials")
    if not user.is_active:
        raise AuthenticationError("Account is disabled")
    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    user.last_login_at = utcnow()
    return user


def update_profile(user: User, payload: dict, *, context: RequestContext | None = None) -> User:
    """Update email and/or full_name of the caller."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    changes = {}
    if payload.get("email") is not None:
        changes["email"] = _clean_email(payload["email"])
    if payload.get("full_name") is not None:
        changes["full_name"] = _clean_full_name(payload["full_name"])
    if not changes:
        raise ValidationError("No valid fields to update")

    with transaction():
        if changes.get("email"):
            _ensure_unique(None, changes["email"], exclude_id=user.id)
        for key, value in changes.items():
            setattr(user, key, value)
        db.session.flush()

        activity_service.record(user.id, "UPDATE_PROFILE", ENTITY_TYPE, user.id, {"fields": sorted(changes)}, context)

    return user


def change_password(user: User, current_password, new_password, *, context: RequestContext | None = None) -> None:
    """
    Replace the caller's password. Every other session of the user is revoked.
    """
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required")
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("Current password is incorrect", field="current_password")

    with transaction():
        user.password_hash = hash_password(new_password)
        session_service.revoke_all_user_sessions(user.id, "Password changed", commit=False)
        activity_service.record(user.id, "CHANGE_PASSWORD", ENTITY_TYPE, user.id, None, context)


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def update_permissions(user_id: int, raw_permissions, *, actor: User, context: RequestContext | None = None) -> User:
    """Merge the given flags into the user's current flags."""
    flags = parse_permission_map(raw_permissions)

    with transaction():
        _ensure_admin_actor(actor.id)
        user = _get_user_or_404(user_id)
        apply_permissions(user, flags)
        db.session.flush()

        activity_service.record(
            actor.id,
            "UPDATE_USER_PERMISSIONS",
            ENTITY_TYPE,
            user.id,
            {"target_username": user.username, "new_permissions": permission_map(user)},
            context,
        )

    return user


def set_active(user_id: int, is_active, *, actor: User, context: RequestContext | None = None) -> User:
    """Activate or deactivate an account; deactivation revokes its sessions."""
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be boolean", field="is_active")
    if user_id == actor.id:
        raise InvalidStateError("Cannot deactivate your own account")

    with transaction():
        _ensure_admin_actor(actor.id)
        user = _get_user_or_404(user_id)
        user.is_active = is_active
        if not is_active:
            session_service.revoke_all_user_sessions(user.id, "User account deactivated", commit=False)
        db.session.flush()

        activity_service.record(
            actor.id,
            "ACTIVATE_USER" if is_active else "DEACTIVATE_USER",
            ENTITY_TYPE,
            user.id,
            {"target_username": user.username},
            context,
        )

    return user


def delete_user(user_id: int, *, actor: User, context: RequestContext | None = None) -> None:
    if user_id == actor.id:
        raise InvalidStateError("Cannot delete your own account")

    with transaction():
        _ensure_admin_actor(actor.id)
        user = _get_user_or_404(user_id)
        username = user.username
        db.session.delete(user)
        db.session.flush()

        activity_service.record(
            actor.id, "DELETE_USER", ENTITY_TYPE, user_id, {"deleted_username": username}, context
        )
