# Overview: Request authentication and permission decorators for API routes.

from functools import wraps

from flask import g, jsonify, request

from .permissions import Permission, user_has_permission
from .services import activity_service, session_service
from .services.activity_service import RequestContext


def _is_authenticated() -> bool:
    return hasattr(g, "current_user")


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user (User) and g.session_context (SessionContext).

    Returns 401 if:
    - No Authorization header
    - Invalid, expired, idle or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if context is None:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.session_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission: Permission):
    """
    Require one feature flag. Admins pass every flag check.

    Denials are written to the activity log as PERMISSION_DENIED.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            if not user_has_permission(user, permission):
                activity_service.record(
                    user.id,
                    "PERMISSION_DENIED",
                    None,
                    None,
                    {"required_permission": permission.value, "resource": request.path},
                    RequestContext.from_request(request),
                    commit=True,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission.value,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_admin(f):
    """Require role=admin."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required"}), 401
        if not g.current_user.is_admin:
            return jsonify({"error": "Access denied. Admin role required."}), 403
        return f(*args, **kwargs)
    return decorated_function
