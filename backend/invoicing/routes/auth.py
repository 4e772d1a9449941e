# Overview: Flask API routes for authentication and the caller's own profile.

"""
Authentication API routes

- POST /api/auth/register: self-registration as a regular user
- POST /api/auth/login: exchange credentials for a bearer token (throttled)
- GET /api/auth/lockout-status/<identifier>: throttle state for a username
- POST /api/auth/logout: revoke the presented token
- GET/PUT /api/auth/profile
- PUT /api/auth/change-password
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_auth
from ..errors import AuthenticationError, ServiceError, ValidationError
from ..http import error_response, internal_error, json_body, request_context
from ..services import activity_service, auth_service, login_throttle_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _issue_token(user, context):
    session, token = session_service.create_session(
        user_id=user.id,
        user_agent=context.user_agent,
        ip_address=context.ip_address,
    )
    return session, token


def _locked_response(message: str, seconds_remaining):
    return jsonify({
        "error": message,
        "locked": True,
        "retry_after_seconds": seconds_remaining,
    }), 429


@auth_bp.post("/register")
def register_route():
    try:
        context = request_context()
        user = auth_service.register(json_body(), context=context)
        session, token = _issue_token(user, context)
        return jsonify({
            "message": "User registered successfully",
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
        }), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to register user")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in Authorization header for protected routes.
    Inactive accounts get 401 "Account is disabled".
    Repeated failures lock the username (or the calling address) and are
    answered with 429 until the lockout runs out.
    """
    try:
        data = json_body()
        context = request_context()
        username = data.get("username")
        password = data.get("password")
        if not isinstance(username, str) or not username.strip() or not password:
            raise ValidationError("Username and password are required")

        locked, seconds_remaining = login_throttle_service.is_locked(username, context.ip_address)
        if locked:
            return _locked_response(
                "Account temporarily locked due to too many failed login attempts", seconds_remaining
            )

        try:
            user = auth_service.authenticate(username, password)
        except AuthenticationError as e:
            failed_count = login_throttle_service.record_failed_attempt(username, context, reason=e.message)
            remaining = login_throttle_service.max_attempts() - failed_count
            if remaining <= 0:
                _, seconds_remaining = login_throttle_service.is_locked(username)
                return _locked_response(
                    "Account locked due to too many failed login attempts", seconds_remaining
                )
            body = e.to_dict()
            if remaining <= 3:
                body["warning"] = f"{remaining} attempts remaining before account lockout"
            return jsonify(body), e.status_code

        session, token = _issue_token(user, context)

        activity_service.record(user.id, "LOGIN", "users", user.id, None, context, commit=True)

        return jsonify({
            "message": "Login successful",
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
        }), 200
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to login user")


@auth_bp.get("/lockout-status/<identifier>")
def lockout_status_route(identifier: str):
    return jsonify(login_throttle_service.get_lockout_status(identifier))


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        activity_service.record(g.current_user.id, "LOGOUT", "users", g.current_user.id, None, request_context(), commit=True)
        return jsonify({"message": "Logout successful"}), 200
    except Exception:
        return internal_error("Failed to logout user")


@auth_bp.get("/profile")
@require_auth
def get_profile_route():
    return jsonify({"user": g.current_user.to_dict()})


@auth_bp.put("/profile")
@require_auth
def update_profile_route():
    try:
        user = auth_service.update_profile(g.current_user, json_body(), context=request_context())
        return jsonify({"message": "Profile updated successfully", "user": user.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update profile")


@auth_bp.put("/change-password")
@require_auth
def change_password_route():
    """Other sessions of the user are revoked, including the current one."""
    try:
        data = json_body()
        auth_service.change_password(
            g.current_user,
            data.get("current_password"),
            data.get("new_password"),
            context=request_context(),
        )
        return jsonify({"message": "Password changed successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to change password")
