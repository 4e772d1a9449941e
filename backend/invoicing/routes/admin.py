# Overview: Flask API routes for user administration; accounts, roles and permission flags.

"""
Admin routes for user management.

SECURITY: every endpoint requires role=admin. The editUser flag is stored and
reported with the user but never grants access here on its own; otherwise a
flagged regular user could mint admins or disable them.
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_admin, require_auth
from ..errors import ServiceError
from ..http import error_response, internal_error, json_body, request_context
from ..services import auth_service


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/users")
@require_auth
@require_admin
def list_users():
    users = auth_service.list_users()
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})


@admin_bp.post("/users")
@require_auth
@require_admin
def create_user():
    """
    Body: {username, password, email?, full_name?, role?, permissions?}
    permissions is a partial map over the default flags for the role.
    """
    try:
        user = auth_service.create_user(json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "User created successfully", "user": user.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create user")


@admin_bp.put("/users/<int:user_id>/permissions")
@require_auth
@require_admin
def update_permissions(user_id: int):
    try:
        data = json_body()
        user = auth_service.update_permissions(
            user_id, data.get("permissions"), actor=g.current_user, context=request_context()
        )
        return jsonify({"message": "User permissions updated successfully", "user": user.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update permissions")


@admin_bp.put("/users/<int:user_id>/status")
@require_auth
@require_admin
def set_user_status(user_id: int):
    try:
        data = json_body()
        user = auth_service.set_active(
            user_id, data.get("is_active"), actor=g.current_user, context=request_context()
        )
        return jsonify({"message": "User status updated successfully", "user": user.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update user status")


@admin_bp.delete("/users/<int:user_id>")
@require_auth
@require_admin
def delete_user(user_id: int):
    try:
        auth_service.delete_user(user_id, actor=g.current_user, context=request_context())
        return jsonify({"message": "User deleted successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete user")
