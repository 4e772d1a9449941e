# Overview: Flask API routes for the activity log; filtered listing, statistics and retention cleanup.

"""
Activity log routes.

Any authenticated user may list logs, but non-admins only ever receive
their own entries (the user_id filter is overridden server-side).
Statistics, the user list and cleanup are admin-only.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..errors import ServiceError
from ..http import error_response, int_arg, internal_error, pagination_args
from ..services import activity_service
from ..services.activity_service import LogFilters
from ..validation import parse_date_range


logs_bp = Blueprint("logs", __name__, url_prefix="/api/logs")


@logs_bp.get("")
@require_auth
def list_logs():
    """
    Query params: user_id, entity_type, action (substring), start_date,
    end_date, search (action or username), page, limit.
    """
    try:
        page, limit = pagination_args()
        start_date, end_date = parse_date_range(request.args)
        filters = LogFilters(
            user_id=int_arg("user_id"),
            entity_type=request.args.get("entity_type") or None,
            action=request.args.get("action") or None,
            start_date=start_date,
            end_date=end_date,
            search=request.args.get("search") or None,
        )
        return jsonify(activity_service.query_logs(g.current_user, filters, page, limit))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to fetch activity logs")


@logs_bp.get("/stats")
@require_auth
@require_admin
def log_stats():
    try:
        start_date, end_date = parse_date_range(request.args)
        filters = LogFilters(user_id=int_arg("user_id"), start_date=start_date, end_date=end_date)
        return jsonify(activity_service.statistics(filters))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to fetch activity statistics")


@logs_bp.get("/entity-types")
@require_auth
def entity_types():
    return jsonify({"entity_types": activity_service.list_entity_types()})


@logs_bp.get("/users")
@require_auth
@require_admin
def log_users():
    return jsonify({"users": activity_service.list_log_users()})


@logs_bp.delete("/cleanup")
@require_auth
@require_admin
def cleanup_logs():
    """?days=N (1..365, default ACTIVITY_LOG_RETENTION_DAYS)"""
    try:
        days = int_arg("days")
        if days is None:
            days = current_app.config["ACTIVITY_LOG_RETENTION_DAYS"]
        deleted = activity_service.prune_older_than(days)
        return jsonify({
            "message": "Old logs cleaned up successfully",
            "deleted_count": deleted,
            "days_kept": days,
        })
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to clean up old logs")
