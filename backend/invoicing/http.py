# Overview: Shared request parsing and error rendering for API routes.

from flask import current_app, jsonify, request

from .errors import ServiceError, ValidationError
from .services.activity_service import RequestContext
from .validation import parse_pagination


def error_response(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


def internal_error(message: str):
    """Log the active exception and answer with a generic 500."""
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def request_context() -> RequestContext:
    return RequestContext.from_request(request)


def pagination_args() -> tuple[int, int]:
    return parse_pagination(
        request.args,
        default_limit=current_app.config["DEFAULT_PAGE_SIZE"],
        max_limit=current_app.config["MAX_PAGE_SIZE"],
    )


def int_arg(name: str) -> int | None:
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", field=name)
