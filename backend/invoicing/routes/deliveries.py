# Overview: Flask API routes for delivery notes.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import ServiceError
from ..http import error_response, int_arg, internal_error, json_body, pagination_args, request_context
from ..permissions import Permission
from ..services import delivery_service


deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


@deliveries_bp.get("")
@require_auth
@require_permission(Permission.DELIVERIES)
def list_deliveries():
    try:
        page, limit = pagination_args()
        result = delivery_service.list_deliveries(
            search=request.args.get("search"),
            status=request.args.get("status"),
            client_id=int_arg("client_id"),
            page=page,
            limit=limit,
        )
        return jsonify(result)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list deliveries")


@deliveries_bp.get("/<int:delivery_id>")
@require_auth
@require_permission(Permission.DELIVERIES)
def get_delivery(delivery_id: int):
    try:
        delivery = delivery_service.get_delivery(delivery_id)
        return jsonify({"delivery": delivery.to_dict(include_items=True)})
    except ServiceError as e:
        return error_response(e)


@deliveries_bp.post("")
@require_auth
@require_permission(Permission.DELIVERIES)
def create_delivery():
    """Body: {number, date, due_date, client_id, delivery_method?, notes?, items: [{product_id, quantity, unit?}]}"""
    try:
        delivery = delivery_service.create_delivery(json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({
            "message": "Delivery created successfully",
            "delivery": delivery.to_dict(include_items=True),
        }), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create delivery")


@deliveries_bp.patch("/<int:delivery_id>/status")
@require_auth
@require_permission(Permission.DELIVERIES)
def set_status(delivery_id: int):
    try:
        data = json_body()
        delivery = delivery_service.set_delivery_status(
            delivery_id, data.get("status"), actor_id=g.current_user.id, context=request_context()
        )
        verb = "confirmed" if delivery.status == "confirmed" else "set to draft"
        return jsonify({"message": f"Delivery {verb} successfully", "delivery": delivery.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update delivery status")


@deliveries_bp.patch("/<int:delivery_id>/signed")
@require_auth
@require_permission(Permission.DELIVERIES)
def set_signed(delivery_id: int):
    try:
        data = json_body()
        delivery = delivery_service.set_signed(
            delivery_id, data.get("is_signed"), actor_id=g.current_user.id, context=request_context()
        )
        verb = "marked as signed" if delivery.is_signed else "marked as unsigned"
        return jsonify({"message": f"Delivery {verb} successfully", "delivery": delivery.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update delivery signed status")


@deliveries_bp.delete("/<int:delivery_id>")
@require_auth
@require_permission(Permission.DELIVERIES)
def delete_delivery(delivery_id: int):
    try:
        delivery_service.delete_delivery(delivery_id, actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Delivery deleted successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete delivery")
