# Overview: Flask API routes for inventory lots (product groups); membership and stock consumption.

"""
Product group (lot) routes. All endpoints require the warehouse flag.

Reads are logged (VIEW_PRODUCT_GROUPS / VIEW_PRODUCT_GROUP); every mutation
is logged by lot_service inside its own transaction.
"""

from flask import Blueprint, g, jsonify

from ..decorators import require_auth, require_permission
from ..errors import ServiceError
from ..http import error_response, internal_error, json_body, request_context
from ..permissions import Permission
from ..services import activity_service, lot_service


product_groups_bp = Blueprint("product_groups", __name__, url_prefix="/api/product-groups")


@product_groups_bp.get("")
@require_auth
@require_permission(Permission.WAREHOUSE)
def list_groups():
    try:
        lots = lot_service.list_lots()
        activity_service.record(
            g.current_user.id,
            "VIEW_PRODUCT_GROUPS",
            lot_service.ENTITY_TYPE,
            None,
            {"count": len(lots)},
            request_context(),
            commit=True,
        )
        return jsonify({"product_groups": [lot.to_dict() for lot in lots]})
    except Exception:
        return internal_error("Failed to list product groups")


@product_groups_bp.get("/<int:group_id>")
@require_auth
@require_permission(Permission.WAREHOUSE)
def get_group(group_id: int):
    try:
        lot = lot_service.get_lot(group_id)
        activity_service.record(
            g.current_user.id, "VIEW_PRODUCT_GROUP", lot_service.ENTITY_TYPE, lot.id, None, request_context(), commit=True
        )
        return jsonify({"product_group": lot.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to fetch product group")


@product_groups_bp.post("")
@require_auth
@require_permission(Permission.WAREHOUSE)
def create_group():
    """
    Body: {name, quantity_type, original_quantity, shipment_date,
           reservation_type, reservation_amount?}

    current_quantity = max(0, original - 5% - reservation)
    """
    try:
        lot = lot_service.create_lot(json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Product group created successfully", "product_group": lot.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create product group")


@product_groups_bp.put("/<int:group_id>")
@require_auth
@require_permission(Permission.WAREHOUSE)
def update_group(group_id: int):
    try:
        lot = lot_service.update_lot(group_id, json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Product group updated successfully", "product_group": lot.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update product group")


@product_groups_bp.delete("/<int:group_id>")
@require_auth
@require_permission(Permission.WAREHOUSE)
def delete_group(group_id: int):
    try:
        lot_service.delete_lot(group_id, actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Product group deleted successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete product group")


@product_groups_bp.post("/<int:group_id>/products")
@require_auth
@require_permission(Permission.WAREHOUSE)
def add_product(group_id: int):
    """Body: {product_id}"""
    try:
        data = json_body()
        lot_service.add_product(
            group_id, data.get("product_id"), actor_id=g.current_user.id, context=request_context()
        )
        return jsonify({"message": "Product added to group successfully"}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to add product to group")


@product_groups_bp.delete("/<int:group_id>/products/<int:product_id>")
@require_auth
@require_permission(Permission.WAREHOUSE)
def remove_product(group_id: int, product_id: int):
    try:
        lot_service.remove_product(group_id, product_id, actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Product removed from group successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to remove product from group")


@product_groups_bp.post("/update-stock")
@require_auth
@require_permission(Permission.WAREHOUSE)
def update_stock():
    """Body: {invoice_items: [{product_id, quantity}]}"""
    try:
        data = json_body()
        updates = lot_service.update_stock(
            data.get("invoice_items"), actor_id=g.current_user.id, context=request_context()
        )
        return jsonify({"message": "Stock updated successfully", "updates": [u.to_dict() for u in updates]})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update stock")
