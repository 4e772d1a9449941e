# Overview: Flask API routes for products operations; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import ServiceError
from ..http import error_response, internal_error, json_body, pagination_args, request_context
from ..permissions import Permission
from ..services import product_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_permission(Permission.PRODUCTS)
def list_products():
    """
    Query params:
    - search: matches name or code
    - category: exact category
    - active_only: "true" to hide deactivated products
    - page, limit
    """
    try:
        page, limit = pagination_args()
        result = product_service.list_products(
            search=request.args.get("search"),
            category=request.args.get("category"),
            active_only=request.args.get("active_only", "false").lower() == "true",
            page=page,
            limit=limit,
        )
        return jsonify(result)
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list products")


@products_bp.get("/categories")
@require_auth
@require_permission(Permission.PRODUCTS)
def list_categories():
    return jsonify({"categories": product_service.list_categories()})


@products_bp.get("/<int:product_id>")
@require_auth
@require_permission(Permission.PRODUCTS)
def get_product(product_id: int):
    try:
        return jsonify({"product": product_service.get_product(product_id).to_dict()})
    except ServiceError as e:
        return error_response(e)


@products_bp.post("")
@require_auth
@require_permission(Permission.PRODUCTS)
def create_product():
    try:
        product = product_service.create_product(json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Product created successfully", "product": product.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create product")


@products_bp.put("/<int:product_id>")
@require_auth
@require_permission(Permission.PRODUCTS)
def update_product(product_id: int):
    try:
        product = product_service.update_product(
            product_id, json_body(), actor_id=g.current_user.id, context=request_context()
        )
        return jsonify({"message": "Product updated successfully", "product": product.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update product")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_permission(Permission.PRODUCTS)
def delete_product(product_id: int):
    """Deactivates instead of deleting when any document line uses the product."""
    try:
        product = product_service.delete_product(product_id, actor_id=g.current_user.id, context=request_context())
        if product is not None:
            return jsonify({
                "message": "Product deactivated (cannot delete due to existing usage)",
                "product": product.to_dict(),
            })
        return jsonify({"message": "Product deleted successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete product")


@products_bp.patch("/<int:product_id>/activate")
@require_auth
@require_permission(Permission.PRODUCTS)
def activate_product(product_id: int):
    try:
        product = product_service.activate_product(product_id, actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Product reactivated successfully", "product": product.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to reactivate product")


@products_bp.get("/<int:product_id>/stats")
@require_auth
@require_permission(Permission.PRODUCTS)
def product_stats(product_id: int):
    try:
        return jsonify({"stats": product_service.product_stats(product_id)})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute product statistics")
