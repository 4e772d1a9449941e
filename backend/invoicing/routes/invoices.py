# Overview: Flask API routes for invoices; creation, status transitions, tracking flags.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import ServiceError
from ..http import error_response, int_arg, internal_error, json_body, pagination_args, request_context
from ..permissions import Permission
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
@require_permission(Permission.INVOICES)
def list_invoices():
    """
    Query params:
    - search: matches invoice number or client name
    - status: draft | confirmed
    - client_id
    - page, limit
    """
    try:
        page, limit = pagination_args()
        result = invoice_service.list_invoices(
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
        return internal_error("Failed to list invoices")


@invoices_bp.get("/<int:invoice_id>")
@require_auth
@require_permission(Permission.INVOICES)
def get_invoice(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict(include_items=True)})
    except ServiceError as e:
        return error_response(e)


@invoices_bp.post("")
@require_auth
@require_permission(Permission.INVOICES)
def create_invoice():
    """
    Body: {number, date, due_date, client_id, vat_rate, delivery_address?,
           reference?, notes?, items: [{product_id, quantity, unit_price_cents}]}
    """
    try:
        invoice = invoice_service.create_invoice(json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Invoice created successfully", "invoice": invoice.to_dict(include_items=True)}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create invoice")


@invoices_bp.patch("/<int:invoice_id>/status")
@require_auth
@require_permission(Permission.INVOICES)
def set_status(invoice_id: int):
    """Body: {status}. The first confirmation consumes lot stock."""
    try:
        data = json_body()
        invoice, updates = invoice_service.set_invoice_status(
            invoice_id, data.get("status"), actor_id=g.current_user.id, context=request_context()
        )
        verb = "confirmed" if invoice.status == "confirmed" else "set to draft"
        return jsonify({
            "message": f"Invoice {verb} successfully",
            "invoice": invoice.to_dict(),
            "stock_updates": [u.to_dict() for u in updates],
        })
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update invoice status")


@invoices_bp.patch("/<int:invoice_id>/tracking")
@require_auth
@require_permission(Permission.INVOICES)
def update_tracking(invoice_id: int):
    """Body: {is_delivered?, is_paid?}"""
    try:
        invoice = invoice_service.update_tracking(
            invoice_id, json_body(), actor_id=g.current_user.id, context=request_context()
        )
        return jsonify({"message": "Invoice tracking updated successfully", "invoice": invoice.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update invoice tracking")


@invoices_bp.delete("/<int:invoice_id>")
@require_auth
@require_permission(Permission.INVOICES)
def delete_invoice(invoice_id: int):
    try:
        invoice_service.delete_invoice(invoice_id, actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Invoice deleted successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete invoice")
