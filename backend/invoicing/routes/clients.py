# Overview: Flask API routes for clients; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..errors import ServiceError
from ..http import error_response, internal_error, json_body, pagination_args, request_context
from ..permissions import Permission
from ..services import client_service


clients_bp = Blueprint("clients", __name__, url_prefix="/api/clients")


@clients_bp.get("")
@require_auth
@require_permission(Permission.CLIENTS)
def list_clients():
    """
    Query params:
    - search: matches name, MB or PIB
    - page, limit: pagination (limit max 100)
    """
    try:
        page, limit = pagination_args()
        return jsonify(client_service.list_clients(search=request.args.get("search"), page=page, limit=limit))
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to list clients")


@clients_bp.get("/<int:client_id>")
@require_auth
@require_permission(Permission.CLIENTS)
def get_client(client_id: int):
    try:
        return jsonify({"client": client_service.get_client(client_id).to_dict()})
    except ServiceError as e:
        return error_response(e)


@clients_bp.post("")
@require_auth
@require_permission(Permission.CLIENTS)
def create_client():
    try:
        client = client_service.create_client(json_body(), actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Client created successfully", "client": client.to_dict()}), 201
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to create client")


@clients_bp.put("/<int:client_id>")
@require_auth
@require_permission(Permission.CLIENTS)
def update_client(client_id: int):
    try:
        client = client_service.update_client(
            client_id, json_body(), actor_id=g.current_user.id, context=request_context()
        )
        return jsonify({"message": "Client updated successfully", "client": client.to_dict()})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to update client")


@clients_bp.delete("/<int:client_id>")
@require_auth
@require_permission(Permission.CLIENTS)
def delete_client(client_id: int):
    """409 with invoice/delivery counts while the client has documents."""
    try:
        client_service.delete_client(client_id, actor_id=g.current_user.id, context=request_context())
        return jsonify({"message": "Client deleted successfully"})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to delete client")


@clients_bp.get("/<int:client_id>/invoices")
@require_auth
@require_permission(Permission.CLIENTS)
def client_invoices(client_id: int):
    try:
        invoices = client_service.client_invoices(client_id)
        return jsonify({"invoices": [i.to_dict() for i in invoices]})
    except ServiceError as e:
        return error_response(e)


@clients_bp.get("/<int:client_id>/deliveries")
@require_auth
@require_permission(Permission.CLIENTS)
def client_deliveries(client_id: int):
    try:
        deliveries = client_service.client_deliveries(client_id)
        return jsonify({"deliveries": [d.to_dict() for d in deliveries]})
    except ServiceError as e:
        return error_response(e)


@clients_bp.get("/<int:client_id>/statistics")
@require_auth
@require_permission(Permission.CLIENTS)
@require_permission(Permission.STATISTICS)
def client_statistics(client_id: int):
    """?period=month|quarter|year (default year)"""
    try:
        stats = client_service.client_statistics(client_id, request.args.get("period", "year"))
        return jsonify({"statistics": stats})
    except ServiceError as e:
        return error_response(e)
    except Exception:
        return internal_error("Failed to compute client statistics")
