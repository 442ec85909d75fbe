# backend/invencea/routes/inventory.py
"""
Inventory ledger routes.

SECURITY: All routes require authentication.
- Listing and history: any role (faculty may pass branch_id to browse)
- Create / update / delete: admin only, always in the admin's own branch
- Direct borrow / return: admin only (request-less stock movement)

Every row returned carries quantities that satisfy
total = borrowed + unserviceable + available.
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..roles import Role
from ..services import inventory_service
from ..decorators import require_auth, require_roles


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _service_error(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("")
@require_auth
def list_inventory_route():
    try:
        rows = inventory_service.list_inventory(
            g.current_user,
            branch_id=request.args.get("branch_id"),
            search=request.args.get("search"),
        )
        return jsonify(rows), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch inventory")
        return jsonify({"message": "Internal server error"}), 500


@inventory_bp.post("")
@require_auth
@require_roles(Role.ADMIN)
def create_inventory_route():
    try:
        item = inventory_service.create_item(g.current_user, request.get_json(silent=True) or {})
        return jsonify(inventory_service.standardized_row(item)), 201
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to add inventory")
        return jsonify({"message": "Internal server error"}), 500


@inventory_bp.put("/<int:item_id>")
@require_auth
@require_roles(Role.ADMIN)
def update_inventory_route(item_id: int):
    try:
        item = inventory_service.update_item(g.current_user, item_id, request.get_json(silent=True) or {})
        return jsonify(inventory_service.standardized_row(item)), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to update inventory %s", item_id)
        return jsonify({"message": "Internal server error"}), 500


@inventory_bp.delete("/<int:item_id>")
@require_auth
@require_roles(Role.ADMIN)
def delete_inventory_route(item_id: int):
    try:
        inventory_service.delete_item(g.current_user, item_id)
        return jsonify({"message": "Inventory deleted successfully"}), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to delete inventory %s", item_id)
        return jsonify({"message": "Internal server error"}), 500


@inventory_bp.get("/<int:item_id>/history")
@require_auth
def inventory_history_route(item_id: int):
    """Audit trail for one item, newest first."""
    try:
        rows = inventory_service.history(
            g.current_user, item_id, branch_id=request.args.get("branch_id")
        )
        return jsonify(rows), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch inventory history %s", item_id)
        return jsonify({"message": "Internal server error"}), 500


@inventory_bp.post("/<int:item_id>/borrow")
@require_auth
@require_roles(Role.ADMIN)
def borrow_inventory_route(item_id: int):
    try:
        data = request.get_json(silent=True) or {}
        item = inventory_service.borrow_stock(g.current_user, item_id, data.get("quantity"))
        return jsonify({
            "message": "Item borrowed successfully",
            "available_quantity": item.available_quantity,
            "item": inventory_service.standardized_row(item),
        }), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to borrow inventory %s", item_id)
        return jsonify({"message": "Internal server error"}), 500


@inventory_bp.post("/<int:item_id>/return")
@require_auth
@require_roles(Role.ADMIN)
def return_inventory_route(item_id: int):
    try:
        data = request.get_json(silent=True) or {}
        item = inventory_service.return_stock(g.current_user, item_id, data.get("quantity"))
        return jsonify({
            "message": "Item returned successfully",
            "available_quantity": item.available_quantity,
            "item": inventory_service.standardized_row(item),
        }), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to return inventory %s", item_id)
        return jsonify({"message": "Internal server error"}), 500
