# backend/invencea/routes/borrow_requests.py
"""
Borrow request routes.

Lifecycle: PENDING -> APPROVED -> ISSUED -> RETURNED (DENIED from PENDING/APPROVED).

SECURITY: All routes require authentication.
- Create: kiosk, faculty, admin
- Mine: kiosk, faculty (admins are refused by the service)
- List, status changes, issued list, return-by-barcode: admin only
"""
from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..roles import BORROW_REQUEST_ROLES, Role
from ..services import borrow_service, return_service
from ..decorators import require_auth, require_roles
from invencea.time_utils import to_utc_z


borrow_requests_bp = Blueprint("borrow_requests", __name__, url_prefix="/api/borrow-requests")


def _service_error(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


@borrow_requests_bp.post("")
@require_auth
@require_roles(*BORROW_REQUEST_ROLES)
def create_borrow_request_route():
    try:
        req = borrow_service.create_request(g.current_user, request.get_json(silent=True) or {})
        return jsonify(req.to_dict()), 201
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to create borrow request")
        return jsonify({"message": "Internal server error"}), 500


@borrow_requests_bp.get("/mine")
@require_auth
@require_roles(*BORROW_REQUEST_ROLES)
def my_borrow_requests_route():
    try:
        rows = borrow_service.list_mine(g.current_user, branch_id=request.args.get("branch_id"))
        return jsonify(borrow_service.enrich_requests(rows)), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch borrow history")
        return jsonify({"message": "Internal server error"}), 500


@borrow_requests_bp.get("")
@require_auth
@require_roles(Role.ADMIN)
def list_borrow_requests_route():
    """
    Admin listing for the caller's branch.

    Query: status, from, to, search, limit (<= 2000), offset, enrich (default true)
    """
    try:
        rows = borrow_service.list_all(
            g.current_user,
            status=request.args.get("status"),
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
            search=request.args.get("search"),
            limit=request.args.get("limit"),
            offset=request.args.get("offset"),
            enrich=request.args.get("enrich", "true").lower() != "false",
        )
        return jsonify(rows), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch borrow requests")
        return jsonify({"message": "Internal server error"}), 500


@borrow_requests_bp.post("/<int:request_id>/status")
@require_auth
@require_roles(Role.ADMIN)
def update_borrow_status_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}
        req = borrow_service.transition(g.current_user, request_id, data.get("status"))
        return jsonify(req.to_dict()), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to update borrow request %s", request_id)
        return jsonify({"message": "Internal server error"}), 500


@borrow_requests_bp.get("/issued")
@require_auth
@require_roles(Role.ADMIN)
def issued_items_route():
    try:
        return jsonify({"issued": borrow_service.list_issued_items(g.current_user)}), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch issued items")
        return jsonify({"message": "Internal server error"}), 500


@borrow_requests_bp.get("/return-options")
@require_auth
@require_roles(Role.ADMIN)
def return_options_route():
    try:
        options = return_service.find_return_options(g.current_user, request.args.get("barcode"))
        return jsonify(options), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Failed to fetch return options")
        return jsonify({"message": "Internal server error"}), 500


@borrow_requests_bp.post("/return-by-barcode")
@require_auth
@require_roles(Role.ADMIN)
def return_by_barcode_route():
    """
    Body: {barcode, quantity, borrow_request_id?, client_event_id?, returned_at?}

    Replaying a client_event_id returns 200 with the current request state
    and an "already processed" message instead of applying it twice.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = return_service.return_by_barcode(
            g.current_user,
            data.get("barcode"),
            data.get("quantity"),
            borrow_request_id=data.get("borrow_request_id"),
            client_event_id=data.get("client_event_id"),
            returned_at=data.get("client_returned_at") or data.get("returned_at"),
        )
        body = {
            "message": result.message,
            "status": result.status,
            "request": result.request.to_dict() if result.request else None,
        }
        if not result.already_processed:
            body["processed_at"] = to_utc_z(result.processed_at)
        return jsonify(body), 200
    except ServiceError as e:
        return _service_error(e)
    except Exception:
        current_app.logger.exception("Return failed")
        return jsonify({"message": "Internal server error"}), 500
