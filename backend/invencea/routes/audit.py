from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..roles import Role
from ..services import report_service
from ..decorators import require_auth, require_roles


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
@require_roles(Role.ADMIN)
def list_audit_logs_route():
    """Branch audit trail, newest first. Query: limit (default 100, max 1000)."""
    try:
        logs = report_service.list_audit_logs(g.current_user, limit=request.args.get("limit"))
        return jsonify([entry.to_dict() for entry in logs]), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch audit logs")
        return jsonify({"message": "Internal server error"}), 500
