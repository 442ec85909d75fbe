from flask import Blueprint, jsonify, current_app, g

from ..errors import ServiceError
from ..roles import Role
from ..services import report_service
from ..decorators import require_auth, require_roles


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("")
@require_auth
@require_roles(Role.ADMIN)
def dashboard_route():
    try:
        return jsonify(report_service.dashboard(g.current_user)), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load dashboard data")
        return jsonify({"message": "Internal server error"}), 500
