# backend/invencea/routes/reports.py
"""
Borrow report routes (admin only, caller's branch).

from/to are calendar days (YYYY-MM-DD) in REPORT_TIMEZONE. Rows are limited
to requests the caller approved or that are not yet approved.
"""
from flask import Blueprint, Response, request, jsonify, current_app, g

from ..errors import ServiceError
from ..roles import Role
from ..services import report_service
from ..decorators import require_auth, require_roles


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("")
@require_auth
@require_roles(Role.ADMIN)
def reports_route():
    try:
        rows = report_service.report_rows(
            g.current_user,
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
        )
        return jsonify(rows), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to fetch reports")
        return jsonify({"message": "Internal server error"}), 500


@reports_bp.get("/export/csv")
@require_auth
@require_roles(Role.ADMIN)
def export_reports_csv_route():
    try:
        body = report_service.export_csv(
            g.current_user,
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
        )
        return Response(
            body,
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=borrow-reports.csv"},
        )
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to export reports")
        return jsonify({"message": "Internal server error"}), 500


@reports_bp.delete("")
@require_auth
@require_roles(Role.ADMIN)
def delete_reports_route():
    """Purge RETURNED/DENIED requests in the window. One of from/to is required."""
    try:
        deleted = report_service.delete_reports(
            g.current_user,
            date_from=request.args.get("from"),
            date_to=request.args.get("to"),
        )
        return jsonify({"message": f"Deleted {deleted} reports", "deleted": deleted}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete reports")
        return jsonify({"message": "Internal server error"}), 500
