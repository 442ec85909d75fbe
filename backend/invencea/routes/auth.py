# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/invencea/routes/auth.py
"""
Authentication API routes

SESSION RULES:
- One active session per user; a second login gets 409 with the holder's
  name/email so the client can show "already logged in elsewhere"
- Scan-login (no password) is limited to kiosk/faculty accounts and may be
  gated by a shared secret sent as x-scan-secret
- Accounts are created out-of-band (flask users create); there is no
  self-registration route
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..errors import ServiceError
from ..services import session_service
from ..decorators import bearer_token, require_auth
from invencea.time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and open the user's single session.

    Body: {email, password?}. Header: x-scan-secret (scan mode only).
    Returns {token, user, expires_at}.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = session_service.login(
            data.get("email"),
            data.get("password"),
            scan_secret=request.headers.get("x-scan-secret"),
        )

        return jsonify({
            "token": result.token,
            "user": result.user.to_dict(),
            "expires_at": to_utc_z(result.expires_at),
            "message": "Login successful",
        }), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Delete the caller's session row.

    Accepts a bearer token, a {user_id} body, or both. Idempotent: logging
    out an already-deleted session still returns success.
    """
    try:
        data = request.get_json(silent=True) or {}
        session_service.logout(token=bearer_token(), user_id=data.get("user_id"))
        return jsonify({"success": True}), 200

    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"message": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    """Return the user attached to the bearer token."""
    return jsonify({"user": g.current_user.to_dict()}), 200
