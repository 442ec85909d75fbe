# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .errors import ServiceError
from .roles import Role
from .services import session_service


def bearer_token() -> str | None:
    """Token from 'Authorization: Bearer <token>', or None."""
    auth_header = request.headers.get("Authorization") or ""
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer token.

    Sets g.current_user (the User) and g.current_role (parsed Role).

    Returns 401 if:
    - No Authorization header
    - Invalid, tampered or expired token
    - User no longer exists
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            user = session_service.authenticate(bearer_token())
        except ServiceError as e:
            return jsonify(e.to_dict()), e.status_code

        g.current_user = user
        g.current_role = user.role_enum
        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles: Role):
    """
    Restrict a route to the given roles. Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"message": "Unauthorized"}), 401

            try:
                session_service.authorize(g.current_user, roles)
            except ServiceError as e:
                return jsonify(e.to_dict()), e.status_code

            return f(*args, **kwargs)

        return decorated_function
    return decorator
