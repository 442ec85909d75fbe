# Overview: Service-layer operations for session; login, logout and request authentication.

"""
Identity & Session Guard

One active session per user:
- Login (password or kiosk scan) refuses with a 409 while the user already
  holds a live session row, instead of overwriting it.
- The unique constraint on active_sessions.user_id is the authority. The
  pre-insert lookup is a fast path; an IntegrityError on insert means another
  login won the race and is reported exactly like the pre-check conflict.
- Any OTHER storage failure while inserting the row does not block login:
  the token is still returned and a warning is logged (availability over
  strict exclusivity in that window).
- Expired rows for the user are purged right before each login attempt.

Bearer tokens are HS256 JWTs (PyJWT). Only the SHA-256 digest of a token is
stored on the session row.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import (
    BadRequestError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    RoleNotAllowedError,
    SessionConflictError,
    UnauthorizedError,
)
from ..models import ActiveSession, User
from ..roles import Role, SCAN_LOGIN_ROLES
from . import auth_service
from invencea.time_utils import utcnow


DEFAULT_SESSION_TTL = timedelta(hours=8)


@dataclass
class LoginResult:
    token: str
    user: User
    expires_at: datetime
    # None when the session row could not be written (availability fallback)
    session: ActiveSession | None


def _session_ttl() -> timedelta:
    hours = current_app.config.get("ACTIVE_SESSION_TTL_HOURS")
    if hours is None:
        return DEFAULT_SESSION_TTL
    return timedelta(hours=float(hours))


def _jwt_secret() -> str:
    return current_app.config.get("JWT_SECRET") or current_app.config["SECRET_KEY"]


def _jwt_algorithm() -> str:
    return current_app.config.get("JWT_ALGORITHM", "HS256")


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a bearer token, as stored on the session row."""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def issue_token(user: User, *, issued_at: datetime, expires_at: datetime) -> str:
    role = user.role_enum
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": role.value if role else user.role,
        "branch_id": user.branch_id,
        "jti": secrets.token_hex(8),
        "iat": issued_at.replace(tzinfo=timezone.utc),
        "exp": expires_at.replace(tzinfo=timezone.utc),
    }
    return jwt.encode(payload, _jwt_secret(), algorithm=_jwt_algorithm())


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, _jwt_secret(), algorithms=[_jwt_algorithm()])
    except jwt.PyJWTError:
        return None


# =============================================================================
# LOGIN
# =============================================================================

def login(email, password=None, scan_secret: str | None = None) -> LoginResult:
    """
    Authenticate and open the user's single session.

    Password mode (password given): delegate to auth_service.verify_credentials.
    Scan mode (no password): kiosk/faculty only, email lookup, optional
    shared secret (SCAN_SECRET) checked against the x-scan-secret header value.

    Raises:
        BadRequestError: email missing
        InvalidCredentialsError: password mode rejected
        ForbiddenError: scan secret configured and not matched
        NotFoundError: scan mode, unknown email
        RoleNotAllowedError: scan mode, role is not kiosk/faculty
        SessionConflictError: a live session already exists
    """
    if not email or not isinstance(email, str) or not email.strip():
        raise BadRequestError("Email is required")

    if password:
        if not isinstance(password, str):
            raise BadRequestError("Password must be a string")
        user = auth_service.verify_credentials(email, password)
        if user is None:
            raise InvalidCredentialsError()
    else:
        user = _scan_login_user(email, scan_secret)

    return open_session(user)


def _scan_login_user(email: str, scan_secret: str | None) -> User:
    configured = current_app.config.get("SCAN_SECRET")
    if configured:
        if not scan_secret or not hmac.compare_digest(str(scan_secret), str(configured)):
            raise ForbiddenError("Forbidden (invalid scan secret)")

    user = auth_service.get_user_by_email(email)
    if not user:
        raise NotFoundError("User not found")

    if user.role_enum not in SCAN_LOGIN_ROLES:
        raise RoleNotAllowedError("Scan-login not allowed for this user role")

    return user


def open_session(user: User) -> LoginResult:
    now = utcnow()
    expires_at = now + _session_ttl()

    # Captured up front: the instance is expired again after a rollback
    user_id, full_name, user_email = user.id, user.full_name, user.email

    purge_expired_session(user_id, now=now)

    existing = db.session.query(ActiveSession).filter_by(user_id=user_id).first()
    if existing:
        raise _session_conflict(full_name, user_email)

    token = issue_token(user, issued_at=now, expires_at=expires_at)
    session = ActiveSession(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=expires_at,
    )

    try:
        db.session.add(session)
        db.session.commit()
    except IntegrityError:
        # Concurrent login inserted first
        db.session.rollback()
        raise _session_conflict(full_name, user_email)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Could not record active session for user %s; issuing token without session row",
            user_id,
            exc_info=True,
        )
        session = None

    return LoginResult(token=token, user=user, expires_at=expires_at, session=session)


def _session_conflict(full_name: str, email: str) -> SessionConflictError:
    return SessionConflictError(
        "User already logged in elsewhere",
        active_user_name=full_name,
        active_user_email=email,
    )


def purge_expired_session(user_id: int, *, now: datetime | None = None) -> int:
    """Delete the user's session row if it has expired. Returns rows deleted."""
    now = now or utcnow()
    deleted = db.session.query(ActiveSession).filter(
        ActiveSession.user_id == user_id,
        ActiveSession.expires_at <= now,
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


# =============================================================================
# LOGOUT / MAINTENANCE
# =============================================================================

def logout(token: str | None = None, user_id=None) -> int:
    """
    Delete the session row(s) matching token and/or user_id.

    Idempotent: deleting nothing is still success. Returns rows deleted.
    """
    if not token and user_id in (None, ""):
        raise BadRequestError("token or user_id required")

    conditions = []
    if token:
        conditions.append(ActiveSession.token_hash == hash_token(token))
    if user_id not in (None, ""):
        try:
            conditions.append(ActiveSession.user_id == int(user_id))
        except (TypeError, ValueError):
            raise BadRequestError("user_id must be an integer")

    deleted = db.session.query(ActiveSession).filter(
        or_(*conditions)
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def cleanup_expired_sessions() -> int:
    """Delete every expired session row. Returns count deleted."""
    deleted = db.session.query(ActiveSession).filter(
        ActiveSession.expires_at <= utcnow()
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


# =============================================================================
# REQUEST GUARD
# =============================================================================

def authenticate(token: str | None) -> User:
    """Resolve a bearer token to its User or raise UnauthorizedError."""
    if not token:
        raise UnauthorizedError("Unauthorized")

    claims = decode_token(token)
    if not claims:
        raise UnauthorizedError("Invalid token")

    user = auth_service.get_user(claims.get("sub"))
    if not user:
        raise UnauthorizedError("User not found")

    return user


def authorize(user: User, allowed_roles) -> Role:
    """
    Check the user's role against allowed_roles.

    Returns the parsed Role, raises ForbiddenError naming the allowed roles.
    """
    allowed = tuple(Role.parse(r) for r in allowed_roles)
    role = user.role_enum
    if role is None or role not in allowed:
        names = ", ".join(r.value for r in allowed if r is not None)
        raise ForbiddenError(f"{names} only", allowed_roles=[r.value for r in allowed if r is not None])
    return role
