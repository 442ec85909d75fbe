"""
Identity & session guard tests.

Verifies:
- Password and scan login paths (including the shared scan secret)
- At most one active session per user, enforced by the unique row
- Expired rows are purged on the next login
- A storage failure while recording the session does not block login
- Logout is idempotent
- Bearer token authentication and role authorization
"""

from datetime import timedelta
from types import SimpleNamespace

import jwt
import pytest
from sqlalchemy.exc import OperationalError

from invencea.errors import (
    BadRequestError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    RoleNotAllowedError,
    SessionConflictError,
    UnauthorizedError,
)
from invencea.extensions import db
from invencea.models import ActiveSession, User
from invencea.roles import Role
from invencea.services import session_service
from invencea.time_utils import utcnow

from conftest import PASSWORD, auth_headers


def _session_count(user_id):
    return db.session.query(ActiveSession).filter_by(user_id=user_id).count()


class _FlakySession:
    """Delegates to the real session but fails any commit that writes a session row."""

    def __init__(self, real):
        self._real = real

    def __getattr__(self, name):
        return getattr(self._real, name)

    def commit(self):
        if any(isinstance(obj, ActiveSession) for obj in self._real.new):
            raise OperationalError("INSERT INTO active_sessions", {}, Exception("disk I/O error"))
        return self._real.commit()


# =============================================================================
# LOGIN
# =============================================================================


class TestPasswordLogin:

    def test_login_returns_token_and_records_session(self, admin):
        result = session_service.login("admin@aceis.local", PASSWORD)

        assert result.token
        assert result.user.id == admin.id
        assert result.session is not None
        row = db.session.query(ActiveSession).filter_by(user_id=admin.id).one()
        assert row.token_hash == session_service.hash_token(result.token)
        assert row.token_hash != result.token

    def test_email_is_case_insensitive(self, admin):
        result = session_service.login("  ADMIN@aceis.local ", PASSWORD)
        assert result.user.id == admin.id

    def test_wrong_password(self, admin):
        with pytest.raises(InvalidCredentialsError):
            session_service.login("admin@aceis.local", "WrongPassword1!")
        assert _session_count(admin.id) == 0

    def test_unknown_email_looks_like_wrong_password(self, admin):
        with pytest.raises(InvalidCredentialsError) as exc:
            session_service.login("nobody@aceis.local", PASSWORD)
        assert exc.value.status_code == 401

    @pytest.mark.parametrize("email", [None, "", "   "])
    def test_email_required(self, admin, email):
        with pytest.raises(BadRequestError):
            session_service.login(email, PASSWORD)


class TestScanLogin:

    def test_kiosk_scan_login_without_secret_configured(self, kiosk):
        result = session_service.login("kiosk@aceis.local")
        assert result.user.id == kiosk.id
        assert _session_count(kiosk.id) == 1

    def test_faculty_scan_login(self, faculty):
        result = session_service.login("prof@aceis.local")
        assert result.user.role_enum == Role.FACULTY

    def test_admin_cannot_scan_login(self, admin):
        with pytest.raises(RoleNotAllowedError) as exc:
            session_service.login("admin@aceis.local")
        assert exc.value.status_code == 403
        assert _session_count(admin.id) == 0

    def test_unknown_email(self, kiosk):
        with pytest.raises(NotFoundError):
            session_service.login("ghost@aceis.local")

    def test_secret_mismatch(self, app, kiosk, monkeypatch):
        monkeypatch.setitem(app.config, "SCAN_SECRET", "s3cret")
        with pytest.raises(ForbiddenError):
            session_service.login("kiosk@aceis.local", scan_secret="guess")
        with pytest.raises(ForbiddenError):
            session_service.login("kiosk@aceis.local")

    def test_secret_match(self, app, kiosk, monkeypatch):
        monkeypatch.setitem(app.config, "SCAN_SECRET", "s3cret")
        result = session_service.login("kiosk@aceis.local", scan_secret="s3cret")
        assert result.user.id == kiosk.id

    def test_secret_match_but_admin_role(self, app, admin, monkeypatch):
        monkeypatch.setitem(app.config, "SCAN_SECRET", "s3cret")
        with pytest.raises(RoleNotAllowedError):
            session_service.login("admin@aceis.local", scan_secret="s3cret")


# =============================================================================
# SINGLE ACTIVE SESSION
# =============================================================================


class TestSingleSession:

    def test_second_login_conflicts(self, admin):
        session_service.login("admin@aceis.local", PASSWORD)

        with pytest.raises(SessionConflictError) as exc:
            session_service.login("admin@aceis.local", PASSWORD)

        assert exc.value.status_code == 409
        body = exc.value.to_dict()
        assert body["message"] == "User already logged in elsewhere"
        assert body["active_user_name"] == "Ada Admin"
        assert body["active_user_email"] == "admin@aceis.local"
        assert _session_count(admin.id) == 1

    def test_login_after_logout(self, admin):
        first = session_service.login("admin@aceis.local", PASSWORD)
        session_service.logout(token=first.token)

        second = session_service.login("admin@aceis.local", PASSWORD)
        assert second.token != first.token
        assert _session_count(admin.id) == 1

    def test_expired_session_is_purged_on_login(self, admin):
        first = session_service.login("admin@aceis.local", PASSWORD)
        first.session.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        second = session_service.login("admin@aceis.local", PASSWORD)
        row = db.session.query(ActiveSession).filter_by(user_id=admin.id).one()
        assert row.token_hash == session_service.hash_token(second.token)

    def test_concurrent_insert_reported_as_conflict(self, admin, monkeypatch):
        """Another login commits between the pre-check and our insert."""
        real_issue = session_service.issue_token

        def racing_issue(user, *, issued_at, expires_at):
            db.session.add(ActiveSession(
                user_id=user.id,
                token_hash="0" * 64,
                created_at=issued_at,
                expires_at=expires_at,
            ))
            db.session.commit()
            return real_issue(user, issued_at=issued_at, expires_at=expires_at)

        monkeypatch.setattr(session_service, "issue_token", racing_issue)

        with pytest.raises(SessionConflictError) as exc:
            session_service.login("admin@aceis.local", PASSWORD)

        assert exc.value.extra["active_user_email"] == "admin@aceis.local"
        row = db.session.query(ActiveSession).filter_by(user_id=admin.id).one()
        assert row.token_hash == "0" * 64

    def test_storage_failure_still_issues_token(self, admin, monkeypatch):
        monkeypatch.setattr(session_service, "db", SimpleNamespace(session=_FlakySession(db.session)))

        result = session_service.login("admin@aceis.local", PASSWORD)

        assert result.token
        assert result.session is None
        assert _session_count(admin.id) == 0
        assert session_service.authenticate(result.token).id == admin.id


# =============================================================================
# LOGOUT & CLEANUP
# =============================================================================


class TestLogout:

    def test_requires_token_or_user_id(self, db_session):
        with pytest.raises(BadRequestError):
            session_service.logout()

    def test_logout_by_user_id(self, admin):
        session_service.login("admin@aceis.local", PASSWORD)
        assert session_service.logout(user_id=admin.id) == 1
        assert _session_count(admin.id) == 0

    def test_logout_is_idempotent(self, admin):
        result = session_service.login("admin@aceis.local", PASSWORD)
        assert session_service.logout(token=result.token) == 1
        assert session_service.logout(token=result.token) == 0

    def test_cleanup_only_removes_expired_rows(self, admin, kiosk):
        session_service.login("admin@aceis.local", PASSWORD)
        stale = session_service.login("kiosk@aceis.local").session
        stale.expires_at = utcnow() - timedelta(hours=1)
        db.session.commit()

        assert session_service.cleanup_expired_sessions() == 1
        assert _session_count(admin.id) == 1
        assert _session_count(kiosk.id) == 0


# =============================================================================
# REQUEST GUARD
# =============================================================================


class TestAuthenticate:

    def test_valid_token(self, admin):
        result = session_service.login("admin@aceis.local", PASSWORD)
        assert session_service.authenticate(result.token).id == admin.id

    def test_missing_token(self, db_session):
        with pytest.raises(UnauthorizedError):
            session_service.authenticate(None)

    def test_token_signed_with_other_secret(self, admin):
        forged = jwt.encode({"sub": str(admin.id)}, "not-the-server-secret-0123456789abcdef01234", algorithm="HS256")
        with pytest.raises(UnauthorizedError) as exc:
            session_service.authenticate(forged)
        assert exc.value.message == "Invalid token"

    def test_expired_token(self, admin):
        now = utcnow()
        token = session_service.issue_token(
            admin, issued_at=now - timedelta(hours=2), expires_at=now - timedelta(hours=1)
        )
        with pytest.raises(UnauthorizedError):
            session_service.authenticate(token)

    def test_token_for_deleted_user(self, branches):
        ghost = User(id=9999, email="ghost@aceis.local", role="admin",
                     branch_id=branches["ACEIS"].id, full_name="Ghost")
        now = utcnow()
        token = session_service.issue_token(ghost, issued_at=now, expires_at=now + timedelta(hours=1))
        with pytest.raises(UnauthorizedError) as exc:
            session_service.authenticate(token)
        assert exc.value.message == "User not found"

    def test_authorize_names_allowed_roles(self, kiosk):
        with pytest.raises(ForbiddenError) as exc:
            session_service.authorize(kiosk, (Role.ADMIN, Role.FACULTY))
        assert exc.value.extra["allowed_roles"] == ["admin", "faculty"]
        assert session_service.authorize(kiosk, (Role.KIOSK,)) == Role.KIOSK


# =============================================================================
# HTTP SURFACE
# =============================================================================


class TestAuthRoutes:

    def test_login_route(self, client, admin):
        res = client.post("/api/auth/login", json={"email": "admin@aceis.local", "password": PASSWORD})
        assert res.status_code == 200
        body = res.get_json()
        assert body["token"]
        assert body["user"]["role"] == "admin"
        assert body["user"]["branch"] == "ACEIS"
        assert body["expires_at"].endswith("Z")

    def test_login_route_conflict(self, client, admin):
        payload = {"email": "admin@aceis.local", "password": PASSWORD}
        assert client.post("/api/auth/login", json=payload).status_code == 200

        res = client.post("/api/auth/login", json=payload)
        assert res.status_code == 409
        assert res.get_json()["active_user_name"] == "Ada Admin"

    def test_login_route_bad_password(self, client, admin):
        res = client.post("/api/auth/login", json={"email": "admin@aceis.local", "password": "nope"})
        assert res.status_code == 401

    def test_scan_login_route_uses_header(self, app, client, kiosk, monkeypatch):
        monkeypatch.setitem(app.config, "SCAN_SECRET", "s3cret")
        res = client.post("/api/auth/login", json={"email": "kiosk@aceis.local"})
        assert res.status_code == 403

        res = client.post(
            "/api/auth/login",
            json={"email": "kiosk@aceis.local"},
            headers={"x-scan-secret": "s3cret"},
        )
        assert res.status_code == 200

    def test_logout_route_and_me(self, client, admin):
        token = client.post(
            "/api/auth/login", json={"email": "admin@aceis.local", "password": PASSWORD}
        ).get_json()["token"]

        me = client.get("/api/auth/me", headers=auth_headers(token))
        assert me.status_code == 200
        assert me.get_json()["user"]["email"] == "admin@aceis.local"

        for _ in range(2):
            res = client.post("/api/auth/logout", headers=auth_headers(token))
            assert res.status_code == 200
            assert res.get_json() == {"success": True}

    def test_logout_route_requires_something(self, client, db_session):
        res = client.post("/api/auth/logout", json={})
        assert res.status_code == 400
