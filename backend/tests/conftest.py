"""
Pytest fixtures for invencea backend tests.

Provides test database setup, one branch per department, accounts for each
role, inventory factories and bearer-token helpers.
"""

from datetime import timedelta

import bcrypt
import pytest

from invencea import create_app
from invencea.extensions import db
from invencea.models import BorrowRequest, BorrowRequestItem, InventoryItem, User
from invencea.services import branch_service, session_service
from invencea.services.inventory_service import compute_available
from invencea.time_utils import utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'JWT_SECRET': 'test-jwt-secret-0123456789abcdef0123456789',
        'SCAN_SECRET': None,
        'REPORT_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# BRANCHES & ACCOUNTS
# =============================================================================

@pytest.fixture(scope='function')
def branches(db_session):
    """ACEIS, ECEIS and CPEIS rows keyed by code."""
    branch_service.ensure_default_branches()
    return {b.code: b for b in branch_service.list_branches()}


@pytest.fixture(scope='function')
def make_user(db_session, branches):
    """Factory for accounts. Uses a cheap bcrypt cost so the suite stays fast."""
    def _make(email, role, branch_code="ACEIS", full_name=None, password=PASSWORD):
        user = User(
            email=email,
            password_hash=bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8'),
            role=role,
            branch_id=branches[branch_code].id,
            full_name=full_name or email.split("@")[0],
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    """ACEIS admin."""
    return make_user("admin@aceis.local", "admin", "ACEIS", "Ada Admin")


@pytest.fixture(scope='function')
def kiosk(make_user):
    """ACEIS kiosk."""
    return make_user("kiosk@aceis.local", "kiosk", "ACEIS", "ACEIS Kiosk")


@pytest.fixture(scope='function')
def faculty(make_user):
    """Faculty member affiliated with ACEIS."""
    return make_user("prof@aceis.local", "faculty", "ACEIS", "Prof Fermin")


@pytest.fixture(scope='function')
def other_admin(make_user):
    """ECEIS admin, used for cross-branch checks."""
    return make_user("admin@eceis.local", "admin", "ECEIS", "Eli Admin")


@pytest.fixture(scope='function')
def cpeis_admin(make_user):
    return make_user("admin@cpeis.local", "admin", "CPEIS", "Cora Admin")


# =============================================================================
# INVENTORY & REQUESTS
# =============================================================================

@pytest.fixture(scope='function')
def make_item(db_session, branches):
    """Insert an inventory row directly (no audit), quantities kept balanced."""
    def _make(barcode="OSC-001", name="Oscilloscope", total=10, borrowed=0,
              unserviceable=0, branch_code="ACEIS", metadata=None):
        item = InventoryItem(
            branch_id=branches[branch_code].id,
            barcode=barcode,
            item_name=name,
            item_metadata=metadata or {"item_name": name, "item_type": "Equipment"},
            total_quantity=total,
            borrowed_quantity=borrowed,
            unserviceable_quantity=unserviceable,
            available_quantity=compute_available(total, borrowed, unserviceable),
        )
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def item(make_item):
    return make_item()


@pytest.fixture(scope='function')
def make_request(db_session):
    """Insert a borrow request directly in the given status."""
    def _make(branch, lines, status="PENDING", requester_name="Juan Dela Cruz",
              requester_id="2021-12345", **fields):
        req = BorrowRequest(
            branch_id=branch.id,
            requester_name=requester_name,
            requester_id=requester_id,
            status=status,
            **fields,
        )
        for position, (item_id, quantity) in enumerate(lines):
            req.lines.append(BorrowRequestItem(
                position=position, item_id=item_id, quantity=quantity, returned_quantity=0,
            ))
        db_session.add(req)
        db_session.commit()
        return req
    return _make


# =============================================================================
# AUTH HELPERS
# =============================================================================

def token_for(user, ttl=timedelta(hours=1)):
    """Bearer token for `user` without opening a session row."""
    now = utcnow()
    return session_service.issue_token(user, issued_at=now, expires_at=now + ttl)


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(token_for(admin))


@pytest.fixture(scope='function')
def kiosk_headers(kiosk):
    return auth_headers(token_for(kiosk))


@pytest.fixture(scope='function')
def faculty_headers(faculty):
    return auth_headers(token_for(faculty))
