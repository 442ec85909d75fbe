"""
HTTP surface tests.

Verifies:
- Unauthenticated requests return 401
- Role restrictions return 403
- Inventory, borrow request, dashboard, audit and report endpoints
- Errors come back as {"message": ...} with the mapped status code
"""

import csv
import io

import pytest

from invencea.extensions import db
from invencea.models import BorrowRequest

from conftest import auth_headers, token_for


ACEIS_META = {"item_name": "Oscilloscope", "item_type": "Equipment"}


# =============================================================================
# UNAUTHENTICATED ACCESS — 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/inventory"),
            ("POST", "/api/inventory"),
            ("PUT", "/api/inventory/1"),
            ("DELETE", "/api/inventory/1"),
            ("GET", "/api/inventory/1/history"),
            ("POST", "/api/inventory/1/borrow"),
            ("POST", "/api/inventory/1/return"),
            ("POST", "/api/borrow-requests"),
            ("GET", "/api/borrow-requests"),
            ("GET", "/api/borrow-requests/mine"),
            ("POST", "/api/borrow-requests/1/status"),
            ("GET", "/api/borrow-requests/issued"),
            ("GET", "/api/borrow-requests/return-options"),
            ("POST", "/api/borrow-requests/return-by-barcode"),
            ("GET", "/api/dashboard"),
            ("GET", "/api/audit-logs"),
            ("GET", "/api/reports"),
            ("GET", "/api/reports/export/csv"),
            ("DELETE", "/api/reports"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        res = client.open(path, method=method, json={})
        assert res.status_code == 401
        assert res.get_json()["message"] == "Unauthorized"

    def test_garbage_token(self, client, db_session):
        res = client.get("/api/inventory", headers=auth_headers("not-a-jwt"))
        assert res.status_code == 401
        assert res.get_json()["message"] == "Invalid token"


# =============================================================================
# ROLE RESTRICTIONS — 403
# =============================================================================


class TestKioskDenied:
    """Kiosk accounts can browse and file requests, nothing else."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/inventory"),
            ("PUT", "/api/inventory/1"),
            ("DELETE", "/api/inventory/1"),
            ("POST", "/api/inventory/1/borrow"),
            ("GET", "/api/borrow-requests"),
            ("POST", "/api/borrow-requests/1/status"),
            ("POST", "/api/borrow-requests/return-by-barcode"),
            ("GET", "/api/dashboard"),
            ("GET", "/api/audit-logs"),
            ("GET", "/api/reports"),
        ],
    )
    def test_admin_only(self, client, kiosk_headers, method, path):
        res = client.open(path, method=method, json={}, headers=kiosk_headers)
        assert res.status_code == 403
        assert res.get_json()["allowed_roles"] == ["admin"]

    def test_kiosk_can_browse(self, client, kiosk_headers, item):
        res = client.get("/api/inventory", headers=kiosk_headers)
        assert res.status_code == 200
        assert [r["barcode"] for r in res.get_json()] == [item.barcode]


# =============================================================================
# INVENTORY
# =============================================================================


class TestInventoryRoutes:

    def test_crud_round(self, client, admin_headers):
        res = client.post("/api/inventory", headers=admin_headers, json={
            "barcode": "OSC-9", "total_quantity": 4, "unserviceable_quantity": 1, "metadata": ACEIS_META,
        })
        assert res.status_code == 201
        created = res.get_json()
        assert created["available_quantity"] == 3

        res = client.put(f"/api/inventory/{created['id']}", headers=admin_headers, json={"total_quantity": 6})
        assert res.status_code == 200
        assert res.get_json()["available_quantity"] == 5

        res = client.get(f"/api/inventory/{created['id']}/history", headers=admin_headers)
        assert [h["action"] for h in res.get_json()] == ["UPDATE", "CREATE"]

        res = client.delete(f"/api/inventory/{created['id']}", headers=admin_headers)
        assert res.status_code == 200
        assert res.get_json()["message"] == "Inventory deleted successfully"

    def test_validation_error_body(self, client, admin_headers):
        res = client.post("/api/inventory", headers=admin_headers, json={
            "barcode": "X", "total_quantity": 1, "metadata": {"item_name": "Scope"},
        })
        assert res.status_code == 400
        assert res.get_json()["missing_fields"] == ["item_type"]

    def test_duplicate_barcode(self, client, admin_headers, item):
        res = client.post("/api/inventory", headers=admin_headers, json={
            "barcode": item.barcode, "total_quantity": 1, "metadata": ACEIS_META,
        })
        assert res.status_code == 409

    def test_delete_borrowed(self, client, admin_headers, make_item):
        item = make_item(total=2, borrowed=1)
        res = client.delete(f"/api/inventory/{item.id}", headers=admin_headers)
        assert res.status_code == 409

    def test_other_branch_item_is_404(self, client, other_admin, item):
        headers = auth_headers(token_for(other_admin))
        res = client.put(f"/api/inventory/{item.id}", headers=headers, json={"total_quantity": 20})
        assert res.status_code == 404

    def test_direct_borrow_and_return(self, client, admin_headers, item):
        res = client.post(f"/api/inventory/{item.id}/borrow", headers=admin_headers, json={"quantity": 4})
        assert res.status_code == 200
        assert res.get_json()["available_quantity"] == 6

        res = client.post(f"/api/inventory/{item.id}/borrow", headers=admin_headers, json={"quantity": 7})
        assert res.status_code == 400
        assert res.get_json()["available"] == 6

        res = client.post(f"/api/inventory/{item.id}/return", headers=admin_headers, json={"quantity": 4})
        assert res.get_json()["item"]["borrowed_quantity"] == 0

    def test_admin_cross_branch_listing(self, client, admin_headers, branches):
        res = client.get(f"/api/inventory?branch_id={branches['ECEIS'].id}", headers=admin_headers)
        assert res.status_code == 403

    def test_faculty_unknown_branch(self, client, faculty_headers):
        res = client.get("/api/inventory?branch_id=999", headers=faculty_headers)
        assert res.status_code == 400
        assert res.get_json()["message"] == "Invalid branch"


# =============================================================================
# BORROW REQUESTS
# =============================================================================


class TestBorrowRequestRoutes:

    def test_kiosk_to_return_flow(self, client, kiosk_headers, admin_headers, item):
        res = client.post("/api/borrow-requests", headers=kiosk_headers, json={
            "requester_name": "Juan Dela Cruz",
            "requester_id": "2021-12345",
            "items": [{"item_id": item.id, "quantity": 3}],
        })
        assert res.status_code == 201
        request_id = res.get_json()["id"]

        mine = client.get("/api/borrow-requests/mine", headers=kiosk_headers).get_json()
        assert [r["id"] for r in mine] == [request_id]
        assert mine[0]["items"][0]["item_name"] == "Oscilloscope"

        for status in ("APPROVED", "ISSUED"):
            res = client.post(
                f"/api/borrow-requests/{request_id}/status", headers=admin_headers, json={"status": status}
            )
            assert res.status_code == 200
            assert res.get_json()["status"] == status

        issued = client.get("/api/borrow-requests/issued", headers=admin_headers).get_json()["issued"]
        assert issued[0]["remaining_quantity"] == 3

        options = client.get(
            f"/api/borrow-requests/return-options?barcode={item.barcode}", headers=admin_headers
        ).get_json()
        assert options["options"][0]["borrow_request_id"] == request_id

        payload = {"barcode": item.barcode, "quantity": 3, "client_event_id": "evt-http"}
        res = client.post("/api/borrow-requests/return-by-barcode", headers=admin_headers, json=payload)
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "processed"
        assert body["request"]["status"] == "RETURNED"
        assert body["processed_at"].endswith("Z")

        res = client.post("/api/borrow-requests/return-by-barcode", headers=admin_headers, json=payload)
        assert res.status_code == 200
        assert res.get_json()["status"] == "already_processed"
        assert "processed_at" not in res.get_json()

    def test_kiosk_cannot_reference_other_branch_item(self, client, kiosk_headers, make_item):
        foreign = make_item(barcode="E-1", name="ECEIS Secret Scope", total=7, branch_code="ECEIS")

        res = client.post("/api/borrow-requests", headers=kiosk_headers, json={
            "requester_name": "Juan Dela Cruz",
            "requester_id": "2021-12345",
            "items": [{"item_id": foreign.id, "quantity": 1}],
        })
        assert res.status_code == 404
        assert res.get_json()["item_id"] == foreign.id

        mine = client.get("/api/borrow-requests/mine", headers=kiosk_headers)
        assert mine.get_json() == []
        assert "ECEIS Secret Scope" not in mine.get_data(as_text=True)

    def test_invalid_transition_body(self, client, admin_headers, branches, item, make_request):
        req = make_request(branches["ACEIS"], [(item.id, 1)])
        res = client.post(f"/api/borrow-requests/{req.id}/status", headers=admin_headers, json={"status": "RETURNED"})
        assert res.status_code == 400
        body = res.get_json()
        assert body["from_status"] == "PENDING"
        assert body["to_status"] == "RETURNED"

    def test_insufficient_stock_body(self, client, admin_headers, branches, make_item, make_request):
        item = make_item(total=2)
        req = make_request(branches["ACEIS"], [(item.id, 5)])
        res = client.post(f"/api/borrow-requests/{req.id}/status", headers=admin_headers, json={"status": "APPROVED"})
        assert res.status_code == 400
        body = res.get_json()
        assert (body["available"], body["requested"]) == (2, 5)

    def test_admin_mine_is_forbidden(self, client, admin_headers):
        res = client.get("/api/borrow-requests/mine", headers=admin_headers)
        assert res.status_code == 403

    def test_list_with_filters(self, client, admin_headers, branches, item, make_request):
        make_request(branches["ACEIS"], [(item.id, 1)], requester_name="Ana Cruz")
        make_request(branches["ACEIS"], [(item.id, 1)], requester_name="Ben Reyes")

        res = client.get("/api/borrow-requests?search=ben&enrich=false", headers=admin_headers)
        assert res.status_code == 200
        assert [r["requester_name"] for r in res.get_json()] == ["Ben Reyes"]

        res = client.get("/api/borrow-requests?limit=abc", headers=admin_headers)
        assert res.status_code == 400


# =============================================================================
# DASHBOARD / AUDIT / REPORTS
# =============================================================================


class TestDashboardAndAudit:

    def test_dashboard(self, client, admin, admin_headers, branches, item, make_request):
        client.post(f"/api/inventory/{item.id}/borrow", headers=admin_headers, json={"quantity": 1})
        make_request(branches["ACEIS"], [(item.id, 1)])

        res = client.get("/api/dashboard", headers=admin_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["pendingBorrowCount"] == 1
        assert body["latestItem"]["barcode"] == item.barcode
        assert [a["action"] for a in body["activities"]] == ["BORROW"]
        assert body["current_user"]["id"] == admin.id

    def test_audit_logs(self, client, admin_headers, item):
        client.post(f"/api/inventory/{item.id}/borrow", headers=admin_headers, json={"quantity": 1})
        client.post(f"/api/inventory/{item.id}/return", headers=admin_headers, json={"quantity": 1})

        res = client.get("/api/audit-logs?limit=1", headers=admin_headers)
        assert [a["action"] for a in res.get_json()] == ["RETURN"]

        res = client.get("/api/audit-logs?limit=zero", headers=admin_headers)
        assert res.status_code == 400


class TestReports:

    @pytest.fixture
    def finished(self, admin, make_user, branches, item, make_request):
        colleague = make_user("second@aceis.local", "admin", "ACEIS", "Second Admin")
        mine = make_request(branches["ACEIS"], [(item.id, 1)], status="RETURNED",
                            requester_name="Mine", approved_by=admin.id)
        theirs = make_request(branches["ACEIS"], [(item.id, 1)], status="DENIED",
                              requester_name="Theirs", approved_by=colleague.id)
        open_req = make_request(branches["ACEIS"], [(item.id, 1)], requester_name="Open")
        return mine, theirs, open_req

    def test_report_rows_scope(self, client, admin_headers, finished):
        res = client.get("/api/reports", headers=admin_headers)
        assert res.status_code == 200
        assert {r["requester_name"] for r in res.get_json()} == {"Mine", "Open"}

    def test_csv_export(self, client, admin_headers, finished):
        res = client.get("/api/reports/export/csv", headers=admin_headers)
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        assert "attachment" in res.headers["Content-Disposition"]

        rows = list(csv.reader(io.StringIO(res.get_data(as_text=True))))
        assert rows[0][0] == "Borrower"
        assert {r[0] for r in rows[1:]} == {"Mine", "Open"}
        assert "Oscilloscope (1)" in rows[1][2]

    def test_delete_requires_window(self, client, admin_headers, finished):
        res = client.delete("/api/reports", headers=admin_headers)
        assert res.status_code == 400

    def test_delete_only_finished_rows(self, client, admin_headers, finished):
        mine, theirs, open_req = finished
        res = client.delete("/api/reports?from=2000-01-01", headers=admin_headers)

        assert res.status_code == 200
        assert res.get_json()["deleted"] == 1
        remaining = {r.requester_name for r in db.session.query(BorrowRequest).all()}
        assert remaining == {"Theirs", "Open"}

    def test_bad_date(self, client, admin_headers, finished):
        res = client.get("/api/reports?from=01/02/2026", headers=admin_headers)
        assert res.status_code == 400

    def test_report_items_stay_in_branch(self, client, admin_headers, branches, make_item, make_request):
        foreign = make_item(barcode="E-1", name="ECEIS Secret Scope", branch_code="ECEIS")
        make_request(branches["ACEIS"], [(foreign.id, 1)], requester_name="Legacy")

        res = client.get("/api/reports", headers=admin_headers)
        assert res.get_json()[0]["items"][0]["item_name"] == "Unknown"
        assert res.get_json()[0]["items"][0]["barcode"] is None


# =============================================================================
# PUBLIC ENDPOINTS
# =============================================================================


class TestPublicEndpoints:

    def test_health(self, client, db_session):
        res = client.get("/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "healthy"

    def test_cors_allowed_origin(self, client, db_session):
        res = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert res.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "x-scan-secret" in res.headers["Access-Control-Allow-Headers"]

    def test_cors_unknown_origin(self, client, db_session):
        res = client.get("/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in res.headers
