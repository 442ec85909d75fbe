# Overview: Service-layer operations for reporting; dashboard, audit listing and borrow reports.

from __future__ import annotations

import csv
import io
from datetime import datetime

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import BadRequestError
from ..models import AuditLog, BorrowRequest, InventoryItem, User
from . import audit_service
from .borrow_service import DENIED, PENDING, RETURNED, branch_items
from .branch_service import resolve_actor_branch
from .inventory_service import standardized_row
from invencea.time_utils import local_day_bounds, to_utc_z


DASHBOARD_ACTIVITY_LIMIT = 5
DASHBOARD_PENDING_LIMIT = 6
AUDIT_LOG_DEFAULT_LIMIT = 100
AUDIT_LOG_MAX_LIMIT = 1000

TERMINAL_STATUSES = (RETURNED, DENIED)

CSV_COLUMNS = (
    "Borrower",
    "Borrower ID",
    "Items (item_name (qty))",
    "Status",
    "Requested At",
    "Approved At",
    "Issued At",
    "Returned At",
)


def dashboard(actor: User) -> dict:
    branch = resolve_actor_branch(actor, None)

    activities = audit_service.list_branch_logs(branch.id, limit=DASHBOARD_ACTIVITY_LIMIT)

    latest_item = db.session.query(InventoryItem).filter(
        InventoryItem.branch_id == branch.id
    ).order_by(InventoryItem.created_at.desc(), InventoryItem.id.desc()).first()

    pending = db.session.query(BorrowRequest).filter(
        BorrowRequest.branch_id == branch.id,
        BorrowRequest.status == PENDING,
    )
    pending_count = pending.count()
    pending_rows = pending.order_by(
        BorrowRequest.created_at.desc(), BorrowRequest.id.desc()
    ).limit(DASHBOARD_PENDING_LIMIT).all()

    role = actor.role_enum
    return {
        "activities": [
            {
                "id": a.id,
                "action": a.action,
                "created_at": to_utc_z(a.created_at),
                "snapshot": a.snapshot,
            }
            for a in activities
        ],
        "latestItem": standardized_row(latest_item) if latest_item else None,
        "pendingBorrowCount": pending_count,
        "pendingBorrows": [
            {
                "id": p.id,
                "requester_name": p.requester_name,
                "requester_id": p.requester_id,
                "created_at": to_utc_z(p.created_at),
                "items": [line.to_dict() for line in p.lines],
            }
            for p in pending_rows
        ],
        "current_user": {
            "id": actor.id,
            "full_name": actor.full_name,
            "role": role.value if role else actor.role,
        },
    }


def list_audit_logs(actor: User, limit=None) -> list[AuditLog]:
    branch = resolve_actor_branch(actor, None)
    try:
        limit = AUDIT_LOG_DEFAULT_LIMIT if limit in (None, "") else int(limit)
    except (TypeError, ValueError):
        raise BadRequestError("limit must be an integer")
    if limit < 1:
        raise BadRequestError("limit must be >= 1")
    return audit_service.list_branch_logs(branch.id, limit=min(limit, AUDIT_LOG_MAX_LIMIT))


# =============================================================================
# BORROW REPORTS
# =============================================================================

def _window(date_from: str | None, date_to: str | None) -> tuple[datetime | None, datetime | None]:
    """Report bounds are calendar days in REPORT_TIMEZONE, inclusive on both ends."""
    tz_name = current_app.config.get("REPORT_TIMEZONE", "UTC")
    try:
        return (
            local_day_bounds(date_from, tz_name),
            local_day_bounds(date_to, tz_name, end=True),
        )
    except ValueError:
        raise BadRequestError("from/to must be YYYY-MM-DD")


def _report_query(actor: User, date_from: str | None, date_to: str | None):
    # Only rows this admin approved, or that nobody has approved yet
    branch = resolve_actor_branch(actor, None)
    start, end = _window(date_from, date_to)

    q = db.session.query(BorrowRequest).filter(
        BorrowRequest.branch_id == branch.id,
        or_(BorrowRequest.approved_by == actor.id, BorrowRequest.approved_by.is_(None)),
    )
    if start is not None:
        q = q.filter(BorrowRequest.created_at >= start)
    if end is not None:
        q = q.filter(BorrowRequest.created_at <= end)
    return q


def report_rows(actor: User, date_from: str | None = None, date_to: str | None = None) -> list[dict]:
    requests = _report_query(actor, date_from, date_to).order_by(
        BorrowRequest.created_at.desc(), BorrowRequest.id.desc()
    ).all()

    items = {item.id: item for item in branch_items(requests)}

    reports = []
    for req in requests:
        reports.append({
            "id": req.id,
            "requester_name": req.requester_name or "-",
            "requester_id": req.requester_id,
            "status": (req.status or "").upper(),
            "requested_at": to_utc_z(req.created_at),
            "approved_at": to_utc_z(req.approved_at),
            "issued_at": to_utc_z(req.issued_at),
            "returned_at": to_utc_z(req.returned_at),
            "items": [
                {
                    "item_id": line.item_id,
                    "item_name": items[line.item_id].item_name if line.item_id in items else "Unknown",
                    "barcode": items[line.item_id].barcode if line.item_id in items else None,
                    "quantity": line.quantity,
                    "returned_quantity": line.returned_quantity,
                }
                for line in req.lines
            ],
        })
    return reports


def export_csv(actor: User, date_from: str | None = None, date_to: str | None = None) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_COLUMNS)

    for r in report_rows(actor, date_from, date_to):
        items = ", ".join(f"{i['item_name']} ({i['quantity']})" for i in r["items"]) or "-"
        writer.writerow([
            r["requester_name"],
            r["requester_id"] or "-",
            items,
            r["status"] or "-",
            r["requested_at"] or "-",
            r["approved_at"] or "-",
            r["issued_at"] or "-",
            r["returned_at"] or "-",
        ])

    return output.getvalue()


def delete_reports(actor: User, date_from: str | None = None, date_to: str | None = None) -> int:
    """
    Bulk-purge finished (RETURNED/DENIED) requests in the window.

    Open requests are never purged: their lines still account for stock.
    """
    if not date_from and not date_to:
        raise BadRequestError("Please provide 'from' or 'to' to delete reports")

    doomed = _report_query(actor, date_from, date_to).filter(
        BorrowRequest.status.in_(TERMINAL_STATUSES)
    ).all()

    for req in doomed:
        db.session.delete(req)
    db.session.commit()

    current_app.logger.info(
        "Deleted %s borrow report rows (branch_id=%s actor_id=%s)",
        len(doomed), actor.branch_id, actor.id,
    )
    return len(doomed)
