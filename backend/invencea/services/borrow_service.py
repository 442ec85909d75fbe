# Overview: Service-layer operations for borrow requests; the lifecycle state machine.

"""
Borrow Request Lifecycle

================================================================================
STATE MACHINE
================================================================================

    PENDING  -> APPROVED | DENIED
    APPROVED -> ISSUED   | DENIED
    ISSUED   -> RETURNED
    RETURNED    (terminal)
    DENIED      (terminal)

RULES:
1. Every other (from, to) pair fails with InvalidTransitionError.
2. APPROVED checks availability for every line first. One short line fails
   the whole request (InsufficientStockError) and it stays PENDING.
3. ISSUED moves each line's quantity from available to borrowed. All lines
   and the status change commit in ONE transaction; any failing line rolls
   the whole issue back.
4. A manual ISSUED -> RETURNED closes out every outstanding line in the same
   transaction (remaining quantity goes back to available).
5. Partial returns go through return_service, which flips the request to
   RETURNED once the last line is fully returned.

Audit: BORROW on create and on ISSUED, UPDATE on every other transition.
================================================================================
"""

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import (
    BadRequestError,
    ForbiddenError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    ServiceError,
)
from ..models import BorrowRequest, BorrowRequestItem, InventoryItem, User
from ..roles import Role
from . import audit_service
from .branch_service import resolve_actor_branch
from .concurrency import locked, run_atomic
from .inventory_service import (
    TX_ISSUE,
    TX_RETURN,
    adjust,
    compute_available,
    lock_item,
    parse_quantity,
    record_transaction,
)
from invencea.time_utils import local_day_bounds, to_utc_z, utcnow


PENDING = "PENDING"
APPROVED = "APPROVED"
ISSUED = "ISSUED"
RETURNED = "RETURNED"
DENIED = "DENIED"

VALID_STATUSES = (PENDING, APPROVED, ISSUED, RETURNED, DENIED)

VALID_TRANSITIONS = {
    PENDING: frozenset({APPROVED, DENIED}),
    APPROVED: frozenset({ISSUED, DENIED}),
    ISSUED: frozenset({RETURNED}),
    RETURNED: frozenset(),
    DENIED: frozenset(),
}

# School ID: 4 digits, hyphen, 5 or 6 digits (e.g. 2021-12345)
SCHOOL_ID_PATTERN = re.compile(r"^\d{4}-\d{5,6}$")


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


# =============================================================================
# CREATE
# =============================================================================

def _parse_lines(items) -> list[tuple[int, int]]:
    if not isinstance(items, list) or not items:
        raise BadRequestError("At least one item is required")

    lines = []
    for raw in items:
        if not isinstance(raw, dict) or raw.get("item_id") in (None, ""):
            raise BadRequestError("Each item must have item_id")
        try:
            item_id = int(raw["item_id"])
        except (TypeError, ValueError):
            raise BadRequestError("item_id must be an integer")
        try:
            quantity = parse_quantity(raw.get("quantity"), "quantity", minimum=1, error=BadRequestError)
        except BadRequestError:
            raise BadRequestError("Each item must have quantity >= 1", item_id=item_id)
        lines.append((item_id, quantity))
    return lines


def _clean_requester_id(actor_role: Role, value) -> str | None:
    requester_id = str(value).strip() if value not in (None, "") else ""

    if actor_role in (Role.KIOSK, Role.ADMIN):
        if not requester_id:
            raise BadRequestError("Student ID is required for kiosk/admin")
        if not SCHOOL_ID_PATTERN.match(requester_id):
            raise BadRequestError("Student ID must match format XXXX-XXXXX or XXXX-XXXXXX")

    return requester_id or None


def create_request(actor: User, data: dict) -> BorrowRequest:
    """
    File a new PENDING borrow request.

    Kiosk accounts always file in their own branch (a supplied branch_id is
    ignored); everyone else may name a branch or fall back to their own.

    Raises:
        BadRequestError: missing name/items, bad quantities, bad student ID
        ForbiddenError: admin naming another branch
        NotFoundError: an item_id that is not inventory of the branch
    """
    data = data or {}
    role = actor.role_enum

    requester_name = data.get("requester_name")
    if not isinstance(requester_name, str) or not requester_name.strip():
        raise BadRequestError("Requester name is required")

    lines = _parse_lines(data.get("items"))

    if role == Role.KIOSK:
        branch = resolve_actor_branch(actor, None)
    else:
        branch = resolve_actor_branch(actor, data.get("branch_id"))

    requester_id = _clean_requester_id(role, data.get("requester_id"))

    item_ids = {item_id for item_id, _ in lines}
    known = {
        row.id
        for row in db.session.query(InventoryItem.id).filter(
            InventoryItem.branch_id == branch.id,
            InventoryItem.id.in_(item_ids),
        ).all()
    }
    for item_id, _ in lines:
        if item_id not in known:
            raise NotFoundError(f"Inventory item not found: {item_id}", item_id=item_id)

    note = data.get("note")
    if note is not None:
        note = str(note).strip() or None

    req = BorrowRequest(
        branch_id=branch.id,
        kiosk_id=actor.id if role == Role.KIOSK else None,
        requester_name=requester_name.strip(),
        requester_id=requester_id,
        note=note,
        status=PENDING,
    )
    for position, (item_id, quantity) in enumerate(lines):
        req.lines.append(BorrowRequestItem(
            position=position,
            item_id=item_id,
            quantity=quantity,
            returned_quantity=0,
        ))

    db.session.add(req)
    db.session.commit()

    audit_service.log_audit(
        action=audit_service.ACTION_BORROW,
        branch_id=req.branch_id,
        borrow_request_id=req.id,
        actor=actor,
        snapshot={
            "borrow_request_id": req.id,
            "status": req.status,
            "items": [line.to_dict() for line in req.lines],
            "note": req.note,
        },
    )
    return req


# =============================================================================
# READS
# =============================================================================

def get_request(request_id) -> BorrowRequest | None:
    try:
        request_id = int(request_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(BorrowRequest, request_id)


def branch_items(requests: list[BorrowRequest]) -> list[InventoryItem]:
    """Inventory rows referenced by the requests, each restricted to its request's branch."""
    wanted = {(req.branch_id, line.item_id) for req in requests for line in req.lines}
    if not wanted:
        return []
    branch_ids = {branch_id for branch_id, _ in wanted}
    item_ids = {item_id for _, item_id in wanted}
    rows = db.session.query(InventoryItem).filter(
        InventoryItem.branch_id.in_(branch_ids),
        InventoryItem.id.in_(item_ids),
    ).all()
    return [item for item in rows if (item.branch_id, item.id) in wanted]


def enrich_requests(requests: list[BorrowRequest]) -> list[dict]:
    """
    to_dict() rows whose items carry the current item_name and an
    inventory_meta block (quantities) from one batched inventory lookup.
    Items outside the request's branch are never joined in.
    """
    inventory = {}
    for item in branch_items(requests):
        inventory[(item.branch_id, item.id)] = {
            "id": item.id,
            "item_name": item.item_name,
            "total_quantity": item.total_quantity,
            "borrowed_quantity": item.borrowed_quantity,
            "unserviceable_quantity": item.unserviceable_quantity,
            "available_quantity": compute_available(
                item.total_quantity, item.borrowed_quantity, item.unserviceable_quantity
            ),
        }

    rows = []
    for req in requests:
        row = req.to_dict()
        for entry in row["items"]:
            meta = inventory.get((req.branch_id, entry["item_id"]))
            entry["item_name"] = meta["item_name"] if meta else None
            entry["inventory_meta"] = meta
        rows.append(row)
    return rows


def list_mine(actor: User, branch_id=None) -> list[BorrowRequest]:
    """
    Requests the actor filed, newest first.

    kiosk:   rows whose kiosk_id is the kiosk's own id
    faculty: rows whose requester_id is the faculty id, or whose
             requester_name matches the faculty display name
    """
    role = actor.role_enum

    if role == Role.KIOSK:
        branch = resolve_actor_branch(actor, None)
        q = db.session.query(BorrowRequest).filter(
            BorrowRequest.branch_id == branch.id,
            BorrowRequest.kiosk_id == actor.id,
        )
    elif role == Role.FACULTY:
        branch = resolve_actor_branch(actor, branch_id)
        matches = [BorrowRequest.requester_id == str(actor.id)]
        if actor.full_name:
            matches.append(BorrowRequest.requester_name == actor.full_name)
        q = db.session.query(BorrowRequest).filter(
            BorrowRequest.branch_id == branch.id,
            or_(*matches),
        )
    else:
        raise ForbiddenError("Not allowed")

    return q.order_by(BorrowRequest.created_at.desc(), BorrowRequest.id.desc()).all()


def _parse_paging(limit, offset) -> tuple[int, int]:
    default_limit = current_app.config.get("BORROW_LIST_DEFAULT_LIMIT", 200)
    max_limit = current_app.config.get("BORROW_LIST_MAX_LIMIT", 2000)

    try:
        limit = default_limit if limit in (None, "") else int(limit)
        offset = 0 if offset in (None, "") else int(offset)
    except (TypeError, ValueError):
        raise BadRequestError("limit and offset must be integers")

    if limit < 1 or offset < 0:
        raise BadRequestError("limit must be >= 1 and offset >= 0")
    return min(limit, max_limit), offset


def list_all(
    actor: User,
    *,
    status: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    search: str | None = None,
    limit=None,
    offset=None,
    enrich: bool = True,
) -> list[dict]:
    """Admin listing of the actor's branch, newest first, paginated."""
    branch = resolve_actor_branch(actor, None)
    limit, offset = _parse_paging(limit, offset)
    tz_name = current_app.config.get("REPORT_TIMEZONE", "UTC")

    q = db.session.query(BorrowRequest).filter(BorrowRequest.branch_id == branch.id)

    if status:
        q = q.filter(BorrowRequest.status == status.strip().upper())

    try:
        start = local_day_bounds(date_from, tz_name)
        end = local_day_bounds(date_to, tz_name, end=True)
    except ValueError:
        raise BadRequestError("from/to must be YYYY-MM-DD or ISO-8601 datetimes")
    if start is not None:
        q = q.filter(BorrowRequest.created_at >= start)
    if end is not None:
        q = q.filter(BorrowRequest.created_at <= end)

    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        q = q.filter(or_(
            BorrowRequest.requester_name.ilike(pattern),
            BorrowRequest.requester_id.ilike(pattern),
        ))

    rows = q.order_by(
        BorrowRequest.created_at.desc(), BorrowRequest.id.desc()
    ).offset(offset).limit(limit).all()

    if enrich:
        return enrich_requests(rows)
    return [r.to_dict() for r in rows]


def list_issued_items(actor: User) -> list[dict]:
    """Every outstanding line of the branch's ISSUED requests, oldest issue first."""
    branch = resolve_actor_branch(actor, None)
    requests = db.session.query(BorrowRequest).filter(
        BorrowRequest.branch_id == branch.id,
        BorrowRequest.status == ISSUED,
    ).order_by(BorrowRequest.issued_at.asc(), BorrowRequest.id.asc()).all()

    items = {item.id: item for item in branch_items(requests)}

    issued = []
    for req in requests:
        for line in req.lines:
            if line.remaining_quantity <= 0:
                continue
            item = items.get(line.item_id)
            issued.append({
                "borrow_request_id": req.id,
                "requester_name": req.requester_name,
                "requester_id": req.requester_id,
                "item_id": line.item_id,
                "item_name": item.item_name if item else None,
                "barcode": item.barcode if item else None,
                "quantity": line.quantity,
                "returned_quantity": line.returned_quantity,
                "remaining_quantity": line.remaining_quantity,
                "issued_at": to_utc_z(req.issued_at),
            })
    return issued


# =============================================================================
# TRANSITIONS
# =============================================================================

def _check_availability(req: BorrowRequest) -> None:
    """All-or-nothing availability check run before APPROVED."""
    requested = {}
    for line in req.lines:
        requested[line.item_id] = requested.get(line.item_id, 0) + line.quantity

    for item_id, quantity in requested.items():
        item = db.session.query(InventoryItem).filter(
            InventoryItem.id == item_id,
            InventoryItem.branch_id == req.branch_id,
        ).first()
        if item is None:
            raise NotFoundError(f"Inventory item not found: {item_id}", item_id=item_id)

        available = compute_available(
            item.total_quantity, item.borrowed_quantity, item.unserviceable_quantity
        )
        if quantity > available:
            raise InsufficientStockError(
                item_id=item_id,
                item_name=item.item_name,
                requested=quantity,
                available=available,
            )


def _issue_lines(req: BorrowRequest, actor: User) -> None:
    for line in req.lines:
        item = lock_item(line.item_id, req.branch_id)
        if item is None:
            raise NotFoundError(f"Inventory item not found: {line.item_id}", item_id=line.item_id)
        adjust(item, delta_borrowed=line.quantity)
        record_transaction(item, TX_ISSUE, line.quantity, actor=actor, borrow_request_id=req.id)


def _close_out_lines(req: BorrowRequest, actor: User) -> None:
    for line in req.lines:
        remaining = line.remaining_quantity
        if remaining <= 0:
            continue
        item = lock_item(line.item_id, req.branch_id)
        if item is not None:
            adjust(item, delta_borrowed=-min(remaining, item.borrowed_quantity))
            record_transaction(item, TX_RETURN, remaining, actor=actor, borrow_request_id=req.id)
        line.returned_quantity = line.quantity


def transition(actor: User, request_id, next_status) -> BorrowRequest:
    """
    Drive a request through the state machine.

    Raises:
        NotFoundError: request (or a referenced item) missing
        ForbiddenError: request belongs to another branch
        BadRequestError: status is not a lifecycle state
        InvalidTransitionError: move not in VALID_TRANSITIONS
        InsufficientStockError: approval/issue would oversell
    """
    target = next_status.strip().upper() if isinstance(next_status, str) else None
    if not target:
        raise BadRequestError("Request id and status are required")
    if target not in VALID_STATUSES:
        raise BadRequestError(f"Invalid status: {next_status}", allowed=list(VALID_STATUSES))

    try:
        request_pk = int(request_id)
    except (TypeError, ValueError):
        raise NotFoundError("Borrow request not found")

    def _op():
        req = locked(
            db.session.query(BorrowRequest).filter(BorrowRequest.id == request_pk)
        ).first()
        if req is None:
            raise NotFoundError("Borrow request not found")
        if req.branch_id != actor.branch_id:
            raise ForbiddenError("Unauthorized branch access")

        current = req.status
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Invalid transition {current} -> {target}",
                from_status=current,
                to_status=target,
            )

        try:
            if target == APPROVED:
                _check_availability(req)
            elif target == ISSUED:
                _issue_lines(req, actor)
            elif target == RETURNED:
                _close_out_lines(req, actor)
        except ServiceError:
            db.session.rollback()
            raise

        now = utcnow()
        if target == APPROVED and not req.approved_by:
            req.approved_at = now
            req.approved_by = actor.id
        elif target == ISSUED:
            req.issued_at = now
            req.issued_by = actor.id
        elif target == RETURNED:
            req.returned_at = now
            req.returned_by = actor.id

        req.status = target
        req.admin_id = actor.id
        db.session.commit()
        return req

    req = run_atomic(_op, f"Transition to {target}")

    audit_service.log_audit(
        action=audit_service.ACTION_BORROW if target == ISSUED else audit_service.ACTION_UPDATE,
        branch_id=req.branch_id,
        borrow_request_id=req.id,
        actor=actor,
        snapshot={
            "borrow_request_id": req.id,
            "status": req.status,
            "items": [line.to_dict() for line in req.lines],
        },
    )
    return req
