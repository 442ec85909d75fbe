# Overview: Service-layer operations for returns; barcode scan back to open loan lines.

"""
Return Reconciliation

Flow (return_by_barcode):
1. Clean the scanned barcode and resolve it to ONE item in the admin's
   branch: exact match first, then a substring match (scanner noise).
2. Collect candidate lines: every line of an ISSUED request in the branch for
   that item with remaining = quantity - returned_quantity > 0.
3. Pick the requested borrow_request_id, or the oldest-issued candidate.
4. Apply the return atomically, keyed by client_event_id.

IDEMPOTENCY:
- return_events.client_event_id is UNIQUE. The event row is inserted and
  flushed BEFORE any quantity moves, inside the same transaction as the
  quantity moves. A duplicate insert (retry, double submit, concurrent
  replay) fails the flush and is reported as already_processed. Exactly one
  submission ever changes state.
- A replay of a known event id short-circuits before candidate lookup, so a
  retry still succeeds after the request has already flipped to RETURNED.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import BadRequestError, InvalidStateError, NotFoundError, ServiceError
from ..models import BorrowRequest, InventoryItem, ReturnEvent, User
from . import audit_service
from .borrow_service import ISSUED, RETURNED
from .branch_service import resolve_actor_branch
from .concurrency import locked, run_atomic
from .inventory_service import TX_RETURN, adjust, lock_item, parse_quantity, record_transaction
from invencea.time_utils import parse_iso_datetime, to_utc_z, utcnow


MSG_PROCESSED = "Return processed successfully"
MSG_ALREADY_PROCESSED = "Return already processed (idempotent)"

_BARCODE_PREFIX = re.compile(r"^barcode[:=]\s*", re.IGNORECASE)


@dataclass
class Candidate:
    request: BorrowRequest
    line_position: int
    quantity: int
    returned_quantity: int

    @property
    def remaining(self) -> int:
        return max(0, self.quantity - self.returned_quantity)

    @property
    def sort_key(self):
        return (self.request.issued_at or self.request.created_at, self.request.id)

    def to_dict(self) -> dict:
        req = self.request
        return {
            "borrow_request_id": req.id,
            "requester_name": req.requester_name,
            "requester_id": req.requester_id,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
            "remaining_quantity": self.remaining,
            "request_status": req.status,
            "requested_at": to_utc_z(req.created_at),
            "issued_at": to_utc_z(req.issued_at or req.created_at),
        }


@dataclass
class ReturnResult:
    status: str  # "processed" | "already_processed"
    message: str
    request: BorrowRequest | None
    processed_at: datetime | None = None

    @property
    def already_processed(self) -> bool:
        return self.status == "already_processed"


def clean_barcode(raw) -> str:
    """Strip CR/LF, trim, and drop a leading 'barcode:' / 'barcode=' prefix."""
    if raw is None:
        return ""
    s = re.sub(r"[\r\n]+", "", str(raw)).strip()
    return _BARCODE_PREFIX.sub("", s)


def resolve_item(branch_id: int, barcode: str) -> InventoryItem | None:
    item = db.session.query(InventoryItem).filter(
        InventoryItem.branch_id == branch_id,
        InventoryItem.barcode == barcode,
    ).first()
    if item is not None:
        return item

    return db.session.query(InventoryItem).filter(
        InventoryItem.branch_id == branch_id,
        InventoryItem.barcode.ilike(f"%{barcode}%"),
    ).order_by(InventoryItem.id.asc()).first()


def _candidates(branch_id: int, item_id: int) -> list[Candidate]:
    requests = db.session.query(BorrowRequest).filter(
        BorrowRequest.branch_id == branch_id,
        BorrowRequest.status == ISSUED,
    ).all()

    found = []
    for req in requests:
        for line in req.lines:
            if line.item_id == item_id and line.remaining_quantity > 0:
                found.append(Candidate(
                    request=req,
                    line_position=line.position,
                    quantity=line.quantity,
                    returned_quantity=line.returned_quantity,
                ))
                break
    found.sort(key=lambda c: c.sort_key)
    return found


def _resolve_scan(actor: User, raw_barcode) -> tuple[int, InventoryItem, list[Candidate]]:
    barcode = clean_barcode(raw_barcode)
    if not barcode:
        raise BadRequestError("barcode is required")

    branch = resolve_actor_branch(actor, None)
    item = resolve_item(branch.id, barcode)
    if item is None:
        raise NotFoundError("Item not found for this barcode")

    return branch.id, item, _candidates(branch.id, item.id)


def find_return_options(actor: User, barcode) -> dict:
    """Open loan lines for the scanned item, oldest issue first."""
    _, item, candidates = _resolve_scan(actor, barcode)
    if not candidates:
        raise NotFoundError("No ISSUED borrow requests found for this item")

    return {
        "inventory": {"id": item.id, "barcode": item.barcode, "item_name": item.item_name},
        "options": [c.to_dict() for c in candidates],
    }


def _existing_event(client_event_id: str | None, branch_id: int) -> ReturnEvent | None:
    if not client_event_id:
        return None
    return db.session.query(ReturnEvent).filter_by(
        client_event_id=client_event_id, branch_id=branch_id
    ).first()


def _already_processed(borrow_request_id: int) -> ReturnResult:
    return ReturnResult(
        status="already_processed",
        message=MSG_ALREADY_PROCESSED,
        request=db.session.get(BorrowRequest, borrow_request_id),
    )


def return_by_barcode(
    actor: User,
    barcode,
    quantity,
    *,
    borrow_request_id=None,
    client_event_id: str | None = None,
    returned_at=None,
) -> ReturnResult:
    """
    Return `quantity` units of the scanned item against one open loan line.

    Raises:
        BadRequestError: bad quantity/barcode/returned_at, or quantity above remaining
        NotFoundError: unknown barcode, no open line, or borrow_request_id not a candidate
    """
    try:
        qty = parse_quantity(quantity, "quantity", minimum=1, error=BadRequestError)
    except BadRequestError:
        raise BadRequestError("Quantity must be positive integer")

    client_event_id = str(client_event_id).strip() if client_event_id else None

    seen = _existing_event(client_event_id, actor.branch_id)
    if seen is not None:
        return _already_processed(seen.borrow_request_id)

    branch_id, item, candidates = _resolve_scan(actor, barcode)
    if not candidates:
        raise NotFoundError("No ISSUED borrow request found for this item")

    if borrow_request_id not in (None, ""):
        chosen = next((c for c in candidates if str(c.request.id) == str(borrow_request_id)), None)
        if chosen is None:
            raise NotFoundError("Borrow request not found for this item")
    else:
        chosen = candidates[0]

    if qty > chosen.remaining:
        raise BadRequestError(
            f"Return quantity ({qty}) exceeds remaining issued ({chosen.remaining})",
            remaining=chosen.remaining,
        )

    if not client_event_id:
        client_event_id = f"client-{uuid.uuid4().hex}"

    if isinstance(returned_at, datetime):
        returned_when = returned_at
    else:
        try:
            returned_when = parse_iso_datetime(returned_at) if returned_at else None
        except ValueError:
            raise BadRequestError("returned_at must be an ISO-8601 datetime")
    returned_when = returned_when or utcnow()

    event = apply_return_event(
        actor,
        client_event_id=client_event_id,
        borrow_request_id=chosen.request.id,
        inventory_id=item.id,
        branch_id=branch_id,
        quantity=qty,
        returned_at=returned_when,
    )
    if event is None:
        return _already_processed(chosen.request.id)

    return ReturnResult(
        status="processed",
        message=MSG_PROCESSED,
        request=db.session.get(BorrowRequest, chosen.request.id),
        processed_at=event.processed_at,
    )


def apply_return_event(
    actor: User,
    *,
    client_event_id: str,
    borrow_request_id: int,
    inventory_id: int,
    branch_id: int,
    quantity: int,
    returned_at: datetime,
) -> ReturnEvent | None:
    """
    Atomic return primitive. Returns the new ReturnEvent, or None when the
    client_event_id was already applied.

    One transaction:
      insert event (unique) -> borrowed -= q, available += q
      -> line.returned_quantity += q -> RETURNED if every line is done
    """
    def _op():
        event = ReturnEvent(
            client_event_id=client_event_id,
            borrow_request_id=borrow_request_id,
            inventory_id=inventory_id,
            branch_id=branch_id,
            actor_id=actor.id,
            quantity=quantity,
            returned_at=returned_at,
            processed_at=utcnow(),
        )
        db.session.add(event)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            return None

        try:
            req = locked(
                db.session.query(BorrowRequest).filter(
                    BorrowRequest.id == borrow_request_id,
                    BorrowRequest.branch_id == branch_id,
                )
            ).first()
            if req is None:
                raise NotFoundError("Borrow request not found")
            if req.status != ISSUED:
                raise InvalidStateError(f"Borrow request is {req.status}, not ISSUED")

            line = next(
                (ln for ln in req.lines if ln.item_id == inventory_id and ln.remaining_quantity > 0),
                None,
            )
            if line is None or quantity > line.remaining_quantity:
                raise BadRequestError("Return quantity exceeds remaining issued")

            item = lock_item(inventory_id, branch_id)
            if item is None:
                raise NotFoundError("Inventory not found")

            adjust(item, delta_borrowed=-quantity)
            line.returned_quantity += quantity
            record_transaction(item, TX_RETURN, quantity, actor=actor, borrow_request_id=req.id)

            if req.is_fully_returned:
                req.status = RETURNED
                req.returned_at = returned_at
                req.returned_by = actor.id
        except ServiceError:
            db.session.rollback()
            raise

        db.session.commit()
        return event

    event = run_atomic(_op, "Return by barcode")
    if event is None:
        return None

    item = db.session.get(InventoryItem, inventory_id)
    snapshot = item.quantity_snapshot() if item is not None else {}
    snapshot.update(borrow_request_id=borrow_request_id, quantity=quantity)
    audit_service.log_audit(
        action=audit_service.ACTION_RETURN,
        branch_id=branch_id,
        inventory_id=inventory_id,
        borrow_request_id=borrow_request_id,
        actor=actor,
        client_event_id=client_event_id,
        snapshot=snapshot,
    )
    return event
