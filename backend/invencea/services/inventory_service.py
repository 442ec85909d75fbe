# Overview: Service-layer operations for inventory; owns the quantity invariant per item.

"""
Inventory Ledger Invariants (authoritative)

Quantity model:
    total_quantity = borrowed_quantity + unserviceable_quantity + available_quantity

- All four are non-negative integers (also enforced by DB check constraints).
- available_quantity is DERIVED: max(total - borrowed - unserviceable, 0).
  It is recomputed on every write and again on every list read.
- borrowed_quantity is authoritative and stored. Admin edits carry it through
  unchanged; it only moves through adjust() (issue/return/borrow flows).
- An item may be deleted only while borrowed_quantity == 0.

Concurrency:
- adjust() runs on a row loaded through locked() inside the caller's
  transaction. Callers wrap the whole read-check-write in run_atomic so a
  version_id conflict replays from a fresh read instead of overselling.

Audit:
- CREATE / UPDATE / DELETE / BORROW / RETURN records are written after commit
  with the post-mutation quantity snapshot (best-effort, see audit_service).
"""

from __future__ import annotations

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ConflictError,
    InsufficientStockError,
    InvalidBranchError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models import InventoryItem, InventoryTransaction, User
from ..roles import BranchCode
from . import audit_service
from .branch_service import resolve_actor_branch
from .concurrency import locked, run_atomic


TX_BORROW = "BORROW"
TX_RETURN = "RETURN"
TX_ISSUE = "ISSUE"


# Required metadata per branch.
#   required:            every field must be present and non-empty
#   any_of:              at least one of these must be present and non-empty
#   non_empty_if_present: optional, but may not be blank when sent
BRANCH_METADATA_RULES = {
    BranchCode.ACEIS: {
        "required": ("item_name", "item_type"),
    },
    BranchCode.ECEIS: {
        "required": ("item_name", "item_type"),
        "non_empty_if_present": ("serial_number", "analog_digital", "condition"),
    },
    BranchCode.CPEIS: {
        "required": ("authors", "year"),
        "any_of": ("item_name", "thesis_title"),
    },
}


def compute_available(total, borrowed, unserviceable) -> int:
    """available = max(total - borrowed - unserviceable, 0)"""
    value = int(total or 0) - int(borrowed or 0) - int(unserviceable or 0)
    return value if value > 0 else 0


def parse_quantity(value, field: str, *, minimum: int = 0, error=ValidationError) -> int:
    """
    Coerce a client-supplied quantity to int.

    Accepts ints and digit strings; rejects bools, fractions and anything
    below `minimum`.
    """
    if isinstance(value, bool) or value is None:
        raise error(f"{field} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise error(f"{field} must be an integer")
        value = int(value)
    try:
        number = int(str(value).strip()) if not isinstance(value, int) else value
    except (TypeError, ValueError):
        raise error(f"{field} must be an integer")
    if number < minimum:
        raise error(f"{field} must be >= {minimum}")
    return number


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _join_fields(fields) -> str:
    fields = list(fields)
    if len(fields) == 1:
        return fields[0]
    return ", ".join(fields[:-1]) + " and " + fields[-1]


def validate_metadata(branch_code: str, metadata) -> dict:
    """
    Check metadata against the branch's required-field set.

    Returns a copy with item_name filled in (CPEIS falls back to thesis_title).

    Raises:
        InvalidBranchError: unknown branch code
        ValidationError: metadata missing, not an object, or missing fields
    """
    rules = BRANCH_METADATA_RULES.get(branch_code)
    if rules is None:
        raise InvalidBranchError(f"Unsupported branch: {branch_code}")

    if not isinstance(metadata, dict):
        raise ValidationError("Metadata is required and must be an object")

    missing = [f for f in rules.get("required", ()) if _is_blank(metadata.get(f))]
    any_of = rules.get("any_of")
    if any_of and all(_is_blank(metadata.get(f)) for f in any_of):
        missing.insert(0, "/".join(any_of))

    if missing:
        raise ValidationError(
            f"{branch_code} requires {_join_fields(missing)}",
            missing_fields=missing,
        )

    for field in rules.get("non_empty_if_present", ()):
        if field in metadata and _is_blank(metadata[field]):
            raise ValidationError(
                f"Metadata field {field} cannot be empty",
                missing_fields=[field],
            )

    cleaned = dict(metadata)
    if _is_blank(cleaned.get("item_name")):
        cleaned["item_name"] = cleaned.get("thesis_title")
    cleaned["item_name"] = str(cleaned["item_name"]).strip()
    return cleaned


# =============================================================================
# READS
# =============================================================================

def standardized_row(item: InventoryItem) -> dict:
    """to_dict() with available_quantity recomputed from the canonical formula."""
    row = item.to_dict()
    row["available_quantity"] = compute_available(
        item.total_quantity, item.borrowed_quantity, item.unserviceable_quantity
    )
    return row


def list_inventory(actor: User, branch_id=None, search: str | None = None) -> list[dict]:
    """
    All items of the resolved branch.

    CPEIS (theses): search matches authors/year, newest year first.
    Other branches: search matches item_name, alphabetical.
    """
    branch = resolve_actor_branch(actor, branch_id)
    q = db.session.query(InventoryItem).filter(InventoryItem.branch_id == branch.id)

    term = (search or "").strip()
    if branch.code == BranchCode.CPEIS:
        if term:
            pattern = f"%{term}%"
            q = q.filter(or_(
                InventoryItem.item_metadata["authors"].as_string().ilike(pattern),
                InventoryItem.item_metadata["year"].as_string().ilike(pattern),
            ))
        q = q.order_by(InventoryItem.item_metadata["year"].as_string().desc(), InventoryItem.id.desc())
    else:
        if term:
            q = q.filter(InventoryItem.item_name.ilike(f"%{term}%"))
        q = q.order_by(InventoryItem.item_name.asc(), InventoryItem.id.asc())

    return [standardized_row(item) for item in q.all()]


def get_item(item_id, branch_id: int | None = None) -> InventoryItem | None:
    try:
        item_id = int(item_id)
    except (TypeError, ValueError):
        return None
    q = db.session.query(InventoryItem).filter(InventoryItem.id == item_id)
    if branch_id is not None:
        q = q.filter(InventoryItem.branch_id == branch_id)
    return q.first()


def _require_item(item_id, branch_id: int) -> InventoryItem:
    # Out-of-branch items are reported as missing, never as forbidden
    item = get_item(item_id, branch_id)
    if item is None:
        raise NotFoundError("Inventory not found")
    return item


def lock_item(item_id, branch_id: int | None = None) -> InventoryItem | None:
    q = db.session.query(InventoryItem).filter(InventoryItem.id == item_id)
    if branch_id is not None:
        q = q.filter(InventoryItem.branch_id == branch_id)
    return locked(q).first()


def history(actor: User, item_id, branch_id=None) -> list[dict]:
    branch = resolve_actor_branch(actor, branch_id)
    try:
        item_id = int(item_id)
    except (TypeError, ValueError):
        raise NotFoundError("Inventory not found")
    logs = audit_service.get_item_history(item_id, branch_id=branch.id)
    return [entry.to_dict() for entry in logs]


# =============================================================================
# ADMIN CRUD
# =============================================================================

def create_item(actor: User, data: dict) -> InventoryItem:
    """
    Create an item: total >= 1, unserviceable in [0, total], borrowed = 0.

    Raises:
        ValidationError: bad barcode, quantities or metadata
        InvalidBranchError: branch does not resolve
        ConflictError: barcode already used in this branch
    """
    data = data or {}
    branch = resolve_actor_branch(actor, data.get("branch_id"))

    barcode = data.get("barcode")
    if _is_blank(barcode):
        raise ValidationError("barcode is required")
    barcode = str(barcode).strip()

    total = parse_quantity(data.get("total_quantity"), "total_quantity", minimum=1)
    unserviceable_raw = data.get("unserviceable_quantity")
    unserviceable = 0 if unserviceable_raw in (None, "") else parse_quantity(
        unserviceable_raw, "unserviceable_quantity"
    )
    if unserviceable > total:
        raise ValidationError("Unserviceable quantity must be between 0 and total quantity")

    metadata = validate_metadata(branch.code, data.get("metadata"))

    item = InventoryItem(
        branch_id=branch.id,
        barcode=barcode,
        item_name=metadata["item_name"],
        item_metadata=metadata,
        total_quantity=total,
        borrowed_quantity=0,
        unserviceable_quantity=unserviceable,
        available_quantity=compute_available(total, 0, unserviceable),
        is_locked=False,
    )
    try:
        db.session.add(item)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Barcode already exists in this branch", barcode=barcode)

    audit_service.log_audit(
        action=audit_service.ACTION_CREATE,
        branch_id=item.branch_id,
        inventory_id=item.id,
        actor=actor,
        snapshot=item.quantity_snapshot(),
    )
    return item


def update_item(actor: User, item_id, data: dict) -> InventoryItem:
    """
    Edit metadata / total / unserviceable. borrowed_quantity is never touched.

    Raises:
        NotFoundError: missing or in another branch
        ValidationError: non-integer or negative quantities, bad metadata
        InvalidStateError: new total < borrowed + new unserviceable
    """
    data = data or {}
    branch = resolve_actor_branch(actor, None)
    item_pk = _require_item(item_id, branch.id).id

    new_total_raw = data.get("total_quantity")
    new_unserviceable_raw = data.get("unserviceable_quantity")
    new_total = None if new_total_raw is None else parse_quantity(new_total_raw, "total_quantity")
    new_unserviceable = None if new_unserviceable_raw is None else parse_quantity(
        new_unserviceable_raw, "unserviceable_quantity"
    )
    metadata = None
    if data.get("metadata") is not None:
        metadata = validate_metadata(branch.code, data["metadata"])

    def _op():
        item = lock_item(item_pk, branch.id)
        if item is None:
            raise NotFoundError("Inventory not found")

        borrowed = item.borrowed_quantity
        total = item.total_quantity if new_total is None else new_total
        unserviceable = item.unserviceable_quantity if new_unserviceable is None else new_unserviceable

        if total < borrowed + unserviceable:
            raise InvalidStateError(
                "Total quantity cannot be less than borrowed + unserviceable. "
                "Adjust unserviceable or return items first.",
                borrowed_quantity=borrowed,
            )

        if metadata is not None:
            item.item_metadata = metadata
            item.item_name = metadata["item_name"]

        item.total_quantity = total
        item.unserviceable_quantity = unserviceable
        item.available_quantity = compute_available(total, borrowed, unserviceable)

        db.session.commit()
        return item

    item = run_atomic(_op, "Inventory update")

    audit_service.log_audit(
        action=audit_service.ACTION_UPDATE,
        branch_id=item.branch_id,
        inventory_id=item.id,
        actor=actor,
        snapshot=item.quantity_snapshot(),
    )
    return item


def delete_item(actor: User, item_id) -> dict:
    """Delete an item with nothing out on loan. Returns the final snapshot."""
    branch = resolve_actor_branch(actor, None)

    item_pk = _require_item(item_id, branch.id).id

    def _op():
        item = lock_item(item_pk, branch.id)
        if item is None:
            raise NotFoundError("Inventory not found")
        if item.borrowed_quantity > 0:
            raise ConflictError(
                "Cannot delete inventory with borrowed items",
                borrowed_quantity=item.borrowed_quantity,
            )
        snapshot = dict(item.quantity_snapshot(), borrowed_quantity=0)
        deleted_id = item.id
        db.session.delete(item)
        db.session.commit()
        return deleted_id, snapshot

    deleted_id, snapshot = run_atomic(_op, "Inventory delete")

    audit_service.log_audit(
        action=audit_service.ACTION_DELETE,
        branch_id=branch.id,
        inventory_id=deleted_id,
        actor=actor,
        snapshot=snapshot,
    )
    return snapshot


# =============================================================================
# ATOMIC ADJUST (issue / return / direct borrow)
# =============================================================================

def adjust(item: InventoryItem, *, delta_borrowed: int = 0, delta_unserviceable: int = 0) -> InventoryItem:
    """
    Move quantity between available and borrowed/unserviceable on a LOCKED row.

    Does not commit; the caller owns the transaction.

    Raises:
        InsufficientStockError: the increase exceeds what is available
        InvalidStateError: a decrease would go below zero
    """
    borrowed = item.borrowed_quantity + delta_borrowed
    unserviceable = item.unserviceable_quantity + delta_unserviceable

    if borrowed < 0 or unserviceable < 0:
        raise InvalidStateError(
            "Cannot return more than is borrowed",
            item_id=item.id,
            borrowed_quantity=item.borrowed_quantity,
        )

    if borrowed + unserviceable > item.total_quantity:
        available = compute_available(
            item.total_quantity, item.borrowed_quantity, item.unserviceable_quantity
        )
        raise InsufficientStockError(
            item_id=item.id,
            requested=max(delta_borrowed, 0) + max(delta_unserviceable, 0),
            available=available,
        )

    item.borrowed_quantity = borrowed
    item.unserviceable_quantity = unserviceable
    item.available_quantity = compute_available(item.total_quantity, borrowed, unserviceable)
    return item


def record_transaction(
    item: InventoryItem,
    action: str,
    quantity: int,
    *,
    actor: User | None = None,
    borrow_request_id: int | None = None,
) -> InventoryTransaction:
    tx = InventoryTransaction(
        inventory_id=item.id,
        branch_id=item.branch_id,
        borrow_request_id=borrow_request_id,
        action=action,
        quantity=quantity,
        actor_id=actor.id if actor is not None else None,
    )
    db.session.add(tx)
    return tx


def _direct_move(actor: User, item_id, quantity, *, action: str) -> InventoryItem:
    qty = parse_quantity(quantity, "quantity", minimum=1)
    branch = resolve_actor_branch(actor, None)
    item_pk = _require_item(item_id, branch.id).id

    def _op():
        item = lock_item(item_pk, branch.id)
        if item is None:
            raise NotFoundError("Inventory not found")
        adjust(item, delta_borrowed=qty if action == TX_BORROW else -qty)
        record_transaction(item, action, qty, actor=actor)
        db.session.commit()
        return item

    item = run_atomic(_op, f"Direct {action.lower()}")

    audit_service.log_audit(
        action=audit_service.ACTION_BORROW if action == TX_BORROW else audit_service.ACTION_RETURN,
        branch_id=item.branch_id,
        inventory_id=item.id,
        actor=actor,
        snapshot=item.quantity_snapshot(),
    )
    return item


def borrow_stock(actor: User, item_id, quantity) -> InventoryItem:
    """Direct (request-less) borrow: available -> borrowed."""
    return _direct_move(actor, item_id, quantity, action=TX_BORROW)


def return_stock(actor: User, item_id, quantity) -> InventoryItem:
    """Direct (request-less) return: borrowed -> available."""
    return _direct_move(actor, item_id, quantity, action=TX_RETURN)
