from __future__ import annotations

from ..extensions import db
from invencea.time_utils import to_utc_z, utcnow


class BorrowRequest(db.Model):
    """
    A request to borrow one or more inventory items.

    LIFECYCLE (see borrow_service.VALID_TRANSITIONS):
        PENDING -> APPROVED -> ISSUED -> RETURNED
        PENDING/APPROVED -> DENIED

    Rows are never deleted by the workflow itself; the reports purge removes
    terminal rows in bulk.
    """
    __tablename__ = "borrow_requests"
    __table_args__ = (
        db.Index("ix_borrow_requests_branch_status", "branch_id", "status"),
        db.Index("ix_borrow_requests_branch_created", "branch_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    # Set only when the requester is a kiosk account
    kiosk_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    requester_name = db.Column(db.String(255), nullable=False)
    requester_id = db.Column(db.String(64), nullable=True, index=True)
    note = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING")

    # Last admin to act on the request
    admin_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("borrow_requests", lazy=True))
    lines = db.relationship(
        "BorrowRequestItem",
        back_populates="request",
        order_by="BorrowRequestItem.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_fully_returned(self) -> bool:
        return all(line.returned_quantity >= line.quantity for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "kiosk_id": self.kiosk_id,
            "requester_name": self.requester_name,
            "requester_id": self.requester_id,
            "items": [line.to_dict() for line in self.lines],
            "note": self.note,
            "status": self.status,
            "admin_id": self.admin_id,
            "approved_at": to_utc_z(self.approved_at),
            "approved_by": self.approved_by,
            "issued_at": to_utc_z(self.issued_at),
            "issued_by": self.issued_by,
            "returned_at": to_utc_z(self.returned_at),
            "returned_by": self.returned_by,
            "created_at": to_utc_z(self.created_at),
        }


class BorrowRequestItem(db.Model):
    """
    One ordered line of a borrow request.

    INVARIANT: 1 <= quantity and 0 <= returned_quantity <= quantity.
    item_id is not a foreign key so history survives inventory deletion.
    """
    __tablename__ = "borrow_request_items"
    __table_args__ = (
        db.UniqueConstraint("borrow_request_id", "position", name="uq_borrow_request_items_position"),
        db.CheckConstraint("quantity >= 1", name="ck_borrow_line_quantity_positive"),
        db.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_borrow_line_returned_bounds",
        ),
        db.Index("ix_borrow_request_items_item", "item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    borrow_request_id = db.Column(
        db.Integer, db.ForeignKey("borrow_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False)

    item_id = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    request = db.relationship("BorrowRequest", back_populates="lines")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_quantity(self) -> int:
        return max(0, (self.quantity or 0) - (self.returned_quantity or 0))

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "quantity": self.quantity,
            "returned_quantity": self.returned_quantity,
        }


class ReturnEvent(db.Model):
    """
    Idempotency record for return-by-barcode.

    client_event_id is unique per branch, which makes "check then apply"
    atomic: a replayed or concurrent submission of the same event fails the
    insert and is reported as already_processed instead of being applied
    twice. Other branches may reuse the same id.
    """
    __tablename__ = "return_events"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "client_event_id", name="uq_return_events_branch_event"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_event_id = db.Column(db.String(128), nullable=False)

    borrow_request_id = db.Column(db.Integer, nullable=False, index=True)
    inventory_id = db.Column(db.Integer, nullable=False)
    branch_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False)

    returned_at = db.Column(db.DateTime(timezone=True), nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_event_id": self.client_event_id,
            "borrow_request_id": self.borrow_request_id,
            "inventory_id": self.inventory_id,
            "branch_id": self.branch_id,
            "actor_id": self.actor_id,
            "quantity": self.quantity,
            "returned_at": to_utc_z(self.returned_at),
            "processed_at": to_utc_z(self.processed_at),
        }
