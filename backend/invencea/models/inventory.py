from __future__ import annotations

from ..extensions import db
from invencea.time_utils import to_utc_z, utcnow


class InventoryItem(db.Model):
    """
    One stock-keeping unit in a branch.

    QUANTITY INVARIANT (enforced by check constraints, maintained by inventory_service):
        total_quantity = borrowed_quantity + unserviceable_quantity + available_quantity
    with all four non-negative. available_quantity is derived and recomputed on
    every change; borrowed_quantity is authoritative and only moves through the
    issue/return primitives.

    version_id gives optimistic locking so two concurrent issues against the
    same row cannot both commit from the same read.
    """
    __tablename__ = "inventory"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "barcode", name="uq_inventory_branch_barcode"),
        db.Index("ix_inventory_branch_name", "branch_id", "item_name"),
        db.CheckConstraint("total_quantity >= 0", name="ck_inventory_total_nonneg"),
        db.CheckConstraint("borrowed_quantity >= 0", name="ck_inventory_borrowed_nonneg"),
        db.CheckConstraint("unserviceable_quantity >= 0", name="ck_inventory_unserviceable_nonneg"),
        db.CheckConstraint("available_quantity >= 0", name="ck_inventory_available_nonneg"),
        db.CheckConstraint(
            "total_quantity = borrowed_quantity + unserviceable_quantity + available_quantity",
            name="ck_inventory_quantity_balance",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    barcode = db.Column(db.String(128), nullable=False)
    item_name = db.Column(db.String(255), nullable=False)

    # Branch-dependent shape, validated on write (see inventory_service.BRANCH_METADATA_RULES)
    item_metadata = db.Column("metadata", db.JSON, nullable=False, default=dict)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    borrowed_quantity = db.Column(db.Integer, nullable=False, default=0)
    unserviceable_quantity = db.Column(db.Integer, nullable=False, default=0)
    available_quantity = db.Column(db.Integer, nullable=False, default=0)

    is_locked = db.Column(db.Boolean, nullable=False, default=False)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    branch = db.relationship("Branch", backref=db.backref("inventory_items", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<InventoryItem id={self.id} barcode={self.barcode!r} "
            f"total={self.total_quantity} borrowed={self.borrowed_quantity} "
            f"unserviceable={self.unserviceable_quantity} available={self.available_quantity}>"
        )

    def quantity_snapshot(self) -> dict:
        return {
            "total_quantity": self.total_quantity,
            "borrowed_quantity": self.borrowed_quantity,
            "unserviceable_quantity": self.unserviceable_quantity,
            "available_quantity": self.available_quantity,
            "metadata": self.item_metadata,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "barcode": self.barcode,
            "item_name": self.item_name,
            "metadata": self.item_metadata,
            "total_quantity": self.total_quantity,
            "borrowed_quantity": self.borrowed_quantity,
            "unserviceable_quantity": self.unserviceable_quantity,
            "available_quantity": self.available_quantity,
            "is_locked": self.is_locked,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """
    Append-only record of every stock movement (ISSUE, BORROW, RETURN).

    inventory_id is deliberately not a foreign key: the movement history of a
    deleted item is kept.
    """
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_invtx_inventory_created", "inventory_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    inventory_id = db.Column(db.Integer, nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    borrow_request_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "branch_id": self.branch_id,
            "borrow_request_id": self.borrow_request_id,
            "action": self.action,
            "quantity": self.quantity,
            "actor_id": self.actor_id,
            "created_at": to_utc_z(self.created_at),
        }
