from __future__ import annotations

from ..extensions import db
from invencea.time_utils import to_utc_z, utcnow


class AuditLog(db.Model):
    """
    Append-only audit trail of every mutating action.

    action: CREATE, UPDATE, DELETE, BORROW, RETURN.
    snapshot holds the post-mutation state (quantities for inventory rows,
    request id/status/items for borrow requests).

    IMMUTABLE: Never update or delete.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_branch_created", "branch_id", "created_at"),
        db.Index("ix_audit_logs_inventory_created", "inventory_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True)
    inventory_id = db.Column(db.Integer, nullable=True)
    borrow_request_id = db.Column(db.Integer, nullable=True, index=True)

    actor_id = db.Column(db.Integer, nullable=True)
    actor_role = db.Column(db.String(16), nullable=True)

    action = db.Column(db.String(16), nullable=False, index=True)
    snapshot = db.Column(db.JSON, nullable=False, default=dict)
    client_event_id = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "inventory_id": self.inventory_id,
            "borrow_request_id": self.borrow_request_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "action": self.action,
            "snapshot": self.snapshot,
            "client_event_id": self.client_event_id,
            "created_at": to_utc_z(self.created_at),
        }
