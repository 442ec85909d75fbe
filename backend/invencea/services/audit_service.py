# Overview: Service-layer operations for audit; append-only event recorder.

"""
Audit Trail

Every mutating action (inventory CRUD, direct borrow/return, request
creation and status changes, return events) writes one AuditLog row AFTER
its primary change has committed.

Audit is best-effort: a failed audit write is logged and swallowed so it can
never fail or roll back the operation it describes.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog, User


ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"
ACTION_BORROW = "BORROW"
ACTION_RETURN = "RETURN"


def log_audit(
    *,
    action: str,
    branch_id: int | None,
    snapshot: dict,
    actor: User | None = None,
    inventory_id: int | None = None,
    borrow_request_id: int | None = None,
    client_event_id: str | None = None,
) -> AuditLog | None:
    """Append one audit record. Returns None if the write failed."""
    role = actor.role_enum if actor is not None else None
    entry = AuditLog(
        action=action,
        branch_id=branch_id,
        inventory_id=inventory_id,
        borrow_request_id=borrow_request_id,
        actor_id=actor.id if actor is not None else None,
        actor_role=role.value.upper() if role else None,
        snapshot=dict(snapshot, client_event_id=client_event_id) if client_event_id else snapshot,
        client_event_id=client_event_id,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Audit write failed (action=%s inventory_id=%s borrow_request_id=%s)",
            action, inventory_id, borrow_request_id,
            exc_info=True,
        )
        return None
    return entry


def get_item_history(inventory_id: int, *, branch_id: int | None = None) -> list[AuditLog]:
    """Audit trail for one inventory item, newest first."""
    q = db.session.query(AuditLog).filter_by(inventory_id=inventory_id)
    if branch_id is not None:
        q = q.filter_by(branch_id=branch_id)
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).all()


def list_branch_logs(branch_id: int, *, limit: int | None = None) -> list[AuditLog]:
    q = db.session.query(AuditLog).filter_by(
        branch_id=branch_id
    ).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()
