# Overview: Branch lookup and per-role branch scoping for every query.

"""
Branch Scoping

No cross-branch visibility is ever permitted:
- admin and kiosk accounts always act in their own branch; naming another
  branch is Forbidden
- faculty may pick any existing branch (browsing, filing requests), falling
  back to their own affiliation when none is supplied
"""

from __future__ import annotations

from ..extensions import db
from ..errors import BadRequestError, ForbiddenError, InvalidBranchError
from ..models import Branch, User
from ..roles import BranchCode, Role


DEFAULT_BRANCH_NAMES = {
    BranchCode.ACEIS: "ACEIS",
    BranchCode.ECEIS: "ECEIS",
    BranchCode.CPEIS: "CPEIS",
}


def get_branch(branch_id: int) -> Branch | None:
    return db.session.get(Branch, branch_id)


def get_branch_by_code(code: str) -> Branch | None:
    if not code:
        return None
    return db.session.query(Branch).filter_by(code=code.strip().upper()).first()


def list_branches() -> list[Branch]:
    return db.session.query(Branch).order_by(Branch.id.asc()).all()


def ensure_default_branches() -> list[Branch]:
    """Create any missing ACEIS/ECEIS/CPEIS rows. Safe to call repeatedly."""
    created = []
    for code in BranchCode.ALL:
        if get_branch_by_code(code) is None:
            branch = Branch(code=code, name=DEFAULT_BRANCH_NAMES[code])
            db.session.add(branch)
            created.append(branch)
    db.session.commit()
    return created


def parse_branch_id(value) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise BadRequestError("branch_id must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequestError("branch_id must be an integer")


def resolve_actor_branch(actor: User, requested=None) -> Branch:
    """
    Decide which branch a request by `actor` operates on.

    Raises:
        BadRequestError: no branch supplied and the actor has none
        ForbiddenError: admin/kiosk naming a branch other than their own
        InvalidBranchError: the branch id does not resolve
    """
    requested_id = parse_branch_id(requested)
    role = actor.role_enum

    if role in (Role.ADMIN, Role.KIOSK):
        if requested_id is not None and requested_id != actor.branch_id:
            raise ForbiddenError("Cross-branch access is not allowed")
        branch_id = actor.branch_id
    else:
        branch_id = requested_id if requested_id is not None else actor.branch_id

    if branch_id is None:
        raise BadRequestError("Branch is required")

    branch = get_branch(branch_id)
    if branch is None:
        raise InvalidBranchError("Invalid branch")
    return branch
