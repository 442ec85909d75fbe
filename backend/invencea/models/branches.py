from __future__ import annotations

from ..extensions import db
from invencea.time_utils import to_utc_z, utcnow


class Branch(db.Model):
    """
    Departmental branch. Scopes every inventory row, borrow request and user.

    code drives branch-dependent behaviour (metadata shape, list ordering,
    search fields). See roles.BranchCode.
    """
    __tablename__ = "branches"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Branch id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }
