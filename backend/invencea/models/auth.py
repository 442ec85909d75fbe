from __future__ import annotations

from ..extensions import db
from ..roles import Role
from invencea.time_utils import to_utc_z, utcnow


class User(db.Model):
    """
    Accounts for authentication and attribution.

    Created out-of-band (flask users create); never mutated by request handling.
    role is stored lowercase and parsed through roles.Role.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_branch_role", "branch_id", "role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)
    full_name = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("users", lazy=True))

    @property
    def role_enum(self) -> Role | None:
        return Role.parse(self.role)

    def to_dict(self) -> dict:
        role = self.role_enum
        return {
            "id": self.id,
            "email": self.email,
            "role": role.value if role else self.role,
            "branch": self.branch.code if self.branch else None,
            "branch_id": self.branch_id,
            "full_name": self.full_name,
        }


class ActiveSession(db.Model):
    """
    At most one live login per user.

    The unique constraint on user_id is the source of truth for exclusivity;
    the pre-insert check in session_service is only a fast path. Only the
    SHA-256 digest of the bearer token is stored.
    """
    __tablename__ = "active_sessions"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_active_sessions_user"),
        db.Index("ix_active_sessions_expires", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    token_hash = db.Column(db.String(64), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user = db.relationship("User", backref=db.backref("active_session", lazy=True, uselist=False))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
        }
