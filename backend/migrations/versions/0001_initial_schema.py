"""Initial schema: branches, users, sessions, inventory, borrow requests, audit

Revision ID: 0001_initial
Revises:
Create Date: 2026-03-02

inventory.borrowed_quantity starts out nullable to match rows imported from
the legacy store; 0002 backfills it and makes it NOT NULL.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branches_code", "branches", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_branch_id", "users", ["branch_id"])
    op.create_index("ix_users_branch_role", "users", ["branch_id", "role"])

    op.create_table(
        "active_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", name="uq_active_sessions_user"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_active_sessions_token_hash", "active_sessions", ["token_hash"])
    op.create_index("ix_active_sessions_expires", "active_sessions", ["expires_at"])

    op.create_table(
        "inventory",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("barcode", sa.String(length=128), nullable=False),
        sa.Column("item_name", sa.String(length=255), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("total_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("borrowed_quantity", sa.Integer(), nullable=True),
        sa.Column("unserviceable_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("branch_id", "barcode", name="uq_inventory_branch_barcode"),
        sa.CheckConstraint("total_quantity >= 0", name="ck_inventory_total_nonneg"),
        sa.CheckConstraint("borrowed_quantity >= 0", name="ck_inventory_borrowed_nonneg"),
        sa.CheckConstraint("unserviceable_quantity >= 0", name="ck_inventory_unserviceable_nonneg"),
        sa.CheckConstraint("available_quantity >= 0", name="ck_inventory_available_nonneg"),
        sa.CheckConstraint(
            "total_quantity = borrowed_quantity + unserviceable_quantity + available_quantity",
            name="ck_inventory_quantity_balance",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_branch_id", "inventory", ["branch_id"])
    op.create_index("ix_inventory_branch_name", "inventory", ["branch_id", "item_name"])

    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("borrow_request_id", sa.Integer(), nullable=True),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_inventory_transactions_branch_id", "inventory_transactions", ["branch_id"])
    op.create_index("ix_inventory_transactions_borrow_request_id", "inventory_transactions", ["borrow_request_id"])
    op.create_index("ix_inventory_transactions_action", "inventory_transactions", ["action"])
    op.create_index("ix_invtx_inventory_created", "inventory_transactions", ["inventory_id", "created_at"])

    op.create_table(
        "borrow_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("kiosk_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("requester_name", sa.String(length=255), nullable=False),
        sa.Column("requester_id", sa.String(length=64), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("admin_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_borrow_requests_kiosk_id", "borrow_requests", ["kiosk_id"])
    op.create_index("ix_borrow_requests_requester_id", "borrow_requests", ["requester_id"])
    op.create_index("ix_borrow_requests_branch_status", "borrow_requests", ["branch_id", "status"])
    op.create_index("ix_borrow_requests_branch_created", "borrow_requests", ["branch_id", "created_at"])

    op.create_table(
        "borrow_request_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "borrow_request_id",
            sa.Integer(),
            sa.ForeignKey("borrow_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("returned_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("borrow_request_id", "position", name="uq_borrow_request_items_position"),
        sa.CheckConstraint("quantity >= 1", name="ck_borrow_line_quantity_positive"),
        sa.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_borrow_line_returned_bounds",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_borrow_request_items_borrow_request_id", "borrow_request_items", ["borrow_request_id"])
    op.create_index("ix_borrow_request_items_item", "borrow_request_items", ["item_id"])

    op.create_table(
        "return_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_event_id", sa.String(length=128), nullable=False),
        sa.Column("borrow_request_id", sa.Integer(), nullable=False),
        sa.Column("inventory_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("branch_id", "client_event_id", name="uq_return_events_branch_event"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_return_events_borrow_request_id", "return_events", ["borrow_request_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("inventory_id", sa.Integer(), nullable=True),
        sa.Column("borrow_request_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=16), nullable=True),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("snapshot", sa.JSON(), nullable=False),
        sa.Column("client_event_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_logs_borrow_request_id", "audit_logs", ["borrow_request_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_branch_created", "audit_logs", ["branch_id", "created_at"])
    op.create_index("ix_audit_logs_inventory_created", "audit_logs", ["inventory_id", "created_at"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("return_events")
    op.drop_table("borrow_request_items")
    op.drop_table("borrow_requests")
    op.drop_table("inventory_transactions")
    op.drop_table("inventory")
    op.drop_table("active_sessions")
    op.drop_table("users")
    op.drop_table("branches")
