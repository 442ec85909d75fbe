"""Backfill inventory.borrowed_quantity and make it NOT NULL

Revision ID: 0002_backfill_borrowed
Revises: 0001_initial
Create Date: 2026-03-09

Legacy rows only stored total/available/unserviceable. borrowed_quantity is
derived once here as max(total - available - unserviceable, 0); from this
revision on it is the stored, authoritative value.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_backfill_borrowed"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


# SQLite does not reflect CHECK constraints; carry them into the rebuilt table
INVENTORY_CHECKS = (
    sa.CheckConstraint("total_quantity >= 0", name="ck_inventory_total_nonneg"),
    sa.CheckConstraint("borrowed_quantity >= 0", name="ck_inventory_borrowed_nonneg"),
    sa.CheckConstraint("unserviceable_quantity >= 0", name="ck_inventory_unserviceable_nonneg"),
    sa.CheckConstraint("available_quantity >= 0", name="ck_inventory_available_nonneg"),
    sa.CheckConstraint(
        "total_quantity = borrowed_quantity + unserviceable_quantity + available_quantity",
        name="ck_inventory_quantity_balance",
    ),
)


def upgrade():
    op.execute(
        """
        UPDATE inventory
        SET borrowed_quantity = CASE
            WHEN total_quantity - available_quantity - unserviceable_quantity > 0
            THEN total_quantity - available_quantity - unserviceable_quantity
            ELSE 0
        END
        WHERE borrowed_quantity IS NULL
        """
    )

    # Rows whose stored available drifted from the formula are re-derived
    op.execute(
        """
        UPDATE inventory
        SET available_quantity = total_quantity - borrowed_quantity - unserviceable_quantity
        WHERE total_quantity - borrowed_quantity - unserviceable_quantity >= 0
          AND available_quantity <> total_quantity - borrowed_quantity - unserviceable_quantity
        """
    )

    with op.batch_alter_table("inventory", schema=None, table_args=INVENTORY_CHECKS) as batch_op:
        batch_op.alter_column(
            "borrowed_quantity",
            existing_type=sa.Integer(),
            nullable=False,
            server_default="0",
        )


def downgrade():
    with op.batch_alter_table("inventory", schema=None, table_args=INVENTORY_CHECKS) as batch_op:
        batch_op.alter_column(
            "borrowed_quantity",
            existing_type=sa.Integer(),
            nullable=True,
            server_default=None,
        )
