"""Create orders table"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_create_orders"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("order_time", sa.String(), nullable=False, server_default=""),
        sa.Column("status", sa.String(), nullable=False, server_default=""),
        sa.Column("delivery_time", sa.String(), nullable=False, server_default=""),
        sa.Column("payment_method", sa.String(), nullable=False, server_default=""),
        sa.Column("visit_count", sa.String(), nullable=False, server_default=""),
        sa.Column("customer_name", sa.String(), nullable=False, server_default=""),
        sa.Column("customer_phone", sa.String(), nullable=False, server_default=""),
        sa.Column("receipt_name", sa.String(), nullable=False, server_default=""),
        sa.Column("waiting_time", sa.String(), nullable=False, server_default=""),
        sa.Column("address", sa.Text(), nullable=False, server_default=""),
        sa.Column("items", sa.Text(), nullable=False, server_default=""),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("order_id"),
    )
    op.create_index("ix_orders_created_at", "orders", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_orders_created_at", table_name="orders")
    op.drop_table("orders")
