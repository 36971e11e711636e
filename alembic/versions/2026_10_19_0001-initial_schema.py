"""Create users, fulfillment_records and ownerships tables.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create initial schema."""
    # Users - payment_customer_ref is set once, lazily, on first checkout
    op.create_table(
        "users",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("payment_customer_ref", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("payment_customer_ref", name="uq_users_payment_customer_ref"),
    )

    # Fulfillment records - idempotency ledger, one row per fulfilled checkout session
    op.create_table(
        "fulfillment_records",
        sa.Column("session_id", sa.String(255), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("product_id", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("quantity > 0", name="ck_fulfillment_quantity_positive"),
    )
    op.create_index("idx_fulfillment_records_user_id", "fulfillment_records", ["user_id"])
    op.create_index("idx_fulfillment_records_created_at", "fulfillment_records", ["created_at"])

    # Ownerships - quantity of each product held by each user
    op.create_table(
        "ownerships",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("product_id", sa.String(255), nullable=False),
        sa.Column("quantity", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_ownership_quantity_non_negative"),
        sa.UniqueConstraint("user_id", "product_id", name="uq_ownership_user_product"),
    )
    op.create_index("idx_ownerships_user_id", "ownerships", ["user_id"])


def downgrade() -> None:
    """Drop initial schema."""
    op.drop_index("idx_ownerships_user_id", table_name="ownerships")
    op.drop_table("ownerships")

    op.drop_index("idx_fulfillment_records_created_at", table_name="fulfillment_records")
    op.drop_index("idx_fulfillment_records_user_id", table_name="fulfillment_records")
    op.drop_table("fulfillment_records")

    op.drop_table("users")
