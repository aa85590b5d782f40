"""Create paypal_subscriptions table.

Revision ID: 001_paypal_subscriptions
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

revision: str = "001_paypal_subscriptions"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "paypal_subscriptions",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("subscription_id", sa.Text(), nullable=False, unique=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("plan_id", sa.Text(), nullable=True),
        sa.Column("plan_type", sa.Text(), nullable=True),
        sa.Column("subscriber_email", sa.Text(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "status IN ('CREATED','ACTIVE','CANCELLED','SUSPENDED','PAYMENT_FAILED','EXPIRED')",
            name="ck_paypal_subscription_status",
        ),
    )
    op.create_index("idx_paypal_subscriptions_status", "paypal_subscriptions", ["status"])
    op.create_index(
        "idx_paypal_subscriptions_email", "paypal_subscriptions", ["subscriber_email"]
    )


def downgrade() -> None:
    op.drop_index("idx_paypal_subscriptions_email", table_name="paypal_subscriptions")
    op.drop_index("idx_paypal_subscriptions_status", table_name="paypal_subscriptions")
    op.drop_table("paypal_subscriptions")
