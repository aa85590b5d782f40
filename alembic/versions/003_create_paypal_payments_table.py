"""Create paypal_payments table.

Revision ID: 003_paypal_payments
Revises: 002_paypal_webhook_events
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "003_paypal_payments"
down_revision: str | None = "002_paypal_webhook_events"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "paypal_payments",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("payment_id", sa.Text(), nullable=False),
        sa.Column("subscription_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.Text(), nullable=True),
        sa.Column("reason_code", sa.Text(), nullable=True),
        sa.Column(
            "raw_payload",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.UniqueConstraint("payment_id", "status", name="uq_paypal_payment_status"),
        sa.CheckConstraint("status IN ('COMPLETED','DENIED')", name="ck_paypal_payment_status"),
    )
    op.create_index("idx_paypal_payments_subscription", "paypal_payments", ["subscription_id"])


def downgrade() -> None:
    op.drop_index("idx_paypal_payments_subscription", table_name="paypal_payments")
    op.drop_table("paypal_payments")
