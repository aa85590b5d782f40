"""Create paypal_webhook_events table.

Revision ID: 002_paypal_webhook_events
Revises: 001_paypal_subscriptions
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID

from alembic import op

revision: str = "002_paypal_webhook_events"
down_revision: str | None = "001_paypal_subscriptions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "paypal_webhook_events",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            primary_key=True,
        ),
        sa.Column("event_id", sa.Text(), nullable=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("subscription_id", sa.Text(), nullable=True),
        sa.Column("outcome", sa.Text(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "raw_payload",
            JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("idx_paypal_webhook_events_event_id", "paypal_webhook_events", ["event_id"])
    op.create_index(
        "idx_paypal_webhook_events_subscription",
        "paypal_webhook_events",
        ["subscription_id", "processed_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_paypal_webhook_events_subscription", table_name="paypal_webhook_events")
    op.drop_index("idx_paypal_webhook_events_event_id", table_name="paypal_webhook_events")
    op.drop_table("paypal_webhook_events")
