"""Create the subscriptions table.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

App startup runs Base.metadata.create_all before migrations, so the table may
already exist; in that case this revision only records the version.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


SUBSCRIPTION_STATUS = ("active", "expired", "cancelled")
KYC_STATUS = ("pending", "initiated", "verified", "failed")


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    if "subscriptions" in inspector.get_table_names():
        return

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("plan_id", sa.String(64), nullable=False),
        sa.Column("plan_name", sa.String(255), nullable=False),
        sa.Column("billing_period", sa.String(32), nullable=False),
        sa.Column("status", sa.Enum(*SUBSCRIPTION_STATUS, name="subscription_status"), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("payment_id", sa.String(64), nullable=False, unique=True),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("kyc_status", sa.Enum(*KYC_STATUS, name="kyc_status"), nullable=False),
        sa.Column("kyc_reference_id", sa.String(128), nullable=True, unique=True),
        sa.Column("kyc_request_id", sa.String(128), nullable=True),
        sa.Column("kyc_details", sa.JSON(), nullable=True),
        sa.Column("kyc_initiated_at", sa.DateTime(), nullable=True),
        sa.Column("kyc_completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_end_date", "subscriptions", ["end_date"])
    op.create_index("ix_subscriptions_kyc_request_id", "subscriptions", ["kyc_request_id"])
    op.create_index("ix_subscriptions_user_plan_status", "subscriptions", ["user_id", "plan_id", "status"])


def downgrade() -> None:
    op.drop_table("subscriptions")
    sa.Enum(name="kyc_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="subscription_status").drop(op.get_bind(), checkfirst=True)
