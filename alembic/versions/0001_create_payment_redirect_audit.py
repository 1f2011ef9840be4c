"""create payment redirect audit

Revision ID: 0001_create_payment_redirect_audit
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_create_payment_redirect_audit"
down_revision = None
branch_labels = None
depends_on = None

_INDEXED_COLUMNS = ("invoice_id", "resolved_state", "user_id", "is_synthetic", "created_at")


def upgrade() -> None:
    op.create_table(
        "payment_redirect_audit",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.String(length=255), nullable=True),
        sa.Column(
            "payment_type",
            sa.Enum("trainer_booking", "gym_membership", "service_order", "generic", name="paymenttype"),
            nullable=True,
        ),
        sa.Column("raw_status", sa.String(length=64), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=True),
        sa.Column("advisory_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("advisory_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "resolved_state",
            sa.Enum("verifying", "success", "cancelled", "failed", name="pipelinestate"),
            nullable=False,
        ),
        sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("failure_reason", sa.String(length=64), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=True),
        sa.Column(
            "gateway_status",
            sa.Enum("COMPLETED", "PENDING", "FAILED", "CANCELLED", name="gatewaystatus"),
            nullable=True,
        ),
        sa.Column("settled_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("settled_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("verification_metadata", sa.JSON(), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("deep_link", sa.Text(), nullable=True),
        sa.Column("is_synthetic", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("environment", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in _INDEXED_COLUMNS:
        op.create_index(
            op.f(f"ix_payment_redirect_audit_{column}"),
            "payment_redirect_audit",
            [column],
            unique=False,
        )


def downgrade() -> None:
    for column in reversed(_INDEXED_COLUMNS):
        op.drop_index(op.f(f"ix_payment_redirect_audit_{column}"), table_name="payment_redirect_audit")
    op.drop_table("payment_redirect_audit")
    sa.Enum(name="gatewaystatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="pipelinestate").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="paymenttype").drop(op.get_bind(), checkfirst=True)
