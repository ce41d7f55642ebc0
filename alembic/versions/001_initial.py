"""Initial schema: merchants, wallets, invoices, payments, usage and ledger.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "merchants",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(255), nullable=True),
        sa.Column("plan_tier", sa.String(32), nullable=False, server_default="trial"),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_merchants_stripe_customer_id", "merchants", ["stripe_customer_id"])
    op.create_index("ix_merchants_plan_tier", "merchants", ["plan_tier"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("merchant_id", sa.String(64), sa.ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("currency", sa.String(16), nullable=False),
        sa.Column("network", sa.String(32), nullable=False),
        sa.Column("address", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("merchant_id", "currency", "network", name="wallets_merchant_currency_network_key"),
    )
    op.create_index("ix_wallets_merchant_id", "wallets", ["merchant_id"])

    op.create_table(
        "invoices",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("public_token", sa.String(36), nullable=False),
        sa.Column("merchant_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("currency", sa.String(16), nullable=False),
        sa.Column("network", sa.String(32), nullable=True),
        sa.Column("to_address", sa.String(128), nullable=False),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("confirmations_required", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("detected_tx_hash", sa.String(128), nullable=True),
        sa.Column("detected_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_invoices_public_token", "invoices", ["public_token"], unique=True)
    op.create_index("ix_invoices_merchant_id", "invoices", ["merchant_id"])
    op.create_index("invoices_match_idx", "invoices", ["to_address", "currency", "network", "status"])
    op.create_index("invoices_status_created_idx", "invoices", ["status", "created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("chain", sa.String(32), nullable=True),
        sa.Column("tx_hash", sa.String(128), nullable=False),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("confirmations", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("received_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"])
    op.create_index("ix_payments_tx_hash", "payments", ["tx_hash"], unique=True)

    op.create_table(
        "merchant_usage_monthly",
        sa.Column("merchant_id", sa.String(64), sa.ForeignKey("merchants.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("month", sa.Date(), primary_key=True),
        sa.Column("gmv_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "payments_ledger",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("merchant_id", sa.String(64), sa.ForeignKey("merchants.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invoice_id", sa.String(36), nullable=True),
        sa.Column("chain", sa.String(32), nullable=True),
        sa.Column("tx_id", sa.String(128), nullable=True),
        sa.Column("currency", sa.String(16), nullable=True),
        sa.Column("amount_crypto", sa.Numeric(38, 18), nullable=True),
        sa.Column("amount_usd_cents", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payments_ledger_invoice_id", "payments_ledger", ["invoice_id"])
    op.create_index("payments_ledger_merchant_created_idx", "payments_ledger", ["merchant_id", "created_at"])


def downgrade() -> None:
    op.drop_table("payments_ledger")
    op.drop_table("merchant_usage_monthly")
    op.drop_table("payments")
    op.drop_table("invoices")
    op.drop_table("wallets")
    op.drop_table("merchants")
