"""Track the last confirmation sweep visit per invoice.

Revision ID: 002_invoice_last_checked_at
Revises: 001_initial
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "002_invoice_last_checked_at"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("invoices", sa.Column("last_checked_at", sa.DateTime(), nullable=True))
    op.create_index("invoices_status_checked_idx", "invoices", ["status", "last_checked_at"])


def downgrade() -> None:
    op.drop_index("invoices_status_checked_idx", table_name="invoices")
    op.drop_column("invoices", "last_checked_at")
