"""add free package claim key to payments

Revision ID: 20261017_000002
Revises: 20261001_000001
Create Date: 2026-10-17 00:00:02.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000002"
down_revision: Union[str, None] = "20261001_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("payments", sa.Column("free_claim_key", sa.String(), nullable=True))
    op.create_unique_constraint("uq_payments_free_claim_key", "payments", ["free_claim_key"])


def downgrade() -> None:
    raise NotImplementedError("Migrations are forward-only; restore from backup to roll back.")
