"""add withdrawal idempotency key

Revision ID: 8b4e2f6a9c31
Revises: 3f1c9a7d2b10
Create Date: 2026-10-19 14:30:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b4e2f6a9c31'
down_revision: Union[str, Sequence[str], None] = '3f1c9a7d2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column('payment_transactions', sa.Column('idempotency_key', sa.String(255), nullable=True))
    op.create_index(
        'ix_payment_transactions_idempotency_key', 'payment_transactions', ['idempotency_key'], unique=True
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_payment_transactions_idempotency_key', table_name='payment_transactions')
    op.drop_column('payment_transactions', 'idempotency_key')
