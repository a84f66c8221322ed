"""create booking engine tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'bookings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('invoice_number', sa.String(32), nullable=False, unique=True),
        sa.Column('type', sa.String(50), nullable=False, server_default='tour'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('paid_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('paid_currency', sa.String(8), nullable=True),
        sa.Column('payment_provider', sa.String(50), nullable=True),
        sa.Column('payment_reference_number', sa.String(255), nullable=True),
        sa.Column('first_name', sa.String(255)),
        sa.Column('last_name', sa.String(255)),
        sa.Column('email', sa.String(255)),
        sa.Column('phone_number', sa.String(50)),
        sa.Column('address1', sa.String(255)),
        sa.Column('address2', sa.String(255)),
        sa.Column('city', sa.String(100)),
        sa.Column('state', sa.String(100)),
        sa.Column('zip_code', sa.String(20)),
        sa.Column('country', sa.String(100)),
        sa.Column('comments', sa.Text()),
        sa.Column('booking_date_time', sa.TIMESTAMP()),
        sa.Column('created_at', sa.TIMESTAMP()),
        sa.Column('updated_at', sa.TIMESTAMP()),
        sa.Column('deleted_at', sa.TIMESTAMP(), nullable=True),
    )
    op.create_index('ix_bookings_id', 'bookings', ['id'])
    op.create_index('ix_bookings_user_id', 'bookings', ['user_id'])
    op.create_index('ix_bookings_vendor_id', 'bookings', ['vendor_id'])
    op.create_index('ix_bookings_payment_reference_number', 'bookings', ['payment_reference_number'])

    op.create_table(
        'booking_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('package_id', sa.Integer(), sa.ForeignKey('packages.id'), nullable=False),
        sa.Column('room_type_id', sa.Integer(), sa.ForeignKey('package_room_types.id'), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
    )
    op.create_index('ix_booking_items_id', 'booking_items', ['id'])
    op.create_index('ix_booking_items_booking_id', 'booking_items', ['booking_id'])

    op.create_table(
        'booking_travellers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('gender', sa.String(20)),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(255)),
        sa.Column('last_name', sa.String(255)),
        sa.Column('email', sa.String(255)),
        sa.Column('phone_number', sa.String(50)),
        sa.Column('address1', sa.String(255)),
        sa.Column('address2', sa.String(255)),
        sa.Column('city', sa.String(100)),
        sa.Column('state', sa.String(100)),
        sa.Column('zip_code', sa.String(20)),
        sa.Column('country', sa.String(100)),
    )
    op.create_index('ix_booking_travellers_id', 'booking_travellers', ['id'])
    op.create_index('ix_booking_travellers_booking_id', 'booking_travellers', ['booking_id'])

    op.create_table(
        'booking_extra_services',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False),
        sa.Column('extra_service_id', sa.Integer(), sa.ForeignKey('extra_services.id'), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_booking_extra_services_id', 'booking_extra_services', ['id'])
    op.create_index('ix_booking_extra_services_booking_id', 'booking_extra_services', ['booking_id'])

    op.create_table(
        'invoice_counters',
        sa.Column('day', sa.Date(), primary_key=True),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.Integer(), sa.ForeignKey('bookings.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('provider', sa.String(50), nullable=False, server_default='stripe'),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('reference_number', sa.String(255), nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('paid_amount', sa.Numeric(10, 2), nullable=True),
        sa.Column('paid_currency', sa.String(8), nullable=True),
        sa.Column('raw_status', sa.String(50), nullable=True),
        sa.Column('flow_state', sa.String(20), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP()),
        sa.Column('updated_at', sa.TIMESTAMP()),
    )
    op.create_index('ix_payment_transactions_id', 'payment_transactions', ['id'])
    op.create_index('ix_payment_transactions_booking_id', 'payment_transactions', ['booking_id'])
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'])
    op.create_index('ix_payment_transactions_type_status', 'payment_transactions', ['type', 'status'])

    op.create_table(
        'refund_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payment_transaction_id', sa.Integer(), sa.ForeignKey('payment_transactions.id'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('requested_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('reviewed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('processing_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('failed_at', sa.TIMESTAMP(), nullable=True),
        sa.UniqueConstraint('payment_transaction_id', name='uq_refund_transactions_payment_transaction_id'),
    )
    op.create_index('ix_refund_transactions_id', 'refund_transactions', ['id'])

    op.create_table(
        'vendor_wallets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False, unique=True),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_earnings', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_withdrawals', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total_refunds', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(8), nullable=False, server_default='usd'),
        sa.Column('updated_at', sa.TIMESTAMP()),
    )
    op.create_index('ix_vendor_wallets_id', 'vendor_wallets', ['id'])

    op.create_table(
        'checkouts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('vendor_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('expires_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP()),
    )
    op.create_index('ix_checkouts_id', 'checkouts', ['id'])
    op.create_index('ix_checkouts_user_id', 'checkouts', ['user_id'])
    op.create_index('ix_checkouts_status_expires_at', 'checkouts', ['status', 'expires_at'])

    op.create_table(
        'checkout_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('checkout_id', sa.Integer(), sa.ForeignKey('checkouts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('package_id', sa.Integer(), sa.ForeignKey('packages.id'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('included_packages', sa.JSON(), nullable=False),
    )
    op.create_index('ix_checkout_items_id', 'checkout_items', ['id'])
    op.create_index('ix_checkout_items_checkout_id', 'checkout_items', ['checkout_id'])

    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('topic', sa.String(255), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP()),
    )
    op.create_index('ix_outbox_events_id', 'outbox_events', ['id'])
    op.create_index('ix_outbox_events_status', 'outbox_events', ['status'])


def downgrade() -> None:
    """Downgrade schema."""
    # children before parents
    for table in (
        'outbox_events', 'checkout_items', 'checkouts', 'vendor_wallets', 'refund_transactions',
        'payment_transactions', 'invoice_counters', 'booking_extra_services', 'booking_travellers',
        'booking_items', 'bookings',
    ):
        op.drop_table(table)
