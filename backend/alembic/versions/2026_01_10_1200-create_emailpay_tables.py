"""create_emailpay_tables

Revision ID: create_emailpay_20260110
Revises:
Create Date: 2026-01-10 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'create_emailpay_20260110'
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_STATUSES = ('pending', 'processing', 'completed', 'failed', 'expired')


def upgrade() -> None:
    op.create_table(
        'wallet_users',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('otp_code', sa.String(length=16), nullable=True),
        sa.Column('otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('wallet_public_key', sa.String(length=132), nullable=True),
        sa.Column('wallet_address', sa.String(length=42), nullable=True),
        sa.Column('signing_backend_id', sa.String(length=128), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            '(wallet_address IS NULL) = (wallet_public_key IS NULL)',
            name='check_wallet_users_wallet_fields_together',
        ),
    )
    op.create_index(op.f('ix_wallet_users_id'), 'wallet_users', ['id'], unique=False)
    op.create_index(op.f('ix_wallet_users_email'), 'wallet_users', ['email'], unique=True)
    op.create_index(op.f('ix_wallet_users_wallet_address'), 'wallet_users', ['wallet_address'], unique=False)

    op.create_table(
        'email_transactions',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tx_id', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('asset', sa.String(length=16), nullable=False, server_default='PYUSD'),
        sa.Column('sender_email', sa.String(length=255), nullable=False),
        sa.Column('recipient_email', sa.String(length=255), nullable=False),
        sa.Column(
            'status',
            postgresql.ENUM(*TRANSACTION_STATUSES, name='email_transaction_status'),
            nullable=False,
            server_default='pending',
        ),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('tx_hash', sa.String(length=66), nullable=True),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('error_code', sa.String(length=40), nullable=True),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('amount > 0', name='check_email_transactions_amount_positive'),
    )
    op.create_index(op.f('ix_email_transactions_id'), 'email_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_email_transactions_tx_id'), 'email_transactions', ['tx_id'], unique=True)
    op.create_index(op.f('ix_email_transactions_sender_email'), 'email_transactions', ['sender_email'], unique=False)
    op.create_index(op.f('ix_email_transactions_recipient_email'), 'email_transactions', ['recipient_email'], unique=False)
    op.create_index(op.f('ix_email_transactions_status'), 'email_transactions', ['status'], unique=False)
    op.create_index(op.f('ix_email_transactions_tx_hash'), 'email_transactions', ['tx_hash'], unique=False)
    # Daily cap lookups
    op.create_index(
        'ix_email_transactions_sender_asset_created',
        'email_transactions',
        ['sender_email', 'asset', 'created_at'],
        unique=False,
    )
    # Expiry sweep
    op.create_index('ix_email_transactions_status_expires', 'email_transactions', ['status', 'expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_email_transactions_status_expires', table_name='email_transactions')
    op.drop_index('ix_email_transactions_sender_asset_created', table_name='email_transactions')
    op.drop_index(op.f('ix_email_transactions_tx_hash'), table_name='email_transactions')
    op.drop_index(op.f('ix_email_transactions_status'), table_name='email_transactions')
    op.drop_index(op.f('ix_email_transactions_recipient_email'), table_name='email_transactions')
    op.drop_index(op.f('ix_email_transactions_sender_email'), table_name='email_transactions')
    op.drop_index(op.f('ix_email_transactions_tx_id'), table_name='email_transactions')
    op.drop_index(op.f('ix_email_transactions_id'), table_name='email_transactions')
    op.drop_table('email_transactions')
    postgresql.ENUM(name='email_transaction_status').drop(op.get_bind(), checkfirst=True)

    op.drop_index(op.f('ix_wallet_users_wallet_address'), table_name='wallet_users')
    op.drop_index(op.f('ix_wallet_users_email'), table_name='wallet_users')
    op.drop_index(op.f('ix_wallet_users_id'), table_name='wallet_users')
    op.drop_table('wallet_users')
