"""create_wallet_transactions_table

Revision ID: create_wallet_transactions_20261001
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_wallet_transactions_20261001'
down_revision = None
branch_labels = None
depends_on = None


transaction_type = sa.Enum('DEPOSIT', 'WITHDRAW', name='transaction_type', create_constraint=True)
transaction_status = sa.Enum('PENDING', 'PROCESSING', 'COMPLETE', 'FAILED', name='transaction_status', create_constraint=True)
transaction_context_kind = sa.Enum('none', 'shares-subscription', name='transaction_context_kind', create_constraint=True)


def upgrade() -> None:
    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('type', transaction_type, nullable=False),
        sa.Column('status', transaction_status, nullable=False),
        sa.Column('amount_msats', sa.BigInteger(), nullable=False),
        sa.Column('amount_fiat', sa.Numeric(20, 2), nullable=True),
        sa.Column('reference', sa.String(length=255), nullable=True),
        sa.Column('payment_tracker', sa.String(length=255), nullable=True),
        sa.Column('lightning', sa.JSON(), nullable=True),
        sa.Column('lnurl_k1', sa.String(length=128), nullable=True),
        sa.Column('lnurl_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('context', sa.Text(), nullable=True),
        sa.Column('context_kind', transaction_context_kind, nullable=False),
        sa.Column('context_ref', sa.String(length=255), nullable=True),
        sa.Column('context_error', sa.String(length=32), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create indexes
    op.create_index(op.f('ix_wallet_transactions_id'), 'wallet_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_wallet_transactions_user_id'), 'wallet_transactions', ['user_id'], unique=False)
    op.create_index(op.f('ix_wallet_transactions_type'), 'wallet_transactions', ['type'], unique=False)
    op.create_index(op.f('ix_wallet_transactions_status'), 'wallet_transactions', ['status'], unique=False)
    op.create_index(op.f('ix_wallet_transactions_payment_tracker'), 'wallet_transactions', ['payment_tracker'], unique=True)
    op.create_index(op.f('ix_wallet_transactions_lnurl_k1'), 'wallet_transactions', ['lnurl_k1'], unique=True)
    op.create_index(op.f('ix_wallet_transactions_context_ref'), 'wallet_transactions', ['context_ref'], unique=False)


def downgrade() -> None:
    # Drop indexes
    op.drop_index(op.f('ix_wallet_transactions_context_ref'), table_name='wallet_transactions')
    op.drop_index(op.f('ix_wallet_transactions_lnurl_k1'), table_name='wallet_transactions')
    op.drop_index(op.f('ix_wallet_transactions_payment_tracker'), table_name='wallet_transactions')
    op.drop_index(op.f('ix_wallet_transactions_status'), table_name='wallet_transactions')
    op.drop_index(op.f('ix_wallet_transactions_type'), table_name='wallet_transactions')
    op.drop_index(op.f('ix_wallet_transactions_user_id'), table_name='wallet_transactions')
    op.drop_index(op.f('ix_wallet_transactions_id'), table_name='wallet_transactions')

    op.drop_table('wallet_transactions')

    bind = op.get_bind()
    transaction_context_kind.drop(bind, checkfirst=True)
    transaction_status.drop(bind, checkfirst=True)
    transaction_type.drop(bind, checkfirst=True)
