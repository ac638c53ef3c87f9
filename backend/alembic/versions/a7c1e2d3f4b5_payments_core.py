"""payments core: publishers, agents, entitlements, transactions

Revision ID: a7c1e2d3f4b5
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = 'a7c1e2d3f4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

agent_type = sa.Enum('open', 'proprietary', name='agenttype')
pricing_model = sa.Enum('free', 'one_time', 'subscription', 'usage_based', name='pricingmodel')
confirmation_status = sa.Enum('preconfirmed', 'confirmed', 'revoked', name='confirmationstatus')


def upgrade() -> None:
    op.create_table(
        'publishers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('publisher_id', sa.String(length=100), nullable=False),
        sa.Column('display_name', sa.String(length=200), nullable=False),
        sa.Column('payout_address', sa.String(length=42), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f('ix_publishers_publisher_id'), 'publishers', ['publisher_id'], unique=True)

    op.create_table(
        'agents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agent_id', sa.String(length=200), nullable=False),
        sa.Column('publisher_id', sa.Integer(), sa.ForeignKey('publishers.id'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('type', agent_type, nullable=True),
        sa.Column('pricing_model', pricing_model, nullable=True),
        sa.Column('price_usd', sa.Numeric(precision=18, scale=6), nullable=True),
        sa.Column('install', sa.JSON(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=True),
        sa.Column('download_count', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f('ix_agents_agent_id'), 'agents', ['agent_id'], unique=True)

    op.create_table(
        'entitlements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('agents.id'), nullable=False),
        sa.Column('wallet_address', sa.String(length=42), nullable=False),
        sa.Column('entitlement_token', sa.String(length=80), nullable=False, unique=True),
        sa.Column('pricing_model', pricing_model, nullable=False),
        sa.Column('amount_paid', sa.Numeric(precision=38, scale=18), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('confirmation_status', confirmation_status, nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('verification_deadline', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(op.f('ix_entitlements_agent_id'), 'entitlements', ['agent_id'])
    op.create_index(op.f('ix_entitlements_wallet_address'), 'entitlements', ['wallet_address'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entitlement_id', sa.Integer(), sa.ForeignKey('entitlements.id', ondelete='CASCADE'), nullable=True),
        sa.Column('tx_hash', sa.String(length=66), nullable=False),
        sa.Column('from_address', sa.String(length=42), nullable=False),
        sa.Column('to_address', sa.String(length=42), nullable=False),
        sa.Column('amount', sa.Numeric(precision=38, scale=18), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=True),
        sa.Column('platform_fee', sa.Numeric(precision=38, scale=18), nullable=False),
        sa.Column('publisher_amount', sa.Numeric(precision=38, scale=18), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('block_number', sa.Integer(), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # replay protection: one purchase per on-chain transaction
    op.create_index(op.f('ix_transactions_tx_hash'), 'transactions', ['tx_hash'], unique=True)


def downgrade() -> None:
    op.drop_index(op.f('ix_transactions_tx_hash'), table_name='transactions')
    op.drop_table('transactions')
    op.drop_index(op.f('ix_entitlements_wallet_address'), table_name='entitlements')
    op.drop_index(op.f('ix_entitlements_agent_id'), table_name='entitlements')
    op.drop_table('entitlements')
    op.drop_index(op.f('ix_agents_agent_id'), table_name='agents')
    op.drop_table('agents')
    op.drop_index(op.f('ix_publishers_publisher_id'), table_name='publishers')
    op.drop_table('publishers')
    confirmation_status.drop(op.get_bind(), checkfirst=True)
    pricing_model.drop(op.get_bind(), checkfirst=True)
    agent_type.drop(op.get_bind(), checkfirst=True)
