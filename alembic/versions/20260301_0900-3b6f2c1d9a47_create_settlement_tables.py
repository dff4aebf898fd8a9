"""create_settlement_tables

Revision ID: 3b6f2c1d9a47
Revises:
Create Date: 2026-03-01 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b6f2c1d9a47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'offers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('business_id', sa.Integer(), nullable=False, comment='发布方用户ID'),
        sa.Column('rider_id', sa.Integer(), nullable=True, comment='接单骑手ID'),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='订单金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='open',
                  comment='open/accepted/picked_up/in_transit/delivered/completed/cancelled'),
        sa.Column('title', sa.String(length=200), nullable=True),
        sa.Column('pickup_address', sa.String(length=500), nullable=True),
        sa.Column('delivery_address', sa.String(length=500), nullable=True),
        sa.Column('business_name', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_offers_id', 'offers', ['id'], unique=False)
    op.create_index('ix_offers_business_id', 'offers', ['business_id'], unique=False)
    op.create_index('ix_offers_rider_id', 'offers', ['rider_id'], unique=False)
    op.create_index('ix_offers_status', 'offers', ['status'], unique=False)
    op.create_index('ix_offers_rider_status', 'offers', ['rider_id', 'status'], unique=False)

    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('offer_id', sa.Integer(), nullable=False, comment='交付订单ID'),
        sa.Column('business_id', sa.Integer(), nullable=False, comment='业务方用户ID'),
        sa.Column('rider_id', sa.Integer(), nullable=False, comment='骑手用户ID'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False, comment='支付总额'),
        sa.Column('platform_fee', sa.Numeric(precision=15, scale=2), nullable=False, comment='平台费用'),
        sa.Column('rider_earnings', sa.Numeric(precision=15, scale=2), nullable=False, comment='骑手收益'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD', comment='货币代码 ISO-4217'),
        sa.Column('payment_method', sa.String(length=50), nullable=False, comment='支付方式'),
        sa.Column('payment_method_details', sa.JSON(), nullable=True, comment='卡号后四位/品牌/有效期'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='支付状态: pending/processing/completed/failed/refunded'),
        sa.Column('transaction_id', sa.String(length=200), nullable=True, comment='网关交易号'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0', comment='已重试次数'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='5', comment='最大重试次数'),
        sa.Column('retry_delay', sa.Integer(), nullable=False, server_default='1800', comment='重试间隔（秒）'),
        sa.Column('failure_reason', sa.Text(), nullable=True, comment='失败原因'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True, comment='下次可重试时间'),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True, comment='最近一次网关调用时间'),
        sa.Column('refund_amount', sa.Numeric(precision=15, scale=2), nullable=True, comment='退款金额'),
        sa.Column('refund_reason', sa.Text(), nullable=True, comment='退款原因'),
        sa.Column('refund_id', sa.String(length=200), nullable=True, comment='网关退款ID'),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True, comment='退款时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.PrimaryKeyConstraint('id'),
        # 每个 offer 只允许一条支付记录
        sa.UniqueConstraint('offer_id', name='uq_payment_records_offer_id'),
        comment='支付记录表，每个交付订单对应一条结算记录'
    )
    op.create_index('ix_payment_records_id', 'payment_records', ['id'], unique=False)
    op.create_index('ix_payment_records_business_id', 'payment_records', ['business_id'], unique=False)
    op.create_index('ix_payment_records_rider_id', 'payment_records', ['rider_id'], unique=False)
    op.create_index('ix_payment_records_status', 'payment_records', ['status'], unique=False)
    op.create_index('ix_payment_records_transaction_id', 'payment_records', ['transaction_id'], unique=False)
    op.create_index('ix_payment_records_rider_status_created', 'payment_records',
                    ['rider_id', 'status', 'created_at'], unique=False)
    op.create_index('ix_payment_records_business_status_created', 'payment_records',
                    ['business_id', 'status', 'created_at'], unique=False)
    op.create_index('ix_payment_records_status_next_retry', 'payment_records',
                    ['status', 'next_retry_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payment_records_status_next_retry', table_name='payment_records')
    op.drop_index('ix_payment_records_business_status_created', table_name='payment_records')
    op.drop_index('ix_payment_records_rider_status_created', table_name='payment_records')
    op.drop_index('ix_payment_records_transaction_id', table_name='payment_records')
    op.drop_index('ix_payment_records_status', table_name='payment_records')
    op.drop_index('ix_payment_records_rider_id', table_name='payment_records')
    op.drop_index('ix_payment_records_business_id', table_name='payment_records')
    op.drop_index('ix_payment_records_id', table_name='payment_records')
    op.drop_table('payment_records')

    op.drop_index('ix_offers_rider_status', table_name='offers')
    op.drop_index('ix_offers_status', table_name='offers')
    op.drop_index('ix_offers_rider_id', table_name='offers')
    op.drop_index('ix_offers_business_id', table_name='offers')
    op.drop_index('ix_offers_id', table_name='offers')
    op.drop_table('offers')
