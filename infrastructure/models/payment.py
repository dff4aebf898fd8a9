"""
支付记录数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON, Index
)

from .base import Base, TimestampMixin


class PaymentRecordModel(TimestampMixin, Base):
    """
    支付记录数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.PaymentRecord 中
    """
    __tablename__ = "payment_records"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    # 每个 offer 只能有一条支付记录（唯一索引兜底并发创建）
    offer_id = Column(Integer, unique=True, nullable=False, comment="交付订单ID")
    business_id = Column(Integer, nullable=False, index=True, comment="业务方用户ID")
    rider_id = Column(Integer, nullable=False, index=True, comment="骑手用户ID")

    # 金额信息（使用 Numeric 存储精确金额）
    total_amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付总额")
    platform_fee = Column(Numeric(precision=15, scale=2), nullable=False, comment="平台费用")
    rider_earnings = Column(Numeric(precision=15, scale=2), nullable=False, comment="骑手收益")
    currency = Column(String(3), nullable=False, default="USD", comment="货币代码 ISO-4217")

    # 支付方式
    payment_method = Column(String(50), nullable=False, comment="支付方式")
    payment_method_details = Column(JSON, nullable=True, comment="卡号后四位/品牌/有效期")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/processing/completed/failed/refunded"
    )
    transaction_id = Column(String(200), nullable=True, index=True, comment="网关交易号")

    # 重试
    retry_count = Column(Integer, nullable=False, default=0, comment="已重试次数")
    max_retries = Column(Integer, nullable=False, default=5, comment="最大重试次数")
    retry_delay = Column(Integer, nullable=False, default=1800, comment="重试间隔（秒）")
    failure_reason = Column(Text, nullable=True, comment="失败原因")
    next_retry_at = Column(DateTime(timezone=True), nullable=True, comment="下次可重试时间")
    last_attempt_at = Column(DateTime(timezone=True), nullable=True, comment="最近一次网关调用时间")

    # 退款
    refund_amount = Column(Numeric(precision=15, scale=2), nullable=True, comment="退款金额")
    refund_reason = Column(Text, nullable=True, comment="退款原因")
    refund_id = Column(String(200), nullable=True, comment="网关退款ID")
    refunded_at = Column(DateTime(timezone=True), nullable=True, comment="退款时间")

    # 时间戳
    # created_at / updated_at 来自 TimestampMixin
    processed_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    # 元数据（JSON格式，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 索引
    __table_args__ = (
        Index("ix_payment_records_rider_status_created", "rider_id", "status", "created_at"),
        Index("ix_payment_records_business_status_created", "business_id", "status", "created_at"),
        Index("ix_payment_records_status_next_retry", "status", "next_retry_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentRecordModel(id={self.id}, offer_id={self.offer_id}, "
            f"amount={self.total_amount}, status='{self.status}')>"
        )
