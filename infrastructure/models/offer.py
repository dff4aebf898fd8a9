"""
交付订单数据库模型（支付核心只读写 status）
"""
from sqlalchemy import Column, Integer, String, Numeric, Index

from .base import Base, TimestampMixin


class OfferModel(TimestampMixin, Base):
    __tablename__ = "offers"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, nullable=False, index=True, comment="发布方用户ID")
    rider_id = Column(Integer, nullable=True, index=True, comment="接单骑手ID")
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单金额")
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(
        String(20),
        nullable=False,
        default="open",
        index=True,
        comment="open/accepted/picked_up/in_transit/delivered/completed/cancelled"
    )
    title = Column(String(200), nullable=True)
    pickup_address = Column(String(500), nullable=True)
    delivery_address = Column(String(500), nullable=True)
    business_name = Column(String(200), nullable=True)

    __table_args__ = (
        Index("ix_offers_rider_status", "rider_id", "status"),
    )

    def __repr__(self):
        return f"<OfferModel(id={self.id}, status='{self.status}', rider_id={self.rider_id})>"
