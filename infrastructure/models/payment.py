"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, JSON, Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(String(100), unique=True, index=True, nullable=False, comment="订单ID")
    ticket_id = Column(
        Integer,
        ForeignKey("tickets.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="所属工单ID",
    )

    provider = Column(String(50), nullable=False, default="QRIS", comment="支付渠道")
    # 金额使用最小货币单位的整数
    amount = Column(Integer, nullable=False, comment="支付金额（含唯一码）")
    currency = Column(String(3), nullable=False, default="IDR", comment="货币代码 ISO-4217")

    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="支付状态: PENDING/PAID/FAILED/EXPIRED/REFUNDED/REJECTED"
    )
    version = Column(Integer, nullable=False, default=0, comment="乐观锁版本号")

    payload = Column(JSON, nullable=True, comment="结构化载荷：唯一码、状态历史、渠道字段")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    paid_at = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")

    ticket = relationship("TicketModel", back_populates="payments", lazy="select")

    __table_args__ = (
        Index("ix_payments_provider_status_amount", "provider", "status", "amount"),
        Index("ix_payments_created_at", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, order_id='{self.order_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
