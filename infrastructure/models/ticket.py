"""
工单、客户与附件数据库模型
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, LargeBinary, Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerModel(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, comment="客户姓名")
    email = Column(String(255), nullable=False, index=True, comment="邮箱")
    phone = Column(String(50), nullable=True, comment="手机号")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    tickets = relationship("TicketModel", back_populates="customer", lazy="select")


class TicketModel(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_no = Column(String(32), unique=True, index=True, nullable=False, comment="工单号 WAC-YYYY-NNNNNN")
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True, comment="客户ID")

    status = Column(String(30), nullable=False, default="DRAFT", index=True, comment="工单状态")
    payment_status = Column(String(20), nullable=False, default="PENDING", index=True, comment="最近一次对账的支付状态")

    issue_type = Column(String(100), nullable=True, comment="问题类型")
    description = Column(Text, nullable=True, comment="问题描述")

    drive_folder_id = Column(String(200), nullable=True, comment="远端文件夹ID")
    drive_folder_url = Column(String(500), nullable=True, comment="远端文件夹URL")
    sheet_row_index = Column(Integer, nullable=True, comment="跟踪表行号")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False, comment="更新时间")
    closed_at = Column(DateTime(timezone=True), nullable=True, comment="关闭时间")

    customer = relationship("CustomerModel", back_populates="tickets", lazy="selectin")
    payments = relationship("PaymentModel", back_populates="ticket", lazy="select")
    attachments = relationship("AttachmentModel", back_populates="ticket", lazy="select")

    __table_args__ = (
        Index("ix_tickets_status_payment_created", "status", "payment_status", "created_at"),
    )

    def __repr__(self):
        return f"<TicketModel(id={self.id}, ticket_no='{self.ticket_no}', status='{self.status}')>"


class AttachmentModel(Base):
    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False, comment="文件名")
    mime_type = Column(String(100), nullable=False, comment="MIME类型")
    size = Column(Integer, nullable=False, comment="字节数")
    # 上传成功后清空
    file_data = Column(LargeBinary, nullable=True, comment="本地暂存的文件内容")
    remote_file_id = Column(String(200), nullable=True, comment="远端文件ID")
    remote_file_url = Column(String(500), nullable=True, comment="远端文件URL")
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    ticket = relationship("TicketModel", back_populates="attachments")
