"""
工单领域实体
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import PaymentStatus


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class TicketStatus(str, Enum):
    DRAFT = "DRAFT"
    RECEIVED = "RECEIVED"
    IN_REVIEW = "IN_REVIEW"
    NEED_MORE_INFO = "NEED_MORE_INFO"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"


@dataclass
class Customer:
    id: Optional[int]
    name: str
    email: str
    phone: Optional[str] = None


@dataclass
class Attachment:
    """工单附件；file_data 在上传到远端文件夹之前暂存在本地"""

    id: Optional[int]
    ticket_id: int
    file_name: str
    mime_type: str
    size: int
    file_data: Optional[bytes] = None
    remote_file_id: Optional[str] = None
    remote_file_url: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_pending_upload(self) -> bool:
        return self.remote_file_url is None and bool(self.file_data)


@dataclass
class Ticket:
    """
    工单聚合根

    业务规则：
    1. 只有 PAID 对账结果才能把工单推进到 RECEIVED
    2. payment_status 镜像最近一次对账后的支付状态
    """

    id: Optional[int]
    ticket_no: str
    customer_id: int
    status: TicketStatus = TicketStatus.DRAFT
    payment_status: PaymentStatus = PaymentStatus.PENDING
    issue_type: Optional[str] = None
    description: Optional[str] = None

    drive_folder_id: Optional[str] = None
    drive_folder_url: Optional[str] = None
    sheet_row_index: Optional[int] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    customer: Optional[Customer] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.ticket_no:
            raise DomainValidationException("ticket_no 不能为空", field="ticket_no")
        if not isinstance(self.status, TicketStatus):
            self.status = TicketStatus(self.status)
        if not isinstance(self.payment_status, PaymentStatus):
            self.payment_status = PaymentStatus(self.payment_status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.closed_at = _ensure_utc(self.closed_at)

    @property
    def has_folder(self) -> bool:
        return bool(self.drive_folder_id)

    def summary(self) -> dict:
        return {
            "id": self.id,
            "ticket_no": self.ticket_no,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
        }
