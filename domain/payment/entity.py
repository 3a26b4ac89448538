"""
支付领域实体 - 支付聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.payload import PaymentPayload, StatusHistoryEntry, parse_disambiguation_code


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "PENDING"     # 待支付
    PAID = "PAID"           # 已支付
    FAILED = "FAILED"       # 支付失败
    EXPIRED = "EXPIRED"     # 已过期
    REFUNDED = "REFUNDED"   # 已退款
    REJECTED = "REJECTED"   # 人工驳回


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Payment:
    """
    支付聚合根

    业务规则：
    1. order_id 全局唯一，一个 order_id 至多一笔支付
    2. 金额为正整数（最小货币单位）
    3. 支付记录从不物理删除，只通过对账事务或管理员修改变更状态
    """

    id: Optional[int]
    ticket_id: int
    order_id: str
    amount: int
    currency: str = "IDR"
    status: PaymentStatus = PaymentStatus.PENDING
    provider: str = "QRIS"
    payload: PaymentPayload = field(default_factory=PaymentPayload)
    # 乐观并发版本号，由仓储在条件更新时递增
    version: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.order_id or not self.order_id.strip():
            raise DomainValidationException("order_id 不能为空", field="order_id")
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise DomainValidationException(f"支付金额必须为正整数: {self.amount}", field="amount")
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(f"无效的货币代码: {self.currency}", field="currency")
        if not isinstance(self.status, PaymentStatus):
            self.status = PaymentStatus(self.status)
        if not isinstance(self.payload, PaymentPayload):
            self.payload = PaymentPayload.from_raw(self.payload)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.paid_at = _ensure_utc(self.paid_at)

    @property
    def unique_code(self) -> Optional[str]:
        return parse_disambiguation_code(self.payload)

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING

    def apply_status(
        self,
        new_status: PaymentStatus,
        *,
        actor: str,
        source: str,
        notes: Optional[str] = None,
        at: Optional[datetime] = None,
        provider_data: Optional[dict[str, Any]] = None,
    ) -> StatusHistoryEntry:
        """变更状态并追加历史记录"""
        now = _ensure_utc(at) or datetime.now(timezone.utc)
        entry = StatusHistoryEntry(
            from_status=self.status.value,
            to_status=new_status.value,
            actor=actor,
            source=source,
            at=now,
            notes=notes,
        )
        self.payload.status_history.append(entry)
        if provider_data:
            self.payload.provider_data = dict(provider_data)
        self.status = new_status
        self.updated_at = now
        if new_status == PaymentStatus.PAID and self.paid_at is None:
            self.paid_at = now
        return entry

    def snapshot(self) -> dict:
        """审计日志使用的快照"""
        return {
            "payment_id": self.id,
            "order_id": self.order_id,
            "status": self.status.value,
            "amount": self.amount,
            "unique_code": self.unique_code,
        }
