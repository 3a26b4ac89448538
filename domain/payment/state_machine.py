"""
支付状态机（纯函数）

输入：事件（回调状态字符串 / 管理员目标状态）与工单当前状态；
输出：新的支付状态与工单状态。未知事件返回 no-op，而不是报错，
以容忍渠道方新增的状态词汇。
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from domain.payment.entity import PaymentStatus
from domain.ticket.entity import TicketStatus


class EventSource(str, Enum):
    WEBHOOK = "webhook"
    MANUAL = "manual"
    SYSTEM = "system"
    ADMIN = "admin"


# 回调 / 人工确认使用的状态词汇（大小写不敏感）
PROVIDER_EVENT_MAP: dict[str, PaymentStatus] = {
    "success": PaymentStatus.PAID,
    "paid": PaymentStatus.PAID,
    "settlement": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "deny": PaymentStatus.FAILED,
    "expired": PaymentStatus.EXPIRED,
    "cancel": PaymentStatus.EXPIRED,
}

# 管理员可直接设置的目标状态及其对应的工单状态
ADMIN_TARGETS: dict[PaymentStatus, TicketStatus] = {
    PaymentStatus.PAID: TicketStatus.RECEIVED,
    PaymentStatus.REJECTED: TicketStatus.DRAFT,
    PaymentStatus.PENDING: TicketStatus.DRAFT,
}


@dataclass(frozen=True)
class Transition:
    payment_status: Optional[PaymentStatus]
    ticket_status: TicketStatus

    @property
    def is_noop(self) -> bool:
        return self.payment_status is None


def transition(
    event: Optional[str],
    current_ticket_status: TicketStatus,
    *,
    source: EventSource = EventSource.WEBHOOK,
) -> Transition:
    """计算一次事件对应的状态迁移；对任何输入都返回结果。"""
    unchanged = Transition(payment_status=None, ticket_status=current_ticket_status)
    if not isinstance(event, str):
        return unchanged
    key = event.strip()

    if source == EventSource.ADMIN:
        try:
            target = PaymentStatus(key.upper())
        except ValueError:
            return unchanged
        ticket_status = ADMIN_TARGETS.get(target)
        if ticket_status is None:
            return unchanged
        return Transition(payment_status=target, ticket_status=ticket_status)

    target = PROVIDER_EVENT_MAP.get(key.lower())
    if target is None:
        return unchanged
    if target == PaymentStatus.PAID:
        return Transition(payment_status=target, ticket_status=TicketStatus.RECEIVED)
    return Transition(payment_status=target, ticket_status=current_ticket_status)
