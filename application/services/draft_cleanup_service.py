"""
草稿工单过期处理

超过 max_age_hours 仍未付款的草稿工单：若有待支付记录，则以系统身份
走一次 "expired" 对账（支付与工单一起变为 EXPIRED）；否则仅更新工单
的支付状态。每张工单单独提交，单个失败不影响其它工单。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from core.logging_config import get_logger
from application.services.reconciliation_service import ReconciliationCommand, ReconciliationService
from domain.audit.entity import SYSTEM_ACTOR
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import PaymentStatus
from domain.payment.state_machine import EventSource
from domain.ticket.entity import Ticket, TicketStatus


logger = get_logger(__name__)


def should_expire_draft(ticket: Ticket, now: datetime, max_age: timedelta) -> bool:
    if ticket.status != TicketStatus.DRAFT or ticket.payment_status != PaymentStatus.PENDING:
        return False
    if ticket.created_at is None:
        return False
    return now - ticket.created_at > max_age


@dataclass
class DraftCleanupReport:
    checked: int = 0
    expired: int = 0
    errors: list[dict] = field(default_factory=list)


class DraftCleanupService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        reconciler: ReconciliationService,
        *,
        max_age_hours: int = 24,
        batch_size: int = 200,
    ) -> None:
        self._uow_factory = uow_factory
        self._reconciler = reconciler
        self._max_age = timedelta(hours=max_age_hours)
        self._batch_size = batch_size

    async def expire_stale_drafts(self, now: Optional[datetime] = None) -> DraftCleanupReport:
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._max_age
        async with self._uow_factory(readonly=True) as uow:
            candidates = await uow.ticket_repository.list_stale_drafts(cutoff, limit=self._batch_size)

        report = DraftCleanupReport(checked=len(candidates))
        for ticket in candidates:
            if not should_expire_draft(ticket, now, self._max_age):
                continue
            try:
                if await self._expire(ticket):
                    report.expired += 1
            except Exception as exc:
                logger.error("draft_expire_failed", ticket_id=ticket.id, error=str(exc))
                report.errors.append({"ticket_id": ticket.id, "error": str(exc)})

        logger.info(
            "draft_cleanup_completed",
            checked=report.checked,
            expired=report.expired,
            errors=len(report.errors),
        )
        return report

    async def _expire(self, ticket: Ticket) -> bool:
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.payment_repository.get_pending_for_ticket(ticket.id)

        if pending is not None:
            outcome = await self._reconciler.reconcile(
                ReconciliationCommand(
                    event="expired",
                    source=EventSource.SYSTEM,
                    actor=SYSTEM_ACTOR,
                    order_id=pending.order_id,
                    expected_status=PaymentStatus.PENDING,
                    notes="draft expired",
                )
            )
            return outcome.changed

        async with self._uow_factory() as uow:
            return await uow.ticket_repository.expire_draft_payment(ticket.id)
