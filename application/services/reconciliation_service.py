"""
Reconciliation Transaction：在单个数据库事务内落地状态机的输出。

- 支付行加锁读取（SELECT ... FOR UPDATE），再按版本号条件更新
- 支付与工单一起提交或一起回滚
- 重复事件（状态未变化）不写入任何数据，调用方据此抑制后续副作用
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from core.logging_config import get_logger
from domain.audit.entity import Actor, AuditAction, AuditLogEntry
from domain.common.exceptions import (
    BusinessException,
    PaymentIntegrityMismatchException,
    PaymentNotFoundException,
    PaymentStateConflictException,
    PaymentTransactionFailedException,
    TicketNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.state_machine import EventSource, transition
from domain.ticket.entity import TicketStatus


logger = get_logger(__name__)


@dataclass
class ReconciliationCommand:
    event: str
    source: EventSource
    actor: Actor
    order_id: Optional[str] = None
    payment_id: Optional[int] = None
    # 按 payment_id 查找时用于校验 orderId 是否一致
    expected_order_id: Optional[str] = None
    # 事务内再次确认支付仍处于该状态（关闭 resolve -> reconcile 的 TOCTOU 窗口）
    expected_status: Optional[PaymentStatus] = None
    notes: Optional[str] = None
    provider_data: dict[str, Any] = field(default_factory=dict)
    audit_action: Optional[AuditAction] = None

    @property
    def reference(self) -> str:
        return self.order_id or self.expected_order_id or str(self.payment_id)


@dataclass
class ReconciliationOutcome:
    payment: Payment
    previous_status: PaymentStatus
    ticket_status: TicketStatus
    changed: bool
    ignored: bool = False

    @property
    def newly_paid(self) -> bool:
        return (
            self.changed
            and self.previous_status != PaymentStatus.PAID
            and self.payment.status == PaymentStatus.PAID
        )


class ReconciliationService:
    """支付/工单状态的唯一写入入口"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        protect_closed_tickets: bool = False,
    ) -> None:
        self._uow_factory = uow_factory
        self._protect_closed_tickets = protect_closed_tickets

    async def reconcile(self, command: ReconciliationCommand) -> ReconciliationOutcome:
        try:
            return await self._reconcile(command)
        except BusinessException:
            raise
        except Exception as exc:
            logger.error(
                "payment_reconcile_failed",
                reference=command.reference,
                provider_event=command.event,
                source=command.source.value,
                error=str(exc),
                exc_info=True,
            )
            raise PaymentTransactionFailedException(order_id=command.order_id or command.expected_order_id) from exc

    async def _load_payment(self, uow: AbstractUnitOfWork, command: ReconciliationCommand) -> Payment:
        if command.payment_id is not None:
            payment = await uow.payment_repository.get_by_id(command.payment_id, for_update=True)
        elif command.order_id:
            payment = await uow.payment_repository.get_by_order_id(command.order_id, for_update=True)
        else:
            payment = None
        if payment is None:
            raise PaymentNotFoundException(payment_id=command.payment_id, order_id=command.order_id)
        return payment

    async def _reconcile(self, command: ReconciliationCommand) -> ReconciliationOutcome:
        async with self._uow_factory() as uow:
            payment = await self._load_payment(uow, command)

            if command.expected_order_id is not None and payment.order_id != command.expected_order_id:
                raise PaymentIntegrityMismatchException(
                    "orderId does not belong to this payment",
                    field="orderId",
                    details={"payment_id": payment.id, "order_id": command.expected_order_id},
                )
            if command.expected_status is not None and payment.status != command.expected_status:
                raise PaymentStateConflictException(
                    order_id=payment.order_id,
                    expected=command.expected_status.value,
                    actual=payment.status.value,
                )

            ticket = await uow.ticket_repository.get_by_id(payment.ticket_id, for_update=True)
            if ticket is None:
                raise TicketNotFoundException(payment.ticket_id)

            previous = payment.status
            result = transition(command.event, ticket.status, source=command.source)

            if result.is_noop:
                logger.info(
                    "payment_event_ignored",
                    order_id=payment.order_id,
                    provider_event=command.event,
                    source=command.source.value,
                )
                return ReconciliationOutcome(payment, previous, ticket.status, changed=False, ignored=True)

            if result.payment_status == previous:
                # 重复投递：不写入、不追加历史
                logger.info(
                    "payment_event_duplicate",
                    order_id=payment.order_id,
                    status=previous.value,
                    source=command.source.value,
                )
                return ReconciliationOutcome(payment, previous, ticket.status, changed=False)

            ticket_status = result.ticket_status
            if (
                self._protect_closed_tickets
                and ticket.status == TicketStatus.CLOSED
                and ticket_status != TicketStatus.CLOSED
            ):
                logger.warning(
                    "closed_ticket_status_preserved",
                    ticket_id=ticket.id,
                    order_id=payment.order_id,
                    requested_status=ticket_status.value,
                )
                ticket_status = ticket.status

            before = {**payment.snapshot(), "ticket_status": ticket.status.value}
            expected_version = payment.version
            payment.apply_status(
                result.payment_status,
                actor=command.actor.label,
                source=command.source.value,
                notes=command.notes,
                provider_data=command.provider_data,
            )
            if not await uow.payment_repository.update_if_version(payment, expected_version):
                raise PaymentStateConflictException(order_id=payment.order_id, expected=previous.value)

            await uow.ticket_repository.update_status(
                ticket.id,
                status=ticket_status,
                payment_status=payment.status,
            )

            if command.audit_action is not None:
                await uow.audit_log_repository.append(
                    AuditLogEntry(
                        id=None,
                        actor_id=command.actor.id,
                        actor_name=command.actor.name,
                        ticket_id=ticket.id,
                        action=command.audit_action,
                        before=before,
                        after={**payment.snapshot(), "ticket_status": ticket_status.value, "notes": command.notes},
                    )
                )

            await uow.commit()

        logger.info(
            "payment_reconciled",
            order_id=payment.order_id,
            ticket_id=payment.ticket_id,
            from_status=previous.value,
            to_status=payment.status.value,
            ticket_status=ticket_status.value,
            source=command.source.value,
            actor=command.actor.id,
        )
        return ReconciliationOutcome(payment, previous, ticket_status, changed=True)
