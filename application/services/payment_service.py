"""
QRIS 支付应用服务

对外用例：创建 QRIS 支付、人工核对、回调处理、人工确认/驳回、
管理员修改状态、待支付列表。所有状态写入都经过 ReconciliationService，
支付首次进入 PAID 后再调用 PostPaymentOrchestrator。
"""
from __future__ import annotations

import random
import time
from typing import Callable, Optional

from core.logging_config import get_logger
from core.settings import QrisSettings
from application.dtos.payments import (
    AuditLogDTO,
    ConfirmQrisRequest,
    EditPaymentStatusRequest,
    PaymentDTO,
    PaymentMatchDTO,
    CustomerDTO,
    QrisPaymentCreated,
    RejectPaymentRequest,
    TicketDTO,
    VerifyQrisRequest,
    WebhookNotification,
)
from application.services.match_resolver import MatchResolver, PaymentMatch
from application.services.post_payment_service import PostPaymentOrchestrator, PostPaymentReport
from application.services.reconciliation_service import (
    ReconciliationCommand,
    ReconciliationOutcome,
    ReconciliationService,
)
from domain.audit.entity import WEBHOOK_ACTOR, Actor, AuditAction
from domain.common.exceptions import (
    InvalidTicketStateException,
    PaymentIntegrityMismatchException,
    PaymentNotFoundException,
    PaymentStateConflictException,
    TicketAlreadyPaidException,
    TicketNotFoundException,
    UniqueCodeExhaustedException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.payload import PaymentPayload
from domain.payment.state_machine import EventSource
from domain.ticket.entity import TicketStatus


logger = get_logger(__name__)


class QrisPaymentService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        reconciler: ReconciliationService,
        orchestrator: Optional[PostPaymentOrchestrator] = None,
        qris: Optional[QrisSettings] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._qris = qris or QrisSettings()
        self._resolver = MatchResolver(uow_factory, provider=self._qris.provider)
        self._reconciler = reconciler
        self._orchestrator = orchestrator
        self._rng = rng or random.SystemRandom()

    # ---- 创建 ----

    def _allocate_code(self, used_amounts: set[int]) -> int:
        cfg = self._qris
        free = [
            code
            for code in range(cfg.unique_code_min, cfg.unique_code_max + 1)
            if cfg.base_amount + code not in used_amounts
        ]
        if not free:
            raise UniqueCodeExhaustedException(cfg.base_amount)
        return self._rng.choice(free)

    async def create_payment(self, ticket_id: int) -> QrisPaymentCreated:
        """为草稿工单创建 QRIS 支付；已有待支付记录时直接返回"""
        cfg = self._qris
        async with self._uow_factory() as uow:
            ticket = await uow.ticket_repository.get_by_id(ticket_id, for_update=True)
            if ticket is None:
                raise TicketNotFoundException(ticket_id)
            if ticket.payment_status == PaymentStatus.PAID:
                raise TicketAlreadyPaidException(ticket_id)
            if ticket.status != TicketStatus.DRAFT:
                raise InvalidTicketStateException(ticket_id, ticket.status.value)

            existing = await uow.payment_repository.get_pending_for_ticket(ticket_id)
            if existing is not None:
                logger.info("qris_payment_reused", ticket_id=ticket_id, order_id=existing.order_id)
                return self._created(existing, reused=True)

            used = await uow.payment_repository.list_pending_amounts(
                cfg.provider,
                cfg.base_amount + cfg.unique_code_min,
                cfg.base_amount + cfg.unique_code_max,
            )
            code = self._allocate_code(used)
            payment = await uow.payment_repository.create(
                Payment(
                    id=None,
                    ticket_id=ticket_id,
                    order_id=f"{cfg.order_prefix}-{ticket.ticket_no}-{int(time.time() * 1000)}",
                    amount=cfg.base_amount + code,
                    currency=cfg.currency,
                    provider=cfg.provider,
                    payload=PaymentPayload(unique_code=str(code), base_amount=cfg.base_amount),
                )
            )
            if ticket.payment_status != PaymentStatus.PENDING:
                await uow.ticket_repository.update_status(
                    ticket_id, status=ticket.status, payment_status=PaymentStatus.PENDING
                )
        logger.info(
            "qris_payment_created",
            ticket_id=ticket_id,
            order_id=payment.order_id,
            amount=payment.amount,
        )
        return self._created(payment, reused=False)

    def _created(self, payment: Payment, *, reused: bool) -> QrisPaymentCreated:
        base = payment.payload.base_amount or self._qris.base_amount
        return QrisPaymentCreated(
            payment=PaymentDTO.from_entity(payment),
            base_amount=base,
            unique_code=payment.unique_code or str(payment.amount - base),
            total_amount=payment.amount,
            reused=reused,
        )

    # ---- 查询 ----

    async def verify(self, request: VerifyQrisRequest) -> PaymentMatchDTO:
        match = await self._resolver.resolve(request.amount, request.unique_code, request.order_id)
        return self._match_dto(match)

    @staticmethod
    def _match_dto(match: PaymentMatch) -> PaymentMatchDTO:
        return PaymentMatchDTO(
            payment=PaymentDTO.from_entity(match.payment),
            ticket=TicketDTO.from_entity(match.ticket),
            customer=CustomerDTO.from_entity(match.customer) if match.customer else None,
        )

    async def list_pending(self, limit: int = 100) -> list[PaymentMatchDTO]:
        async with self._uow_factory(readonly=True) as uow:
            payments = await uow.payment_repository.find_pending(provider=self._qris.provider, limit=limit)
            items: list[PaymentMatchDTO] = []
            for payment in payments:
                ticket = await uow.ticket_repository.get_by_id(payment.ticket_id)
                if ticket is None:
                    continue
                items.append(self._match_dto(PaymentMatch(payment, ticket, ticket.customer)))
            return items

    async def audit_trail(self, ticket_id: int, limit: int = 100) -> list[AuditLogDTO]:
        async with self._uow_factory(readonly=True) as uow:
            ticket = await uow.ticket_repository.get_by_id(ticket_id)
            if ticket is None:
                raise TicketNotFoundException(ticket_id)
            entries = await uow.audit_log_repository.list_by_ticket(ticket_id, limit=limit)
        return [AuditLogDTO.from_entity(e) for e in entries]

    # ---- 状态变更 ----

    async def _after_commit(self, outcome: ReconciliationOutcome) -> Optional[PostPaymentReport]:
        if not outcome.newly_paid or self._orchestrator is None:
            return None
        return await self._orchestrator.run(outcome.payment.ticket_id, amount=outcome.payment.amount)

    async def handle_webhook(self, notification: WebhookNotification) -> ReconciliationOutcome:
        command = ReconciliationCommand(
            event=notification.status,
            source=EventSource.WEBHOOK,
            actor=WEBHOOK_ACTOR,
            order_id=notification.order_id,
            provider_data=notification.provider_fields(),
        )
        try:
            outcome = await self._reconciler.reconcile(command)
        except PaymentStateConflictException:
            # 并发投递：另一事务已先提交，重新读取后按重复事件处理
            logger.info("webhook_version_conflict_retry", order_id=notification.order_id)
            outcome = await self._reconciler.reconcile(command)
        payment = outcome.payment
        if notification.amount is not None and notification.amount != payment.amount:
            logger.warning(
                "webhook_amount_mismatch",
                order_id=payment.order_id,
                expected=payment.amount,
                received=notification.amount,
            )
        if notification.unique_code and payment.unique_code and notification.unique_code != payment.unique_code:
            logger.warning(
                "webhook_unique_code_mismatch",
                order_id=payment.order_id,
                expected=payment.unique_code,
                received=notification.unique_code,
            )
        await self._after_commit(outcome)
        return outcome

    async def confirm_manual(self, request: ConfirmQrisRequest, actor: Actor) -> ReconciliationOutcome:
        """人工确认到账：校验订单号/金额/唯一码后按 paid 事件对账"""
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(request.payment_id)
        if payment is None:
            raise PaymentNotFoundException(payment_id=request.payment_id)
        if payment.order_id != request.order_id:
            raise PaymentIntegrityMismatchException(
                "orderId does not belong to this payment",
                field="orderId",
                details={"payment_id": payment.id, "order_id": request.order_id},
            )
        if payment.status != PaymentStatus.PENDING:
            raise PaymentStateConflictException(
                order_id=payment.order_id,
                expected=PaymentStatus.PENDING.value,
                actual=payment.status.value,
            )
        if payment.amount != request.confirmed_amount:
            raise PaymentIntegrityMismatchException(
                "Confirmed amount does not match the payment amount",
                field="confirmedAmount",
                details={"expected": payment.amount, "received": request.confirmed_amount},
            )
        if payment.unique_code != request.unique_code:
            raise PaymentIntegrityMismatchException(
                "Unique code does not match the payment",
                field="uniqueCode",
                details={"expected": payment.unique_code, "received": request.unique_code},
            )

        outcome = await self._reconciler.reconcile(
            ReconciliationCommand(
                event="paid",
                source=EventSource.MANUAL,
                actor=actor,
                payment_id=request.payment_id,
                expected_order_id=request.order_id,
                expected_status=PaymentStatus.PENDING,
                notes=request.notes,
                audit_action=AuditAction.PAYMENT_CONFIRMED,
            )
        )
        await self._after_commit(outcome)
        return outcome

    async def reject_manual(self, request: RejectPaymentRequest, actor: Actor) -> ReconciliationOutcome:
        return await self._reconciler.reconcile(
            ReconciliationCommand(
                event=PaymentStatus.REJECTED.value,
                source=EventSource.ADMIN,
                actor=actor,
                payment_id=request.payment_id,
                expected_order_id=request.order_id,
                expected_status=PaymentStatus.PENDING,
                notes=request.reason,
                audit_action=AuditAction.PAYMENT_REJECTED,
            )
        )

    async def edit_status(self, request: EditPaymentStatusRequest, actor: Actor) -> ReconciliationOutcome:
        outcome = await self._reconciler.reconcile(
            ReconciliationCommand(
                event=request.new_status,
                source=EventSource.ADMIN,
                actor=actor,
                payment_id=request.payment_id,
                expected_order_id=request.order_id,
                notes=request.notes,
                audit_action=AuditAction.PAYMENT_STATUS_CHANGED,
            )
        )
        await self._after_commit(outcome)
        return outcome

    async def rerun_post_payment(self, ticket_id: int) -> PostPaymentReport:
        """对已付款工单重新执行后续同步（文件夹、附件、跟踪表、通知）"""
        if self._orchestrator is None:
            raise RuntimeError("post-payment orchestrator is not configured")
        async with self._uow_factory(readonly=True) as uow:
            ticket = await uow.ticket_repository.get_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundException(ticket_id)
        if ticket.payment_status != PaymentStatus.PAID:
            raise InvalidTicketStateException(ticket_id, ticket.payment_status.value)
        return await self._orchestrator.run(ticket_id)
