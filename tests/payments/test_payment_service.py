import random

import pytest
from sqlalchemy import select

from application.dtos.payments import (
    ConfirmQrisRequest,
    EditPaymentStatusRequest,
    RejectPaymentRequest,
    VerifyQrisRequest,
    WebhookNotification,
)
from application.services.payment_service import QrisPaymentService
from application.services.post_payment_service import PostPaymentOrchestrator
from application.services.reconciliation_service import ReconciliationService
from core.settings import QrisSettings
from domain.audit.entity import Actor
from domain.common.exceptions import (
    InvalidTicketStateException,
    PaymentIntegrityMismatchException,
    PaymentStateConflictException,
    TicketAlreadyPaidException,
    TicketNotFoundException,
    UniqueCodeExhaustedException,
)
from infrastructure.models import AuditLogModel, TicketModel


pytestmark = pytest.mark.asyncio

OPERATOR = Actor(id="op-7", name="Sari")


@pytest.fixture
def make_service(uow_factory, collaborators):
    def _make(*, qris: QrisSettings = None, with_orchestrator: bool = True) -> QrisPaymentService:
        orchestrator = PostPaymentOrchestrator(uow_factory, **collaborators) if with_orchestrator else None
        return QrisPaymentService(
            uow_factory,
            reconciler=ReconciliationService(uow_factory),
            orchestrator=orchestrator,
            qris=qris,
            rng=random.Random(42),
        )

    return _make


async def _ticket_row(session_factory, ticket_id):
    async with session_factory() as session:
        return (await session.execute(select(TicketModel).where(TicketModel.id == ticket_id))).scalar_one()


class TestCreatePayment:
    async def test_creates_pending_payment_with_unique_code(self, seed, make_service):
        ticket_id = await seed.ticket(ticket_no="WAC-2025-000001")

        created = await make_service().create_payment(ticket_id)

        assert not created.reused
        assert created.base_amount == 50000
        assert 50100 <= created.total_amount <= 50999
        assert created.unique_code == str(created.total_amount - 50000)
        assert created.payment.status == "PENDING"
        assert created.payment.order_id.startswith("QRIS-WAC-2025-000001-")

    async def test_second_call_reuses_pending_payment(self, seed, make_service):
        ticket_id = await seed.ticket()
        service = make_service()

        first = await service.create_payment(ticket_id)
        second = await service.create_payment(ticket_id)

        assert second.reused
        assert second.payment.order_id == first.payment.order_id
        assert second.total_amount == first.total_amount

    async def test_allocation_skips_amounts_in_use(self, seed, make_service):
        other = await seed.ticket()
        await seed.payment(other, order_id="QRIS-OTHER", amount=50100, unique_code="100")
        ticket_id = await seed.ticket()
        service = make_service(qris=QrisSettings(unique_code_min=100, unique_code_max=101))

        created = await service.create_payment(ticket_id)

        assert created.total_amount == 50101
        with pytest.raises(UniqueCodeExhaustedException):
            await service.create_payment(await seed.ticket())

    async def test_paid_ticket_is_rejected(self, seed, make_service):
        ticket_id = await seed.ticket(status="RECEIVED", payment_status="PAID")
        with pytest.raises(TicketAlreadyPaidException):
            await make_service().create_payment(ticket_id)

    async def test_non_draft_ticket_is_rejected(self, seed, make_service):
        ticket_id = await seed.ticket(status="IN_REVIEW", payment_status="FAILED")
        with pytest.raises(InvalidTicketStateException):
            await make_service().create_payment(ticket_id)

    async def test_missing_ticket(self, make_service):
        with pytest.raises(TicketNotFoundException):
            await make_service().create_payment(404)


class TestVerify:
    async def test_returns_payment_ticket_and_customer(self, seed, make_service):
        ticket_id = await seed.ticket(ticket_no="WAC-2025-000042")
        await seed.payment(ticket_id, order_id="QRIS-42", amount=50123, unique_code="123")

        match = await make_service().verify(VerifyQrisRequest(amount=50123, uniqueCode=123))

        assert match.payment.order_id == "QRIS-42"
        assert match.ticket.ticket_no == "WAC-2025-000042"
        assert match.customer.name == "Budi Santoso"

    async def test_list_pending(self, seed, make_service):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-P1")
        paid = await seed.ticket(status="RECEIVED", payment_status="PAID")
        await seed.payment(paid, order_id="QRIS-P2", amount=50222, unique_code="222", status="PAID")

        items = await make_service().list_pending()

        assert [i.payment.order_id for i in items] == ["QRIS-P1"]


class TestWebhook:
    async def test_success_runs_orchestrator_once(self, seed, make_service, collaborators, session_factory):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-W1")
        service = make_service()
        notification = WebhookNotification.model_validate({"orderId": "QRIS-W1", "status": "settlement", "txnRef": "abc"})

        first = await service.handle_webhook(notification)
        second = await service.handle_webhook(notification)

        assert first.changed and first.newly_paid
        assert not second.changed and not second.ignored
        assert len(collaborators["notifier"].summaries) == 1
        ticket = await _ticket_row(session_factory, ticket_id)
        assert (ticket.status, ticket.payment_status) == ("RECEIVED", "PAID")

    async def test_amount_mismatch_is_only_logged(self, seed, make_service):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-W2")

        outcome = await make_service().handle_webhook(
            WebhookNotification.model_validate({"orderId": "QRIS-W2", "status": "paid", "amount": 1})
        )

        assert outcome.payment.status.value == "PAID"

    async def test_orchestrator_failure_keeps_payment_paid(self, seed, make_service, collaborators, session_factory):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-W3")
        collaborators["folders"].fail = True
        collaborators["notifier"].delivered = False

        outcome = await make_service().handle_webhook(
            WebhookNotification.model_validate({"orderId": "QRIS-W3", "status": "success"})
        )

        assert outcome.newly_paid
        ticket = await _ticket_row(session_factory, ticket_id)
        assert ticket.payment_status == "PAID"

    async def test_lost_version_race_resolves_as_duplicate(self, seed, make_service, collaborators, monkeypatch):
        await seed.payment(await seed.ticket(), order_id="QRIS-W4")
        real_reconcile = ReconciliationService.reconcile
        calls = []

        async def racing_reconcile(self, command):
            calls.append(command.order_id)
            if len(calls) == 1:
                # 另一个投递先提交
                await real_reconcile(self, command)
                raise PaymentStateConflictException(order_id=command.order_id, expected="PENDING")
            return await real_reconcile(self, command)

        monkeypatch.setattr(ReconciliationService, "reconcile", racing_reconcile)

        outcome = await make_service().handle_webhook(
            WebhookNotification.model_validate({"orderId": "QRIS-W4", "status": "success"})
        )

        assert calls == ["QRIS-W4", "QRIS-W4"]
        assert outcome.payment.status.value == "PAID"
        assert not outcome.changed and not outcome.newly_paid
        assert collaborators["notifier"].summaries == []


class TestManualActions:
    async def test_confirm_checks_integrity(self, seed, make_service):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-M1", amount=50123, unique_code="123")
        service = make_service()

        with pytest.raises(PaymentIntegrityMismatchException) as exc:
            await service.confirm_manual(
                ConfirmQrisRequest(paymentId=payment_id, orderId="QRIS-M1", confirmedAmount=50124, uniqueCode="123"),
                OPERATOR,
            )
        assert exc.value.field == "confirmedAmount"

        with pytest.raises(PaymentIntegrityMismatchException):
            await service.confirm_manual(
                ConfirmQrisRequest(paymentId=payment_id, orderId="QRIS-M1", confirmedAmount=50123, uniqueCode="124"),
                OPERATOR,
            )
        with pytest.raises(PaymentIntegrityMismatchException):
            await service.confirm_manual(
                ConfirmQrisRequest(paymentId=payment_id, orderId="QRIS-OTHER", confirmedAmount=50123, uniqueCode="123"),
                OPERATOR,
            )

    async def test_confirm_marks_paid_audits_and_runs_orchestrator(
        self, seed, make_service, collaborators, session_factory
    ):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-M2", amount=50123, unique_code="123")

        outcome = await make_service().confirm_manual(
            ConfirmQrisRequest(
                paymentId=payment_id, orderId="QRIS-M2", confirmedAmount=50123, uniqueCode=123, notes="bank slip ok"
            ),
            OPERATOR,
        )

        assert outcome.newly_paid
        assert collaborators["notifier"].summaries[0].ticket_id == ticket_id
        async with session_factory() as session:
            audit = (await session.execute(select(AuditLogModel))).scalars().one()
        assert audit.action == "PAYMENT_CONFIRMED"
        assert audit.actor_id == "op-7"
        assert audit.after["notes"] == "bank slip ok"

    async def test_confirm_already_paid_conflicts(self, seed, make_service):
        ticket_id = await seed.ticket(status="RECEIVED", payment_status="PAID")
        payment_id = await seed.payment(ticket_id, order_id="QRIS-M3", status="PAID")

        with pytest.raises(PaymentStateConflictException):
            await make_service().confirm_manual(
                ConfirmQrisRequest(paymentId=payment_id, orderId="QRIS-M3", confirmedAmount=50123, uniqueCode="123"),
                OPERATOR,
            )

    async def test_reject_pending_payment(self, seed, make_service, collaborators, session_factory):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-R1")

        outcome = await make_service().reject_manual(
            RejectPaymentRequest(paymentId=payment_id, orderId="QRIS-R1", reason="transfer never arrived"),
            OPERATOR,
        )

        assert outcome.payment.status.value == "REJECTED"
        assert collaborators["notifier"].summaries == []
        ticket = await _ticket_row(session_factory, ticket_id)
        assert (ticket.status, ticket.payment_status) == ("DRAFT", "REJECTED")

    async def test_edit_to_paid_runs_orchestrator(self, seed, make_service, collaborators):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-E1", status="REJECTED")

        outcome = await make_service().edit_status(
            EditPaymentStatusRequest(paymentId=payment_id, orderId="QRIS-E1", newStatus="paid"),
            OPERATOR,
        )

        assert outcome.newly_paid
        assert outcome.ticket_status.value == "RECEIVED"
        assert len(collaborators["notifier"].summaries) == 1

    async def test_edit_to_same_status_is_noop(self, seed, make_service, session_factory):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-E2")

        outcome = await make_service().edit_status(
            EditPaymentStatusRequest(paymentId=payment_id, orderId="QRIS-E2", newStatus="PENDING"),
            OPERATOR,
        )

        assert not outcome.changed
        async with session_factory() as session:
            assert (await session.execute(select(AuditLogModel))).scalars().all() == []


class TestRerunPostPayment:
    async def test_reruns_for_paid_ticket(self, seed, make_service, collaborators):
        ticket_id = await seed.ticket(status="RECEIVED", payment_status="PAID")

        report = await make_service().rerun_post_payment(ticket_id)

        assert report.ok
        assert collaborators["folders"].calls == [ticket_id]

    async def test_unpaid_ticket_is_rejected(self, seed, make_service):
        ticket_id = await seed.ticket()
        with pytest.raises(InvalidTicketStateException):
            await make_service().rerun_post_payment(ticket_id)

    async def test_missing_ticket(self, make_service):
        with pytest.raises(TicketNotFoundException):
            await make_service().rerun_post_payment(404)

    async def test_requires_orchestrator(self, seed, make_service):
        ticket_id = await seed.ticket(status="RECEIVED", payment_status="PAID")
        with pytest.raises(RuntimeError):
            await make_service(with_orchestrator=False).rerun_post_payment(ticket_id)


class TestAuditTrail:
    async def test_lists_admin_changes_in_order(self, seed, make_service):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-T1")
        service = make_service()

        for status in ("REJECTED", "PENDING"):
            await service.edit_status(
                EditPaymentStatusRequest(paymentId=payment_id, orderId="QRIS-T1", newStatus=status), OPERATOR
            )
        trail = await service.audit_trail(ticket_id)

        assert [e.after["status"] for e in trail] == ["REJECTED", "PENDING"]
        assert trail[0].before["status"] == "PENDING"
        assert {e.actor_name for e in trail} == {"Sari"}

    async def test_missing_ticket(self, make_service):
        with pytest.raises(TicketNotFoundException):
            await make_service().audit_trail(404)
