from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from application.services.draft_cleanup_service import DraftCleanupService, should_expire_draft
from application.services.reconciliation_service import ReconciliationService
from domain.payment.entity import PaymentStatus
from domain.ticket.entity import Ticket, TicketStatus
from infrastructure.models import PaymentModel, TicketModel


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_should_expire_draft_only_for_old_pending_drafts():
    max_age = timedelta(hours=24)
    old = NOW - timedelta(hours=30)

    def ticket(**kw):
        base = dict(id=1, ticket_no="WAC-2025-000001", customer_id=1, created_at=old)
        base.update(kw)
        return Ticket(**base)

    assert should_expire_draft(ticket(), NOW, max_age)
    assert not should_expire_draft(ticket(created_at=NOW - timedelta(hours=1)), NOW, max_age)
    assert not should_expire_draft(ticket(status=TicketStatus.RECEIVED), NOW, max_age)
    assert not should_expire_draft(ticket(payment_status=PaymentStatus.PAID), NOW, max_age)
    assert not should_expire_draft(ticket(created_at=None), NOW, max_age)


@pytest.mark.asyncio
async def test_expire_stale_drafts(seed, uow_factory, session_factory):
    stale_with_payment = await seed.ticket(created_at=NOW - timedelta(hours=48))
    await seed.payment(stale_with_payment, order_id="QRIS-OLD")
    stale_without_payment = await seed.ticket(created_at=NOW - timedelta(hours=30))
    fresh = await seed.ticket(created_at=NOW - timedelta(hours=2))
    received = await seed.ticket(status="RECEIVED", payment_status="PAID", created_at=NOW - timedelta(days=3))

    service = DraftCleanupService(uow_factory, ReconciliationService(uow_factory), max_age_hours=24)
    report = await service.expire_stale_drafts(now=NOW)

    assert report.checked == 2
    assert report.expired == 2
    assert report.errors == []

    async with session_factory() as session:
        tickets = {
            t.id: t for t in (await session.execute(select(TicketModel))).scalars().all()
        }
        payment = (await session.execute(select(PaymentModel).where(PaymentModel.order_id == "QRIS-OLD"))).scalar_one()

    assert payment.status == "EXPIRED"
    assert payment.payload["status_history"][-1]["source"] == "system"
    assert (tickets[stale_with_payment].status, tickets[stale_with_payment].payment_status) == ("DRAFT", "EXPIRED")
    assert tickets[stale_without_payment].payment_status == "EXPIRED"
    assert tickets[fresh].payment_status == "PENDING"
    assert tickets[received].payment_status == "PAID"


@pytest.mark.asyncio
async def test_one_failure_does_not_stop_the_batch(seed, uow_factory, monkeypatch):
    first = await seed.ticket(created_at=NOW - timedelta(hours=48))
    await seed.ticket(created_at=NOW - timedelta(hours=47))
    service = DraftCleanupService(uow_factory, ReconciliationService(uow_factory), max_age_hours=24)

    original = service._expire

    async def flaky(ticket):
        if ticket.id == first:
            raise RuntimeError("lock timeout")
        return await original(ticket)

    monkeypatch.setattr(service, "_expire", flaky)
    report = await service.expire_stale_drafts(now=NOW)

    assert report.expired == 1
    assert report.errors == [{"ticket_id": first, "error": "lock timeout"}]
