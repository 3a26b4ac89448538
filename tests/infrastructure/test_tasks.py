import pytest

from application.services.draft_cleanup_service import DraftCleanupReport
from application.services.post_payment_service import PostPaymentReport, StepResult
from infrastructure.tasks.tasks import payments as payment_tasks


class FakeCleanup:
    async def expire_stale_drafts(self):
        return DraftCleanupReport(checked=3, expired=2, errors=[{"ticket_id": 9, "error": "boom"}])


class FakeService:
    def __init__(self, report):
        self.report = report
        self.calls = []

    async def rerun_post_payment(self, ticket_id):
        self.calls.append(ticket_id)
        return self.report


@pytest.fixture
def closed(monkeypatch):
    closed = []

    async def fake_close(collaborators):
        closed.append(collaborators)

    monkeypatch.setattr(payment_tasks, "build_collaborators", lambda cfg: {"notifier": object()})
    monkeypatch.setattr(payment_tasks, "close_collaborators", fake_close)
    return closed


def test_expire_stale_drafts_returns_summary(monkeypatch):
    monkeypatch.setattr(payment_tasks, "build_draft_cleanup_service", lambda: FakeCleanup())

    result = payment_tasks.expire_stale_drafts.run()

    assert result == {"checked": 3, "expired": 2, "errors": [{"ticket_id": 9, "error": "boom"}]}


def test_rerun_post_payment_success(monkeypatch, closed):
    report = PostPaymentReport(ticket_id=4, steps=[StepResult(name="notify", ok=True)])
    service = FakeService(report)
    monkeypatch.setattr(payment_tasks, "build_payment_service", lambda collaborators: service)

    result = payment_tasks.rerun_post_payment.run(ticket_id=4)

    assert result == {"ticket_id": 4, "steps": ["notify"]}
    assert service.calls == [4]
    assert len(closed) == 1


def test_rerun_post_payment_retries_on_failed_steps(monkeypatch, closed):
    report = PostPaymentReport(ticket_id=4, steps=[StepResult(name="sync_sheet", ok=False, error="locked")])
    monkeypatch.setattr(payment_tasks, "build_payment_service", lambda collaborators: FakeService(report))

    # 直接调用时 retry 会把原始异常抛出
    with pytest.raises(RuntimeError, match="sync_sheet"):
        payment_tasks.rerun_post_payment.run(ticket_id=4)
    assert len(closed) == 1
