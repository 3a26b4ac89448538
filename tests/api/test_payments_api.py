import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select

from api.dependencies import get_payment_service, get_task_dispatcher
from core.settings import payment_settings
from infrastructure.composition import build_payment_service
from infrastructure.models import PaymentModel, TicketModel
from infrastructure.rate_limit import RateLimiter
from main import app
from shared.codes import BusinessCode


pytestmark = pytest.mark.asyncio

OPERATOR_HEADERS = {"X-Operator-Id": "op-1", "X-Operator-Name": "Rina"}


class FakeDispatcher:
    def __init__(self):
        self.queued: list[int] = []

    def rerun_post_payment(self, ticket_id: int):
        self.queued.append(ticket_id)
        return "task-1"


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest_asyncio.fixture
async def client(uow_factory, collaborators, dispatcher):
    app.dependency_overrides[get_payment_service] = lambda: build_payment_service(collaborators, uow_factory=uow_factory)
    app.dependency_overrides[get_task_dispatcher] = lambda: dispatcher
    app.state.rate_limiter = RateLimiter({"verify": "3/minute"})
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def webhook_settings(monkeypatch):
    monkeypatch.setattr(payment_settings.webhook, "token", None)
    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", None)
    return payment_settings.webhook


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers["X-Request-ID"]


class TestWebhook:
    async def test_paid_event_is_processed(self, client, seed, session_factory, collaborators, webhook_settings):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-H1")

        resp = await client.post("/api/v1/payments/webhooks/qris", json={"orderId": "QRIS-H1", "status": "SUCCESS"})

        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "outcome": "processed",
            "orderId": "QRIS-H1",
            "paymentStatus": "PAID",
            "ticketStatus": "RECEIVED",
            "message": None,
        }
        assert len(collaborators["notifier"].summaries) == 1
        async with session_factory() as session:
            ticket = (await session.execute(select(TicketModel).where(TicketModel.id == ticket_id))).scalar_one()
        assert ticket.payment_status == "PAID"

    async def test_duplicate_event_acknowledged(self, client, seed, collaborators, webhook_settings):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-H2")
        body = {"orderId": "QRIS-H2", "status": "paid"}

        await client.post("/api/v1/payments/webhooks/qris", json=body)
        resp = await client.post("/api/v1/payments/webhooks/qris", json=body)

        assert resp.status_code == 200
        assert resp.json()["message"] == "duplicate event"
        assert len(collaborators["notifier"].summaries) == 1

    async def test_unknown_event_is_ignored(self, client, seed, webhook_settings):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-H3")

        resp = await client.post("/api/v1/payments/webhooks/qris", json={"orderId": "QRIS-H3", "status": "refund"})

        assert resp.status_code == 200
        assert resp.json()["outcome"] == "ignored"
        assert resp.json()["paymentStatus"] == "PENDING"

    @pytest.mark.parametrize(
        "content",
        [b"not json", b"[]", b'{"status": "paid"}', b'{"orderId": "", "status": "paid"}'],
    )
    async def test_malformed_payload_still_returns_200(self, client, content, webhook_settings):
        resp = await client.post(
            "/api/v1/payments/webhooks/qris",
            content=content,
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 200
        assert resp.json()["success"] is False
        assert resp.json()["outcome"] == "ignored"

    async def test_unknown_order_is_ignored(self, client, webhook_settings):
        resp = await client.post("/api/v1/payments/webhooks/qris", json={"orderId": "QRIS-NONE", "status": "paid"})
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "ignored"
        assert resp.json()["orderId"] == "QRIS-NONE"

    async def test_storage_failure_reported_as_error(self, client, seed, monkeypatch, webhook_settings):
        from infrastructure.repositories.ticket_repository import SQLAlchemyTicketRepository

        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-H4")

        async def broken(self, *args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(SQLAlchemyTicketRepository, "update_status", broken)
        resp = await client.post("/api/v1/payments/webhooks/qris", json={"orderId": "QRIS-H4", "status": "paid"})

        assert resp.status_code == 200
        assert resp.json()["outcome"] == "error"

    async def test_token_is_checked(self, client, seed, webhook_settings):
        webhook_settings.token = "s3cret"
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-H5")
        body = {"orderId": "QRIS-H5", "status": "paid"}

        rejected = await client.post("/api/v1/payments/webhooks/qris", json=body, headers={"X-Webhook-Token": "nope"})
        accepted = await client.post("/api/v1/payments/webhooks/qris", json=body, headers={"X-Webhook-Token": "s3cret"})

        assert rejected.status_code == 200 and rejected.json()["message"] == "invalid token"
        assert accepted.json()["outcome"] == "processed"

    async def test_ip_allowlist_supports_cidr(self, client, webhook_settings):
        webhook_settings.ip_allowlist = ["10.0.0.0/8"]
        body = {"orderId": "QRIS-NONE", "status": "paid"}

        blocked = await client.post("/api/v1/payments/webhooks/qris", json=body)
        allowed = await client.post(
            "/api/v1/payments/webhooks/qris", json=body, headers={"X-Forwarded-For": "10.2.3.4, 172.16.0.1"}
        )

        assert blocked.status_code == 200 and blocked.json()["message"] == "source not allowed"
        assert allowed.json()["message"] != "source not allowed"


class TestVerify:
    async def test_match_found(self, client, seed):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-V1", amount=50111, unique_code="111")

        resp = await client.post("/api/v1/payments/qris/verify", json={"amount": 50111, "uniqueCode": "111"})

        assert resp.status_code == 200
        assert resp.json()["code"] == BusinessCode.SUCCESS
        assert resp.json()["data"]["payment"]["order_id"] == "QRIS-V1"

    async def test_query_string_variant(self, client, seed):
        ticket_id = await seed.ticket()
        await seed.payment(ticket_id, order_id="QRIS-V2", amount=50222, unique_code="222")

        resp = await client.get("/api/v1/payments/qris/verify", params={"amount": 50222, "uniqueCode": "222"})

        assert resp.status_code == 200
        assert resp.json()["data"]["ticket"]["id"] == ticket_id

    async def test_no_match_is_404(self, client):
        resp = await client.post("/api/v1/payments/qris/verify", json={"amount": 50999, "uniqueCode": "999"})
        assert resp.status_code == 404
        assert resp.json()["code"] == BusinessCode.NOT_FOUND

    async def test_ambiguous_match_is_409(self, client, seed):
        for n in (1, 2):
            ticket_id = await seed.ticket()
            await seed.payment(ticket_id, order_id=f"QRIS-A{n}", amount=50111, unique_code="111")

        resp = await client.post("/api/v1/payments/qris/verify", json={"amount": 50111, "uniqueCode": "111"})

        assert resp.status_code == 409
        assert resp.json()["code"] == BusinessCode.PAYMENT_AMBIGUOUS_MATCH

    async def test_blank_unique_code_is_422(self, client):
        resp = await client.post("/api/v1/payments/qris/verify", json={"amount": 50111, "uniqueCode": "  "})
        assert resp.status_code == 422

    async def test_rate_limited(self, client):
        body = {"amount": 50999, "uniqueCode": "999"}
        for _ in range(3):
            assert (await client.post("/api/v1/payments/qris/verify", json=body)).status_code == 404

        resp = await client.post("/api/v1/payments/qris/verify", json=body)

        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1


class TestOperatorEndpoints:
    async def test_operator_identity_required(self, client):
        resp = await client.get("/api/v1/payments/qris/pending")
        assert resp.status_code == 401

    async def test_create_then_confirm(self, client, seed, collaborators):
        ticket_id = await seed.ticket()

        created = await client.post("/api/v1/payments/qris", json={"ticketId": ticket_id})
        assert created.status_code == 200
        data = created.json()["data"]

        pending = await client.get("/api/v1/payments/qris/pending", headers=OPERATOR_HEADERS)
        assert [p["payment"]["order_id"] for p in pending.json()["data"]["items"]] == [data["payment"]["order_id"]]

        resp = await client.post(
            "/api/v1/payments/qris/confirm",
            json={
                "paymentId": data["payment"]["id"],
                "orderId": data["payment"]["order_id"],
                "confirmedAmount": data["total_amount"],
                "uniqueCode": data["unique_code"],
            },
            headers=OPERATOR_HEADERS,
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["payment_status"] == "PAID"
        assert resp.json()["data"]["ticket_status"] == "RECEIVED"
        assert collaborators["notifier"].summaries

    async def test_confirm_amount_mismatch_is_409(self, client, seed):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-C1")

        resp = await client.post(
            "/api/v1/payments/qris/confirm",
            json={"paymentId": payment_id, "orderId": "QRIS-C1", "confirmedAmount": 1, "uniqueCode": "123"},
            headers=OPERATOR_HEADERS,
        )

        assert resp.status_code == 409
        assert resp.json()["error"]["field"] == "confirmedAmount"

    async def test_reject(self, client, seed, session_factory):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-J1")

        resp = await client.post(
            "/api/v1/payments/qris/reject",
            json={"paymentId": payment_id, "orderId": "QRIS-J1", "reason": "duplicate transfer"},
            headers=OPERATOR_HEADERS,
        )

        assert resp.status_code == 200
        async with session_factory() as session:
            payment = (await session.execute(select(PaymentModel).where(PaymentModel.id == payment_id))).scalar_one()
        assert payment.status == "REJECTED"

    async def test_edit_status(self, client, seed):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-S1")
        body = {"paymentId": payment_id, "orderId": "QRIS-S1", "newStatus": "REJECTED", "notes": "fraud"}

        first = await client.post("/api/v1/payments/status", json=body, headers=OPERATOR_HEADERS)
        second = await client.post("/api/v1/payments/status", json=body, headers=OPERATOR_HEADERS)

        assert first.json()["message"] == "Payment status updated"
        assert second.json()["message"] == "Payment status unchanged"

    async def test_edit_status_rejects_unknown_target(self, client, seed):
        resp = await client.post(
            "/api/v1/payments/status",
            json={"paymentId": 1, "orderId": "QRIS-S1", "newStatus": "FAILED"},
            headers=OPERATOR_HEADERS,
        )
        assert resp.status_code == 422

    async def test_rerun_post_payment_is_queued(self, client, dispatcher):
        resp = await client.post("/api/v1/payments/tickets/12/post-payment", headers=OPERATOR_HEADERS)

        assert resp.status_code == 200
        assert resp.json()["data"] == {"ticket_id": 12, "task_id": "task-1"}
        assert dispatcher.queued == [12]

    async def test_audit_trail(self, client, seed):
        ticket_id = await seed.ticket()
        payment_id = await seed.payment(ticket_id, order_id="QRIS-AU1")
        await client.post(
            "/api/v1/payments/status",
            json={"paymentId": payment_id, "orderId": "QRIS-AU1", "newStatus": "PAID"},
            headers=OPERATOR_HEADERS,
        )

        resp = await client.get(f"/api/v1/payments/tickets/{ticket_id}/audit", headers=OPERATOR_HEADERS)
        missing = await client.get("/api/v1/payments/tickets/999/audit", headers=OPERATOR_HEADERS)

        assert resp.status_code == 200
        [entry] = resp.json()["data"]["items"]
        assert entry["action"] == "PAYMENT_STATUS_CHANGED"
        assert entry["actor_id"] == "op-1"
        assert entry["after"]["ticket_status"] == "RECEIVED"
        assert missing.status_code == 404
