"""
Payments API routes.

QRIS creation, manual verification, operator confirm/reject, admin status
edit and the provider webhook. Keep this thin: all state changes go through
QrisPaymentService.
"""
from __future__ import annotations

import hmac
import ipaddress
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.dependencies import (
    get_operator,
    get_payment_service,
    get_task_dispatcher,
    limit_verify_attempts,
)
from api.middleware.request_id import resolve_client_ip
from application.dtos.payments import (
    ConfirmQrisRequest,
    CreateQrisPayment,
    EditPaymentStatusRequest,
    ReconciliationResultDTO,
    RejectPaymentRequest,
    VerifyQrisRequest,
    WebhookAck,
    WebhookNotification,
)
from application.services.payment_service import QrisPaymentService
from application.services.reconciliation_service import ReconciliationOutcome
from core.logging_config import get_logger
from core.response import list_response, success_response
from core.settings import payment_settings
from domain.audit.entity import Actor
from domain.common.exceptions import BusinessException, DomainValidationException
from infrastructure.tasks.utils.dispatcher import TaskDispatcher
from shared.codes import BusinessCode


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _result(outcome: ReconciliationOutcome) -> dict:
    return ReconciliationResultDTO(
        order_id=outcome.payment.order_id,
        payment_status=outcome.payment.status.value,
        ticket_status=outcome.ticket_status.value,
        changed=outcome.changed,
        previous_status=outcome.previous_status.value,
    ).model_dump(mode="json")


# ---- QRIS ----

@router.post("/qris", summary="Create QRIS payment for a draft ticket")
async def create_qris_payment(
    payload: CreateQrisPayment,
    service: QrisPaymentService = Depends(get_payment_service),
):
    created = await service.create_payment(payload.ticket_id)
    message = "QRIS payment already pending" if created.reused else "QRIS payment created"
    return success_response(data=created.model_dump(mode="json"), message=message)


@router.post(
    "/qris/verify",
    summary="Find the pending payment matching amount + unique code",
    dependencies=[Depends(limit_verify_attempts)],
)
async def verify_qris_payment(
    payload: VerifyQrisRequest,
    service: QrisPaymentService = Depends(get_payment_service),
):
    match = await service.verify(payload)
    return success_response(data=match.model_dump(mode="json"), message="Payment matched")


@router.get(
    "/qris/verify",
    summary="Find the pending payment matching amount + unique code",
    dependencies=[Depends(limit_verify_attempts)],
)
async def verify_qris_payment_query(
    amount: int = Query(..., gt=0),
    unique_code: str = Query(..., alias="uniqueCode"),
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    service: QrisPaymentService = Depends(get_payment_service),
):
    try:
        payload = VerifyQrisRequest(amount=amount, uniqueCode=unique_code, orderId=order_id)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        raise DomainValidationException(first.get("msg", "invalid query"), field=".".join(map(str, first.get("loc", ()))))
    match = await service.verify(payload)
    return success_response(data=match.model_dump(mode="json"), message="Payment matched")


@router.get("/qris/pending", summary="List pending QRIS payments")
async def list_pending_qris_payments(
    limit: int = Query(default=100, ge=1, le=500),
    operator: Actor = Depends(get_operator),
    service: QrisPaymentService = Depends(get_payment_service),
):
    items = await service.list_pending(limit)
    return list_response([item.model_dump(mode="json") for item in items])


@router.post("/qris/confirm", summary="Confirm a QRIS payment manually")
async def confirm_qris_payment(
    payload: ConfirmQrisRequest,
    operator: Actor = Depends(get_operator),
    service: QrisPaymentService = Depends(get_payment_service),
):
    outcome = await service.confirm_manual(payload, operator)
    return success_response(data=_result(outcome), message="Payment confirmed")


@router.post("/qris/reject", summary="Reject a pending QRIS payment")
async def reject_qris_payment(
    payload: RejectPaymentRequest,
    operator: Actor = Depends(get_operator),
    service: QrisPaymentService = Depends(get_payment_service),
):
    outcome = await service.reject_manual(payload, operator)
    return success_response(data=_result(outcome), message="Payment rejected")


# ---- 管理 ----

@router.post("/status", summary="Edit payment status (admin)")
async def edit_payment_status(
    payload: EditPaymentStatusRequest,
    operator: Actor = Depends(get_operator),
    service: QrisPaymentService = Depends(get_payment_service),
):
    outcome = await service.edit_status(payload, operator)
    message = "Payment status updated" if outcome.changed else "Payment status unchanged"
    return success_response(data=_result(outcome), message=message)


@router.get("/tickets/{ticket_id}/audit", summary="Audit trail of payment status changes")
async def get_ticket_audit_trail(
    ticket_id: int,
    limit: int = Query(default=100, ge=1, le=500),
    operator: Actor = Depends(get_operator),
    service: QrisPaymentService = Depends(get_payment_service),
):
    entries = await service.audit_trail(ticket_id, limit)
    return list_response([e.model_dump(mode="json") for e in entries])


@router.post("/tickets/{ticket_id}/post-payment", summary="Queue a retry of post-payment sync")
async def rerun_post_payment(
    ticket_id: int,
    operator: Actor = Depends(get_operator),
    dispatcher: TaskDispatcher = Depends(get_task_dispatcher),
):
    task_id = dispatcher.rerun_post_payment(ticket_id)
    logger.info("post_payment_rerun_queued", ticket_id=ticket_id, task_id=task_id, operator_id=operator.id)
    return success_response(data={"ticket_id": ticket_id, "task_id": task_id}, message="Post-payment sync queued")


# ---- Webhook ----

def _ip_allowed(remote_ip: str) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
    return False


def _token_valid(request: Request) -> bool:
    expected = payment_settings.webhook.token
    if not expected:
        return True
    received = request.headers.get("X-Webhook-Token") or ""
    return hmac.compare_digest(received, expected)


def _ack(ack: WebhookAck) -> JSONResponse:
    # 无论结果如何都返回 200，避免支付方无限重试
    return JSONResponse(status_code=200, content=ack.model_dump(mode="json", by_alias=True))


@router.post("/webhooks/qris", summary="QRIS provider webhook")
async def qris_webhook(
    request: Request,
    service: QrisPaymentService = Depends(get_payment_service),
):
    remote_ip = getattr(request.state, "client_ip", None) or resolve_client_ip(request)
    if not _ip_allowed(remote_ip):
        logger.warning("webhook_ip_rejected", remote_ip=remote_ip)
        return _ack(WebhookAck(success=False, outcome="ignored", message="source not allowed"))
    if not _token_valid(request):
        logger.warning("webhook_token_rejected", remote_ip=remote_ip)
        return _ack(WebhookAck(success=False, outcome="ignored", message="invalid token"))

    order_id: Optional[str] = None
    try:
        body = await request.json()
        notification = WebhookNotification.model_validate(body)
        order_id = notification.order_id
        outcome = await service.handle_webhook(notification)
    except ValueError as exc:
        # JSON 解析失败与 pydantic ValidationError 都是 ValueError
        logger.warning("webhook_payload_invalid", error=str(exc))
        return _ack(WebhookAck(success=False, outcome="ignored", message="invalid payload"))
    except BusinessException as exc:
        ignorable = exc.code in (BusinessCode.NOT_FOUND, BusinessCode.PARAM_VALIDATION_ERROR)
        logger.warning(
            "webhook_rejected" if ignorable else "webhook_failed",
            order_id=order_id,
            code=int(exc.code),
            error=exc.message,
        )
        return _ack(
            WebhookAck(
                success=False,
                outcome="ignored" if ignorable else "error",
                order_id=order_id,
                message=exc.message,
            )
        )
    except Exception as exc:
        logger.error("webhook_unhandled_error", order_id=order_id, error=str(exc), exc_info=True)
        return _ack(WebhookAck(success=False, outcome="error", order_id=order_id, message="internal error"))

    return _ack(
        WebhookAck(
            success=True,
            outcome="ignored" if outcome.ignored else "processed",
            order_id=outcome.payment.order_id,
            payment_status=outcome.payment.status.value,
            ticket_status=outcome.ticket_status.value,
            message="duplicate event" if not outcome.changed and not outcome.ignored else None,
        )
    )
