"""
Payment DTOs (Pydantic v2) used at application boundaries.

Request models accept the camelCase field names used by the dashboard and
the QRIS provider (orderId, uniqueCode, ...) and expose snake_case attributes.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.audit.entity import AuditLogEntry
from domain.payment.entity import Payment
from domain.payment.payload import parse_disambiguation_code
from domain.ticket.entity import Customer, Ticket


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _normalize_code(v: Any) -> Any:
    if v is None:
        return None
    code = parse_disambiguation_code({"unique_code": v})
    if code is None:
        raise ValueError("uniqueCode must be a non-empty string or integer")
    return code


class WebhookNotification(_CamelModel):
    """渠道回调；未声明的渠道字段原样保留在 model_extra 中"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    order_id: str = Field(alias="orderId", min_length=1)
    status: str = Field(min_length=1)
    amount: Optional[int] = None
    unique_code: Optional[str] = Field(default=None, alias="uniqueCode")

    @field_validator("unique_code", mode="before")
    @classmethod
    def _normalize_unique_code(cls, v: Any) -> Any:
        return _normalize_code(v)

    def provider_fields(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class VerifyQrisRequest(_CamelModel):
    amount: int = Field(gt=0)
    unique_code: str = Field(alias="uniqueCode")
    order_id: Optional[str] = Field(default=None, alias="orderId")

    @field_validator("unique_code", mode="before")
    @classmethod
    def _normalize_unique_code(cls, v: Any) -> Any:
        return _normalize_code(v)

    @field_validator("order_id")
    @classmethod
    def _blank_order_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class CreateQrisPayment(_CamelModel):
    ticket_id: int = Field(alias="ticketId", gt=0)


class ConfirmQrisRequest(_CamelModel):
    payment_id: int = Field(alias="paymentId", gt=0)
    order_id: str = Field(alias="orderId", min_length=1)
    confirmed_amount: int = Field(alias="confirmedAmount", gt=0)
    unique_code: str = Field(alias="uniqueCode")
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("unique_code", mode="before")
    @classmethod
    def _normalize_unique_code(cls, v: Any) -> Any:
        return _normalize_code(v)


class RejectPaymentRequest(_CamelModel):
    payment_id: int = Field(alias="paymentId", gt=0)
    order_id: str = Field(alias="orderId", min_length=1)
    reason: Optional[str] = Field(default=None, max_length=1000)


class EditPaymentStatusRequest(_CamelModel):
    payment_id: int = Field(alias="paymentId", gt=0)
    order_id: str = Field(alias="orderId", min_length=1)
    new_status: Literal["PENDING", "PAID", "REJECTED"] = Field(alias="newStatus")
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("new_status", mode="before")
    @classmethod
    def _upper_status(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v


# ---- 输出 DTO ----

class PaymentDTO(BaseModel):
    id: int
    order_id: str
    ticket_id: int
    amount: int
    currency: str
    status: str
    provider: str
    unique_code: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, payment: Payment) -> "PaymentDTO":
        return cls(
            id=payment.id,
            order_id=payment.order_id,
            ticket_id=payment.ticket_id,
            amount=payment.amount,
            currency=payment.currency,
            status=payment.status.value,
            provider=payment.provider,
            unique_code=payment.unique_code,
            created_at=payment.created_at,
            paid_at=payment.paid_at,
        )


class TicketDTO(BaseModel):
    id: int
    ticket_no: str
    status: str
    payment_status: str
    issue_type: Optional[str] = None
    drive_folder_url: Optional[str] = None

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketDTO":
        return cls(
            id=ticket.id,
            ticket_no=ticket.ticket_no,
            status=ticket.status.value,
            payment_status=ticket.payment_status.value,
            issue_type=ticket.issue_type,
            drive_folder_url=ticket.drive_folder_url,
        )


class CustomerDTO(BaseModel):
    name: str
    email: str

    @classmethod
    def from_entity(cls, customer: Customer) -> "CustomerDTO":
        return cls(name=customer.name, email=customer.email)


class PaymentMatchDTO(BaseModel):
    payment: PaymentDTO
    ticket: TicketDTO
    customer: Optional[CustomerDTO] = None


class QrisPaymentCreated(BaseModel):
    payment: PaymentDTO
    base_amount: int
    unique_code: str
    total_amount: int
    reused: bool = False


class AuditLogDTO(BaseModel):
    id: int
    action: str
    actor_id: str
    actor_name: Optional[str] = None
    before: dict = Field(default_factory=dict)
    after: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, entry: AuditLogEntry) -> "AuditLogDTO":
        return cls(
            id=entry.id,
            action=entry.action.value,
            actor_id=entry.actor_id,
            actor_name=entry.actor_name,
            before=entry.before or {},
            after=entry.after or {},
            created_at=entry.created_at,
        )


class ReconciliationResultDTO(BaseModel):
    order_id: str
    payment_status: str
    ticket_status: str
    changed: bool
    previous_status: Optional[str] = None


class WebhookAck(BaseModel):
    """回调响应体：始终以 HTTP 200 返回"""

    success: bool
    outcome: Literal["processed", "ignored", "error"]
    order_id: Optional[str] = Field(default=None, serialization_alias="orderId")
    payment_status: Optional[str] = Field(default=None, serialization_alias="paymentStatus")
    ticket_status: Optional[str] = Field(default=None, serialization_alias="ticketStatus")
    message: Optional[str] = None
