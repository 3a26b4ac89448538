"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class PaymentNotFoundException(BusinessException):
    def __init__(
        self,
        *,
        payment_id: Optional[int] = None,
        order_id: Optional[str] = None,
        amount: Optional[int] = None,
        unique_code: Optional[str] = None,
    ):
        details = {
            k: v
            for k, v in {
                "payment_id": payment_id,
                "order_id": order_id,
                "amount": amount,
                "unique_code": unique_code,
            }.items()
            if v is not None
        }
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="No pending payment matches the given criteria",
            error_type="PaymentNotFound",
            details=details or None,
        )


class TicketNotFoundException(BusinessException):
    def __init__(self, ticket_id: Optional[int] = None):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message="Ticket not found",
            error_type="TicketNotFound",
            details={"ticket_id": ticket_id} if ticket_id is not None else None,
        )


class AmbiguousPaymentMatchException(BusinessException):
    """多笔待支付记录同时匹配，需人工补充 orderId 才能确认"""

    def __init__(self, *, amount: int, unique_code: Optional[str], candidates: list[str]):
        super().__init__(
            code=BusinessCode.PAYMENT_AMBIGUOUS_MATCH,
            message="Multiple pending payments match, provide orderId to disambiguate",
            error_type="AmbiguousMatch",
            details={"amount": amount, "unique_code": unique_code, "candidates": candidates},
        )


class PaymentIntegrityMismatchException(BusinessException):
    def __init__(self, message: str, *, field: str, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.PAYMENT_INTEGRITY_MISMATCH,
            message=message,
            error_type="IntegrityMismatch",
            details=details,
            field=field,
        )


class PaymentTransactionFailedException(BusinessException):
    """存储提交失败，支付与工单状态保证未变更"""

    def __init__(
        self,
        message: str = "Payment transaction failed, no changes were applied",
        *,
        order_id: Optional[str] = None,
        code: int = BusinessCode.DATABASE_ERROR,
        error_type: str = "TransactionFailure",
    ):
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details={"order_id": order_id} if order_id else None,
        )


class PaymentStateConflictException(PaymentTransactionFailedException):
    """并发写入导致前置条件不成立（乐观锁失败），调用方可重试"""

    def __init__(self, *, order_id: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(
            "Payment was modified concurrently, reload and retry",
            order_id=order_id,
            code=BusinessCode.PAYMENT_STATE_CONFLICT,
            error_type="PaymentStateConflict",
        )
        self.details = {"order_id": order_id, "expected_status": expected, "actual_status": actual}


class InvalidTicketStateException(BusinessException):
    def __init__(self, ticket_id: int, status: str):
        super().__init__(
            code=BusinessCode.TICKET_STATE_INVALID,
            message=f"Ticket status {status} does not allow this operation",
            error_type="InvalidTicketState",
            details={"ticket_id": ticket_id, "status": status},
        )


class TicketAlreadyPaidException(BusinessException):
    def __init__(self, ticket_id: int):
        super().__init__(
            code=BusinessCode.TICKET_ALREADY_PAID,
            message="Ticket has already been paid",
            error_type="TicketAlreadyPaid",
            details={"ticket_id": ticket_id},
        )


class UniqueCodeExhaustedException(BusinessException):
    def __init__(self, base_amount: int):
        super().__init__(
            code=BusinessCode.PAYMENT_CODE_EXHAUSTED,
            message="No free unique code is available for this amount, try again later",
            error_type="UniqueCodeExhausted",
            details={"base_amount": base_amount},
        )
