"""
Match Resolver：把一次人工核对请求映射到唯一一笔待支付记录。

只读操作，可重复调用；多笔匹配时直接报错，从不自动挑选。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from core.logging_config import get_logger
from domain.common.exceptions import (
    AmbiguousPaymentMatchException,
    DomainValidationException,
    PaymentNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment
from domain.payment.payload import parse_disambiguation_code
from domain.ticket.entity import Customer, Ticket


logger = get_logger(__name__)


@dataclass
class PaymentMatch:
    payment: Payment
    ticket: Ticket
    customer: Optional[Customer]


class MatchResolver:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], *, provider: str = "QRIS") -> None:
        self._uow_factory = uow_factory
        self._provider = provider

    async def resolve(
        self,
        amount: int,
        unique_code: Optional[str],
        order_id: Optional[str] = None,
    ) -> PaymentMatch:
        async with self._uow_factory(readonly=True) as uow:
            if order_id:
                # 订单号本身唯一，不再按唯一码过滤
                candidates = await uow.payment_repository.find_pending(order_id=order_id)
                for payment in candidates:
                    if unique_code and payment.unique_code and payment.unique_code != unique_code:
                        logger.warning(
                            "payment_resolve_code_differs",
                            order_id=order_id,
                            requested_code=unique_code,
                            stored_code=payment.unique_code,
                        )
            else:
                if not unique_code:
                    raise DomainValidationException("uniqueCode is required when orderId is absent", field="uniqueCode")
                pending = await uow.payment_repository.find_pending(provider=self._provider, amount=amount)
                candidates = [p for p in pending if parse_disambiguation_code(p.payload) == unique_code]

            if not candidates:
                logger.info("payment_resolve_not_found", amount=amount, unique_code=unique_code, order_id=order_id)
                raise PaymentNotFoundException(order_id=order_id, amount=amount, unique_code=unique_code)
            if len(candidates) > 1:
                logger.warning(
                    "payment_resolve_ambiguous",
                    amount=amount,
                    unique_code=unique_code,
                    candidates=[p.order_id for p in candidates],
                )
                raise AmbiguousPaymentMatchException(
                    amount=amount,
                    unique_code=unique_code,
                    candidates=[p.order_id for p in candidates],
                )

            payment = candidates[0]
            ticket = await uow.ticket_repository.get_by_id(payment.ticket_id)
            if ticket is None:
                raise PaymentNotFoundException(order_id=payment.order_id)
            return PaymentMatch(payment=payment, ticket=ticket, customer=ticket.customer)
