"""
API依赖项 - 操作人身份、服务实例与限流
"""
from typing import Optional

import structlog
from fastapi import Depends, Header, Request

from application.services.payment_service import QrisPaymentService
from core.exceptions import RateLimitException, UnauthorizedException
from domain.audit.entity import Actor
from infrastructure.composition import build_payment_service
from infrastructure.rate_limit import RateLimiter
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


async def get_operator(
    operator_id: Optional[str] = Header(default=None, alias="X-Operator-Id"),
    operator_name: Optional[str] = Header(default=None, alias="X-Operator-Name"),
) -> Actor:
    """从上游认证网关注入的请求头获取当前操作人"""
    if not operator_id or not operator_id.strip():
        raise UnauthorizedException("Missing operator identity")
    actor = Actor(id=operator_id.strip(), name=(operator_name or "").strip() or None)
    structlog.contextvars.bind_contextvars(operator_id=actor.id)
    return actor


async def get_payment_service(request: Request) -> QrisPaymentService:
    # 协作者（Apps Script / WhatsApp 客户端）在 lifespan 中创建
    collaborators = getattr(request.app.state, "collaborators", None)
    return build_payment_service(collaborators)


def get_rate_limiter(request: Request) -> Optional[RateLimiter]:
    return getattr(request.app.state, "rate_limiter", None)


async def limit_verify_attempts(
    request: Request,
    limiter: Optional[RateLimiter] = Depends(get_rate_limiter),
) -> None:
    """核对接口按客户端 IP 限流，防止暴力枚举唯一码"""
    if limiter is None:
        return
    client_ip = getattr(request.state, "client_ip", None) or (request.client.host if request.client else "unknown")
    decision = await limiter.hit("verify", client_ip)
    if not decision.allowed:
        raise RateLimitException(retry_after=decision.retry_after)


def get_task_dispatcher() -> TaskDispatcher:
    return TaskDispatcher()
