"""
统一响应格式

除 QRIS 回调外，所有接口都返回 Response{code, message, data, error}；
回调使用自己的 WebhookAck 响应体。
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


def _utc_z(ts: datetime) -> str:
    ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


class ErrorDetail(BaseModel):
    type: str
    details: Optional[dict] = None
    # 出错的请求字段，例如 confirmedAmount
    field: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        return _utc_z(timestamp)


class Response(BaseModel, Generic[T]):
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class ListData(BaseModel, Generic[T]):
    """列表接口的数据体（待支付列表、审计记录）"""
    items: list[T]
    count: int


def success_response(data: Any = None, message: str = "Success", code: int = BusinessCode.SUCCESS) -> Response:
    return Response(code=code, message=message, data=data, error=None)


def list_response(items: list, message: str = "Success") -> Response:
    return success_response(data=ListData(items=items, count=len(items)), message=message)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
) -> Response:
    """
    创建错误响应

    Args:
        code: 业务状态码（见 shared.codes.BusinessCode）
        message: 面向调用方的错误描述
        error_type: 错误分类，如 NotFound / AmbiguousMatch / IntegrityMismatch
        details: 附加信息，如歧义匹配的候选订单号
        field: 出错字段
        request_id: 当前请求ID
    """
    return Response(
        code=code,
        message=message,
        data=None,
        error=ErrorDetail(type=error_type, details=details, field=field, request_id=request_id),
    )
