"""
支付载荷（payload）的结构化表示与容错解析

历史数据中 payload 以 JSON 文本存储，字段使用 camelCase（uniqueCode、
statusHistory ...），新数据使用 snake_case。这里的解析函数两种都接受。
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _normalize_code(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else None
    if isinstance(value, str):
        return value.strip() or None
    return None


def _as_mapping(raw: Any) -> Optional[Mapping]:
    if raw is None:
        return None
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except (ValueError, RecursionError):
            return None
    if isinstance(raw, Mapping):
        return raw
    return None


def parse_disambiguation_code(raw_payload: Any) -> Optional[str]:
    """从不可信的 payload 中提取唯一码，失败时返回 None，永不抛异常。

    接受 None、JSON 文本/字节、dict 或 PaymentPayload。
    """
    if isinstance(raw_payload, PaymentPayload):
        return _normalize_code(raw_payload.unique_code)
    data = _as_mapping(raw_payload)
    if data is None:
        return None
    for key in ("unique_code", "uniqueCode"):
        code = _normalize_code(data.get(key))
        if code is not None:
            return code
    return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _optional_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


@dataclass
class StatusHistoryEntry:
    """一次状态变更记录"""

    from_status: Optional[str]
    to_status: str
    actor: str
    source: str
    at: datetime
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "from": self.from_status,
            "to": self.to_status,
            "actor": self.actor,
            "source": self.source,
            "at": self.at.isoformat(),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> Optional["StatusHistoryEntry"]:
        to_status = data.get("to")
        at = _parse_datetime(data.get("at") or data.get("editedAt"))
        if not isinstance(to_status, str) or at is None:
            return None
        return cls(
            from_status=data.get("from"),
            to_status=to_status,
            actor=str(data.get("actor") or data.get("editedBy") or "unknown"),
            source=str(data.get("source") or "admin"),
            at=at,
            notes=data.get("notes"),
        )


@dataclass
class PaymentPayload:
    """支付的结构化附加数据，以 JSON 列持久化"""

    unique_code: Optional[str] = None
    base_amount: Optional[int] = None
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    # 最近一次回调中的渠道原始字段
    provider_data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "unique_code": self.unique_code,
            "base_amount": self.base_amount,
            "status_history": [entry.to_dict() for entry in self.status_history],
            "provider_data": dict(self.provider_data),
        }

    @classmethod
    def from_raw(cls, raw: Any) -> "PaymentPayload":
        """容错构建：无法解析的部分直接丢弃"""
        if isinstance(raw, PaymentPayload):
            return raw
        data = _as_mapping(raw) or {}
        history_raw = data.get("status_history", data.get("statusHistory")) or []
        history: list[StatusHistoryEntry] = []
        if isinstance(history_raw, list):
            for item in history_raw:
                if isinstance(item, Mapping):
                    entry = StatusHistoryEntry.from_dict(item)
                    if entry is not None:
                        history.append(entry)
        provider_data = data.get("provider_data")
        return cls(
            unique_code=parse_disambiguation_code(data),
            base_amount=_optional_int(data.get("base_amount", data.get("baseAmount"))),
            status_history=history,
            provider_data=dict(provider_data) if isinstance(provider_data, Mapping) else {},
        )
