"""审计日志实体（只追加）"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class AuditAction(str, Enum):
    PAYMENT_STATUS_CHANGED = "PAYMENT_STATUS_CHANGED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_REJECTED = "PAYMENT_REJECTED"


@dataclass(frozen=True)
class Actor:
    """触发状态变更的操作者"""

    id: str
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name or self.id


WEBHOOK_ACTOR = Actor(id="system:webhook", name="QRIS webhook")
SYSTEM_ACTOR = Actor(id="system", name="system")


@dataclass
class AuditLogEntry:
    id: Optional[int]
    actor_id: str
    ticket_id: int
    action: AuditAction
    actor_name: Optional[str] = None
    before: dict = field(default_factory=dict)
    after: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
