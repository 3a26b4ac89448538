"""审计日志仓储接口：只允许追加与查询，不提供修改或删除"""
from abc import ABC, abstractmethod
from typing import List

from .entity import AuditLogEntry


class AuditLogRepository(ABC):

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        pass

    @abstractmethod
    async def list_by_ticket(self, ticket_id: int, limit: int = 100) -> List[AuditLogEntry]:
        pass
