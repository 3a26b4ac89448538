"""
审计日志仓储实现（只追加）
"""
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.audit.entity import AuditAction, AuditLogEntry
from domain.audit.repository import AuditLogRepository
from infrastructure.models.audit_log import AuditLogModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyAuditLogRepository(AuditLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AuditLogModel) -> AuditLogEntry:
        return AuditLogEntry(
            id=model.id,
            actor_id=model.actor_id,
            actor_name=model.actor_name,
            ticket_id=model.ticket_id,
            action=AuditAction(model.action),
            before=model.before or {},
            after=model.after or {},
            created_at=model.created_at,
        )

    async def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        db_entry = AuditLogModel(
            actor_id=entry.actor_id,
            actor_name=entry.actor_name,
            ticket_id=entry.ticket_id,
            action=entry.action.value,
            before=entry.before,
            after=entry.after,
        )
        self.session.add(db_entry)
        await self.session.flush()
        await self.session.refresh(db_entry)
        logger.info(
            "audit_log_appended",
            audit_id=db_entry.id,
            ticket_id=entry.ticket_id,
            action=entry.action.value,
            actor_id=entry.actor_id,
        )
        return self._to_entity(db_entry)

    async def list_by_ticket(self, ticket_id: int, limit: int = 100) -> List[AuditLogEntry]:
        result = await self.session.execute(
            select(AuditLogModel)
            .where(AuditLogModel.ticket_id == ticket_id)
            .order_by(AuditLogModel.created_at.asc(), AuditLogModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
