"""
审计日志数据库模型（只追加）
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from datetime import datetime, timezone

from .base import Base


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(100), nullable=False, index=True, comment="操作者ID")
    actor_name = Column(String(200), nullable=True, comment="操作者名称")
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True, comment="关联工单")
    action = Column(String(50), nullable=False, index=True, comment="动作类型")
    before = Column(JSON, nullable=True, comment="变更前快照")
    after = Column(JSON, nullable=True, comment="变更后快照")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间",
    )
