"""
工单/附件仓储实现
"""
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from domain.payment.entity import PaymentStatus
from domain.ticket.entity import Attachment, Customer, Ticket, TicketStatus
from domain.ticket.repository import AttachmentRepository, TicketRepository
from infrastructure.models.ticket import AttachmentModel, CustomerModel, TicketModel
from core.logging_config import get_logger


logger = get_logger(__name__)


def _customer_to_entity(model: Optional[CustomerModel]) -> Optional[Customer]:
    if model is None:
        return None
    return Customer(id=model.id, name=model.name, email=model.email, phone=model.phone)


class SQLAlchemyTicketRepository(TicketRepository):
    """工单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: TicketModel) -> Ticket:
        return Ticket(
            id=model.id,
            ticket_no=model.ticket_no,
            customer_id=model.customer_id,
            status=TicketStatus(model.status),
            payment_status=PaymentStatus(model.payment_status),
            issue_type=model.issue_type,
            description=model.description,
            drive_folder_id=model.drive_folder_id,
            drive_folder_url=model.drive_folder_url,
            sheet_row_index=model.sheet_row_index,
            created_at=model.created_at,
            updated_at=model.updated_at,
            closed_at=model.closed_at,
            customer=_customer_to_entity(model.customer),
        )

    async def get_by_id(self, ticket_id: int, *, for_update: bool = False) -> Optional[Ticket]:
        query = (
            select(TicketModel)
            .options(selectinload(TicketModel.customer))
            .where(TicketModel.id == ticket_id)
        )
        if for_update:
            query = query.with_for_update(of=TicketModel)
        result = await self.session.execute(query)
        db_ticket = result.scalar_one_or_none()
        return self._to_entity(db_ticket) if db_ticket else None

    async def update_status(
        self,
        ticket_id: int,
        *,
        status: TicketStatus,
        payment_status: PaymentStatus,
    ) -> None:
        result = await self.session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(
                status=status.value,
                payment_status=payment_status.value,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # 在事务内抛出，由调用方回滚
            raise LookupError(f"ticket {ticket_id} disappeared during update")
        logger.info(
            "ticket_status_updated",
            ticket_id=ticket_id,
            status=status.value,
            payment_status=payment_status.value,
        )

    async def set_drive_folder(self, ticket_id: int, folder_id: str, folder_url: Optional[str]) -> None:
        await self.session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(drive_folder_id=folder_id, drive_folder_url=folder_url)
            .execution_options(synchronize_session=False)
        )
        logger.info("ticket_folder_recorded", ticket_id=ticket_id, folder_id=folder_id)

    async def set_sheet_row(self, ticket_id: int, row_index: int) -> None:
        await self.session.execute(
            update(TicketModel)
            .where(TicketModel.id == ticket_id)
            .values(sheet_row_index=row_index)
            .execution_options(synchronize_session=False)
        )

    async def list_stale_drafts(self, cutoff: datetime, limit: int = 200) -> List[Ticket]:
        result = await self.session.execute(
            select(TicketModel)
            .options(selectinload(TicketModel.customer))
            .where(
                TicketModel.status == TicketStatus.DRAFT.value,
                TicketModel.payment_status == PaymentStatus.PENDING.value,
                TicketModel.created_at < cutoff,
            )
            .order_by(TicketModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(t) for t in result.scalars().all()]

    async def expire_draft_payment(self, ticket_id: int) -> bool:
        result = await self.session.execute(
            update(TicketModel)
            .where(
                TicketModel.id == ticket_id,
                TicketModel.status == TicketStatus.DRAFT.value,
                TicketModel.payment_status == PaymentStatus.PENDING.value,
            )
            .values(payment_status=PaymentStatus.EXPIRED.value, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


class SQLAlchemyAttachmentRepository(AttachmentRepository):
    """附件仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AttachmentModel) -> Attachment:
        return Attachment(
            id=model.id,
            ticket_id=model.ticket_id,
            file_name=model.file_name,
            mime_type=model.mime_type,
            size=model.size,
            file_data=model.file_data,
            remote_file_id=model.remote_file_id,
            remote_file_url=model.remote_file_url,
            created_at=model.created_at,
        )

    async def list_pending_upload(self, ticket_id: int) -> List[Attachment]:
        result = await self.session.execute(
            select(AttachmentModel)
            .where(
                AttachmentModel.ticket_id == ticket_id,
                AttachmentModel.remote_file_url.is_(None),
                AttachmentModel.file_data.is_not(None),
            )
            .order_by(AttachmentModel.id.asc())
        )
        return [self._to_entity(a) for a in result.scalars().all()]

    async def mark_uploaded(self, attachment_id: int, url: str, remote_file_id: Optional[str] = None) -> None:
        await self.session.execute(
            update(AttachmentModel)
            .where(AttachmentModel.id == attachment_id)
            .values(remote_file_url=url, remote_file_id=remote_file_id, file_data=None)
            .execution_options(synchronize_session=False)
        )
        logger.info("attachment_uploaded", attachment_id=attachment_id)
