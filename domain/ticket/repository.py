"""
工单与附件仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from domain.payment.entity import PaymentStatus
from .entity import Attachment, Ticket, TicketStatus


class TicketRepository(ABC):

    @abstractmethod
    async def get_by_id(self, ticket_id: int, *, for_update: bool = False) -> Optional[Ticket]:
        """根据ID获取工单（含客户信息）"""
        pass

    @abstractmethod
    async def update_status(
        self,
        ticket_id: int,
        *,
        status: TicketStatus,
        payment_status: PaymentStatus,
    ) -> None:
        """更新工单状态与支付状态"""
        pass

    @abstractmethod
    async def set_drive_folder(self, ticket_id: int, folder_id: str, folder_url: Optional[str]) -> None:
        pass

    @abstractmethod
    async def set_sheet_row(self, ticket_id: int, row_index: int) -> None:
        pass

    @abstractmethod
    async def list_stale_drafts(self, cutoff: datetime, limit: int = 200) -> List[Ticket]:
        """列出创建时间早于 cutoff、仍为草稿且待支付的工单"""
        pass

    @abstractmethod
    async def expire_draft_payment(self, ticket_id: int) -> bool:
        """将草稿工单的支付状态置为 EXPIRED；工单已不满足条件时返回 False"""
        pass


class AttachmentRepository(ABC):

    @abstractmethod
    async def list_pending_upload(self, ticket_id: int) -> List[Attachment]:
        """仍暂存在本地、尚未上传的附件"""
        pass

    @abstractmethod
    async def mark_uploaded(self, attachment_id: int, url: str, remote_file_id: Optional[str] = None) -> None:
        """记录远端地址并清除本地暂存数据"""
        pass
