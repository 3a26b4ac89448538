"""Application-owned ports for the post-payment collaborators.

Each collaborator is an independently failable black box with a narrow
contract; the orchestrator only depends on these protocols.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from domain.ticket.entity import Attachment, Ticket


@dataclass
class FolderRef:
    id: str
    url: Optional[str] = None
    # 远端脚本顺带返回的跟踪表行号
    row_index: Optional[int] = None


@dataclass
class UploadedFile:
    url: str
    remote_file_id: Optional[str] = None


@dataclass
class TicketSummary:
    ticket_id: int
    ticket_no: str
    customer_name: str
    customer_email: Optional[str]
    customer_phone: Optional[str]
    issue_type: Optional[str]
    amount: Optional[int] = None
    attachment_urls: list[str] = field(default_factory=list)


@dataclass
class NotificationResult:
    delivered: bool
    attempts: int = 1
    error: Optional[str] = None


@runtime_checkable
class FolderProvisioner(Protocol):
    async def create_folder(self, ticket: Ticket) -> FolderRef: ...


@runtime_checkable
class FileUploader(Protocol):
    async def upload_file(self, file: Attachment, folder_id: str) -> UploadedFile: ...


@runtime_checkable
class SheetSync(Protocol):
    async def upsert_row(self, ticket: Ticket, urls: list[str]) -> Optional[int]: ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, summary: TicketSummary) -> NotificationResult: ...
