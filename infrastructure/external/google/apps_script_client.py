"""
Google Apps Script 客户端

Apps Script Web App 负责 Drive 文件夹、文件上传与跟踪表（Sheets）的写入，
所有请求都携带 X-SYNC-SECRET 头做校验。
"""
from __future__ import annotations

import base64
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from infrastructure.external.api_clients.base import APIError, BaseAPIClient
from domain.ticket.entity import Attachment, Ticket


class FolderCreated(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    folder_id: str = Field(alias="folderId")
    folder_url: Optional[str] = Field(default=None, alias="folderUrl")
    row_index: Optional[int] = Field(default=None, alias="rowIndex")


class FileUploaded(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    file_id: Optional[str] = Field(default=None, alias="fileId")
    file_url: str = Field(alias="fileUrl")


class RowUpserted(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    row_index: Optional[int] = Field(default=None, alias="rowIndex")


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


class AppsScriptClient(BaseAPIClient):
    def __init__(self, base_url: str, sync_secret: str, **kwargs):
        super().__init__(base_url, headers={"X-SYNC-SECRET": sync_secret}, **kwargs)

    @staticmethod
    def _unwrap(body: dict) -> dict:
        # {"success": bool, "data": {...}, "error": "..."} 或直接返回数据
        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                raise APIError(body.get("error") or "Apps Script reported failure")
            return body.get("data") or {}
        return body

    def _ticket_payload(self, ticket: Ticket) -> dict:
        customer = ticket.customer
        return {
            "ticketNo": ticket.ticket_no,
            "createdAt": _iso(ticket.created_at),
            "customerName": customer.name if customer else None,
            "customerEmail": customer.email if customer else None,
            "whatsAppNumber": customer.phone if customer else None,
            "issueType": ticket.issue_type,
            "status": ticket.status.value,
            "paymentStatus": ticket.payment_status.value,
            "driveFolderUrl": ticket.drive_folder_url,
            "lastUpdatedAt": datetime.now(timezone.utc).isoformat(),
        }

    async def ticket_created(self, ticket: Ticket) -> FolderCreated:
        """创建工单文件夹并在跟踪表追加一行"""
        response = await self.post("/ticket-created", json_data=self._ticket_payload(ticket))
        return FolderCreated.model_validate(self._unwrap(response.json()))

    async def upload_file(self, folder_id: str, attachment: Attachment) -> FileUploaded:
        payload = {
            "ticketId": attachment.ticket_id,
            "folderId": folder_id,
            "fileName": attachment.file_name,
            "mimeType": attachment.mime_type,
            "contentBase64": base64.b64encode(attachment.file_data or b"").decode("ascii"),
        }
        response = await self.post("/upload-file", json_data=payload)
        return FileUploaded.model_validate(self._unwrap(response.json()))

    async def ticket_updated(self, ticket: Ticket, attachment_urls: list[str]) -> RowUpserted:
        payload = {
            **self._ticket_payload(ticket),
            "rowIndex": ticket.sheet_row_index,
            "attachmentUrls": attachment_urls,
        }
        response = await self.post("/ticket-updated", json_data=payload)
        return RowUpserted.model_validate(self._unwrap(response.json()))
