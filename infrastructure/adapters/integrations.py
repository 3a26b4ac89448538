"""Infrastructure adapters that implement the post-payment ports by
delegating to the Apps Script and WhatsApp clients.
"""
from __future__ import annotations

from typing import Optional

from application.ports.integrations import (
    FileUploader,
    FolderProvisioner,
    FolderRef,
    NotificationResult,
    Notifier,
    SheetSync,
    TicketSummary,
    UploadedFile,
)
from core.settings import AppsScriptSettings, PaymentSettings, WhatsAppSettings
from domain.ticket.entity import Attachment, Ticket
from infrastructure.external.google import AppsScriptClient
from infrastructure.external.whatsapp import WhatsAppClient


class IntegrationNotConfigured(RuntimeError):
    """对应集成未配置时抛出，编排器会把该步骤记为失败"""


class AppsScriptFolderProvisioner(FolderProvisioner):
    def __init__(self, client: AppsScriptClient):
        self.client = client

    async def create_folder(self, ticket: Ticket) -> FolderRef:
        created = await self.client.ticket_created(ticket)
        return FolderRef(id=created.folder_id, url=created.folder_url, row_index=created.row_index)


class AppsScriptFileUploader(FileUploader):
    def __init__(self, client: AppsScriptClient):
        self.client = client

    async def upload_file(self, file: Attachment, folder_id: str) -> UploadedFile:
        uploaded = await self.client.upload_file(folder_id, file)
        return UploadedFile(url=uploaded.file_url, remote_file_id=uploaded.file_id)


class AppsScriptSheetSync(SheetSync):
    def __init__(self, client: AppsScriptClient):
        self.client = client

    async def upsert_row(self, ticket: Ticket, urls: list[str]) -> Optional[int]:
        result = await self.client.ticket_updated(ticket, urls)
        return result.row_index


class WhatsAppNotifier(Notifier):
    def __init__(self, client: WhatsAppClient):
        self.client = client

    async def notify(self, summary: TicketSummary) -> NotificationResult:
        return await self.client.send_ticket_notification(summary)


class UnconfiguredIntegration(FolderProvisioner, FileUploader, SheetSync, Notifier):
    def __init__(self, name: str):
        self.name = name

    def _fail(self):
        raise IntegrationNotConfigured(f"{self.name} integration is not configured")

    async def create_folder(self, ticket: Ticket) -> FolderRef:
        self._fail()

    async def upload_file(self, file: Attachment, folder_id: str) -> UploadedFile:
        self._fail()

    async def upsert_row(self, ticket: Ticket, urls: list[str]) -> Optional[int]:
        self._fail()

    async def notify(self, summary: TicketSummary) -> NotificationResult:
        self._fail()


def build_apps_script_client(cfg: AppsScriptSettings) -> Optional[AppsScriptClient]:
    if not cfg.base_url or not cfg.sync_secret:
        return None
    return AppsScriptClient(cfg.base_url, cfg.sync_secret, timeout=cfg.timeout, max_retries=cfg.max_retries)


def build_whatsapp_client(cfg: WhatsAppSettings) -> Optional[WhatsAppClient]:
    if not cfg.gateway_url or not cfg.team_number:
        return None
    return WhatsAppClient(
        cfg.gateway_url,
        cfg.team_number,
        api_token=cfg.api_token,
        max_retries=cfg.max_retries,
        retry_base_delay=cfg.retry_base_delay,
        dashboard_base_url=cfg.dashboard_base_url,
        timeout=cfg.timeout,
    )


def build_collaborators(cfg: PaymentSettings) -> dict:
    """按配置组装编排器所需的四个协作者（folders / uploader / sheets / notifier）"""
    apps_script = build_apps_script_client(cfg.apps_script)
    whatsapp = build_whatsapp_client(cfg.whatsapp)

    if apps_script is None:
        missing = UnconfiguredIntegration("apps_script")
        folders, uploader, sheets = missing, missing, missing
    else:
        folders = AppsScriptFolderProvisioner(apps_script)
        uploader = AppsScriptFileUploader(apps_script)
        sheets = AppsScriptSheetSync(apps_script)

    notifier = WhatsAppNotifier(whatsapp) if whatsapp else UnconfiguredIntegration("whatsapp")
    return {"folders": folders, "uploader": uploader, "sheets": sheets, "notifier": notifier}


async def close_collaborators(collaborators: dict) -> None:
    clients = {id(c.client): c.client for c in collaborators.values() if hasattr(c, "client")}
    for client in clients.values():
        await client.close()
