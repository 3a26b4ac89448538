"""
Post-Success Orchestrator：支付首次进入 PAID 并提交之后执行的外部副作用。

步骤：创建远端文件夹 -> 上传附件 -> 同步跟踪表，与客户通知并发执行。
每一步都在 StepSupervisor 下运行，带独立超时；失败只记录日志和报告，
不会抛出，也不会回滚已经提交的支付状态。
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from core.logging_config import get_logger
from core.settings import PostPaymentTimeouts
from application.ports.integrations import (
    FileUploader,
    FolderProvisioner,
    Notifier,
    SheetSync,
    TicketSummary,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.ticket.entity import Attachment, Ticket


logger = get_logger(__name__)


class DownstreamFailure(Exception):
    """外部协作方返回了失败结果（非异常形式）"""


@dataclass
class StepResult:
    name: str
    ok: bool
    skipped: bool = False
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class PostPaymentReport:
    ticket_id: int
    steps: list[StepResult] = field(default_factory=list)

    @property
    def failures(self) -> list[StepResult]:
        return [s for s in self.steps if not s.ok and not s.skipped]

    @property
    def ok(self) -> bool:
        return not self.failures

    def step(self, name: str) -> Optional[StepResult]:
        for s in self.steps:
            if s.name == name:
                return s
        return None


class StepSupervisor:
    """逐步执行并隔离故障：超时与异常都转换为 StepResult"""

    def __init__(self, ticket_id: int) -> None:
        self.ticket_id = ticket_id
        self.results: list[StepResult] = []

    async def run(
        self,
        name: str,
        step: Callable[[], Awaitable[Any]],
        *,
        timeout: float,
    ) -> tuple[bool, Any]:
        started = time.perf_counter()
        try:
            value = await asyncio.wait_for(step(), timeout=timeout)
        except asyncio.TimeoutError:
            self._record_failure(name, started, f"timed out after {timeout}s")
            return False, None
        except Exception as exc:
            self._record_failure(name, started, f"{type(exc).__name__}: {exc}")
            return False, None
        duration = (time.perf_counter() - started) * 1000
        self.results.append(StepResult(name=name, ok=True, duration_ms=duration))
        logger.info("post_payment_step_succeeded", ticket_id=self.ticket_id, step=name, duration_ms=round(duration, 1))
        return True, value

    def skip(self, name: str, reason: str) -> None:
        self.results.append(StepResult(name=name, ok=True, skipped=True, error=reason))
        logger.info("post_payment_step_skipped", ticket_id=self.ticket_id, step=name, reason=reason)

    def _record_failure(self, name: str, started: float, error: str) -> None:
        duration = (time.perf_counter() - started) * 1000
        self.results.append(StepResult(name=name, ok=False, error=error, duration_ms=duration))
        logger.warning(
            "post_payment_step_failed",
            ticket_id=self.ticket_id,
            step=name,
            error=error,
            duration_ms=round(duration, 1),
        )


@dataclass
class _TicketContext:
    ticket: Ticket
    attachments: list[Attachment]
    amount: Optional[int] = None


class PostPaymentOrchestrator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        folders: FolderProvisioner,
        uploader: FileUploader,
        sheets: SheetSync,
        notifier: Notifier,
        timeouts: Optional[PostPaymentTimeouts] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._folders = folders
        self._uploader = uploader
        self._sheets = sheets
        self._notifier = notifier
        self._timeouts = timeouts or PostPaymentTimeouts()

    async def run(self, ticket_id: int, *, amount: Optional[int] = None) -> PostPaymentReport:
        supervisor = StepSupervisor(ticket_id)
        ok, context = await supervisor.run(
            "load_ticket",
            lambda: self._load(ticket_id),
            timeout=self._timeouts.load_ticket,
        )
        if ok and context is None:
            supervisor.results[-1] = StepResult(name="load_ticket", ok=False, error="ticket not found")
            logger.warning("post_payment_ticket_missing", ticket_id=ticket_id)
        if not ok or context is None:
            return PostPaymentReport(ticket_id=ticket_id, steps=supervisor.results)
        context.amount = amount

        await asyncio.gather(
            self._sync_documents(supervisor, context),
            self._notify(supervisor, context),
        )
        report = PostPaymentReport(ticket_id=ticket_id, steps=supervisor.results)
        logger.info(
            "post_payment_completed",
            ticket_id=ticket_id,
            failed_steps=[s.name for s in report.failures],
        )
        return report

    async def _load(self, ticket_id: int) -> Optional[_TicketContext]:
        async with self._uow_factory(readonly=True) as uow:
            ticket = await uow.ticket_repository.get_by_id(ticket_id)
            if ticket is None:
                return None
            attachments = await uow.attachment_repository.list_pending_upload(ticket_id)
            return _TicketContext(ticket=ticket, attachments=attachments)

    async def _sync_documents(self, supervisor: StepSupervisor, context: _TicketContext) -> None:
        ticket = context.ticket
        folder_created = False

        if ticket.has_folder:
            supervisor.skip("create_folder", "ticket already has a folder")
        else:
            ok, _ = await supervisor.run(
                "create_folder",
                lambda: self._create_folder(ticket),
                timeout=self._timeouts.create_folder,
            )
            folder_created = ok

        urls: list[str] = []
        if not ticket.has_folder:
            supervisor.skip("upload_attachments", "no folder available")
        elif not context.attachments:
            supervisor.skip("upload_attachments", "no pending attachments")
        else:
            for attachment in context.attachments:
                ok, url = await supervisor.run(
                    f"upload_attachment:{attachment.id}",
                    lambda a=attachment: self._upload(a, ticket.drive_folder_id),
                    timeout=self._timeouts.upload_file,
                )
                if ok:
                    urls.append(url)

        if folder_created or urls:
            await supervisor.run(
                "sync_sheet",
                lambda: self._sync_sheet(ticket, urls),
                timeout=self._timeouts.sync_sheet,
            )
        else:
            supervisor.skip("sync_sheet", "nothing new to propagate")

    async def _create_folder(self, ticket: Ticket) -> str:
        folder = await self._folders.create_folder(ticket)
        async with self._uow_factory() as uow:
            await uow.ticket_repository.set_drive_folder(ticket.id, folder.id, folder.url)
            if folder.row_index is not None:
                await uow.ticket_repository.set_sheet_row(ticket.id, folder.row_index)
        ticket.drive_folder_id = folder.id
        ticket.drive_folder_url = folder.url
        if folder.row_index is not None:
            ticket.sheet_row_index = folder.row_index
        return folder.id

    async def _upload(self, attachment: Attachment, folder_id: str) -> str:
        uploaded = await self._uploader.upload_file(attachment, folder_id)
        async with self._uow_factory() as uow:
            await uow.attachment_repository.mark_uploaded(attachment.id, uploaded.url, uploaded.remote_file_id)
        return uploaded.url

    async def _sync_sheet(self, ticket: Ticket, urls: list[str]) -> None:
        row_index = await self._sheets.upsert_row(ticket, urls)
        if row_index is not None and row_index != ticket.sheet_row_index:
            async with self._uow_factory() as uow:
                await uow.ticket_repository.set_sheet_row(ticket.id, row_index)
            ticket.sheet_row_index = row_index

    async def _notify(self, supervisor: StepSupervisor, context: _TicketContext) -> None:
        ticket = context.ticket
        customer = ticket.customer
        summary = TicketSummary(
            ticket_id=ticket.id,
            ticket_no=ticket.ticket_no,
            customer_name=customer.name if customer else "-",
            customer_email=customer.email if customer else None,
            customer_phone=customer.phone if customer else None,
            issue_type=ticket.issue_type,
            amount=context.amount,
        )

        async def _send() -> None:
            result = await self._notifier.notify(summary)
            if not result.delivered:
                raise DownstreamFailure(f"notification not delivered after {result.attempts} attempt(s): {result.error}")

        await supervisor.run("notify", _send, timeout=self._timeouts.notify)
