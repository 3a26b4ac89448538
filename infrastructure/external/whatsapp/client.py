"""
WhatsApp 网关客户端

通过 HTTP 网关向团队号码发送新工单通知；失败时按指数退避重试，
重试耗尽后返回 delivered=False 的结果而不是抛异常。
"""
from __future__ import annotations

from typing import Optional

from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from application.ports.integrations import NotificationResult, TicketSummary
from core.logging_config import get_logger
from infrastructure.external.api_clients.base import BaseAPIClient

logger = get_logger(__name__)


def build_ticket_message(summary: TicketSummary, dashboard_base_url: str) -> str:
    dashboard_link = f"{dashboard_base_url.rstrip('/')}/ops/tickets/{summary.ticket_id}"
    lines = [
        "🎫 *New Ticket Received*",
        "",
        f"*Ticket No:* {summary.ticket_no}",
        f"*Customer:* {summary.customer_name}",
        f"*Issue Type:* {summary.issue_type or '-'}",
    ]
    if summary.amount is not None:
        lines.append(f"*Paid:* IDR {summary.amount:,}")
    lines += ["", f"📋 *Dashboard:* {dashboard_link}"]
    return "\n".join(lines)


class WhatsAppClient(BaseAPIClient):
    def __init__(
        self,
        gateway_url: str,
        team_number: str,
        *,
        api_token: Optional[str] = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        dashboard_base_url: str = "http://localhost:3000",
        timeout: float = 10.0,
        **kwargs,
    ):
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else None
        # 传输层不重试，重试次数由 send_with_retry 统一控制
        super().__init__(gateway_url, timeout=timeout, max_retries=0, headers=headers, **kwargs)
        self.team_number = team_number
        self.attempts_limit = max(1, max_retries)
        self.retry_base_delay = retry_base_delay
        self.dashboard_base_url = dashboard_base_url

    async def send_message(self, to: str, message: str) -> None:
        await self.post("/messages", json_data={"to": to, "message": message})

    async def send_with_retry(self, to: str, message: str) -> NotificationResult:
        attempts = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts_limit),
            wait=wait_exponential(multiplier=self.retry_base_delay, min=self.retry_base_delay),
            before_sleep=lambda state: logger.warning(
                "whatsapp_send_retrying",
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await self.send_message(to, message)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.error("whatsapp_send_failed", attempts=attempts, error=str(last))
            return NotificationResult(delivered=False, attempts=attempts, error=str(last))
        return NotificationResult(delivered=True, attempts=attempts)

    async def send_ticket_notification(self, summary: TicketSummary) -> NotificationResult:
        message = build_ticket_message(summary, self.dashboard_base_url)
        return await self.send_with_retry(self.team_number, message)


__all__ = ["WhatsAppClient", "build_ticket_message"]
