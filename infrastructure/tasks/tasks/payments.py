"""Payment related Celery tasks"""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.adapters.integrations import build_collaborators, close_collaborators
from infrastructure.composition import build_draft_cleanup_service, build_payment_service

logger = get_logger(__name__)


@shared_task(name="payments.expire_stale_drafts", bind=True, base=BaseTask)
def expire_stale_drafts(self) -> dict:
    """Expire DRAFT tickets whose QRIS payment was never completed."""

    async def _run():
        service = build_draft_cleanup_service()
        return await service.expire_stale_drafts()

    report = asyncio.run(_run())
    return {"checked": report.checked, "expired": report.expired, "errors": report.errors}


@shared_task(
    name="payments.rerun_post_payment",
    bind=True,
    base=BaseTask,
    max_retries=3,
    default_retry_delay=60,
)
def rerun_post_payment(self, ticket_id: int) -> dict:
    """Re-run folder/upload/sheet/notify for an already paid ticket.

    Retries while any step is still failing.
    """

    async def _run():
        collaborators = build_collaborators(payment_settings)
        try:
            return await build_payment_service(collaborators).rerun_post_payment(ticket_id)
        finally:
            await close_collaborators(collaborators)

    report = asyncio.run(_run())
    failed = [step.name for step in report.failures]
    if failed:
        logger.warning("post_payment_rerun_incomplete", ticket_id=ticket_id, failed_steps=failed)
        raise self.retry(exc=RuntimeError(f"steps failed: {', '.join(failed)}"))
    return {"ticket_id": ticket_id, "steps": [step.name for step in report.steps]}
