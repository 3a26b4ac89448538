"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Optional

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by the API layer to schedule tasks."""

    def rerun_post_payment(self, ticket_id: int) -> Optional[str]:
        """Queue a retry of the post-payment steps for one ticket."""
        result = celery_app.send_task("payments.rerun_post_payment", kwargs={"ticket_id": ticket_id})
        return getattr(result, "id", None)
