"""Common base task for payment jobs"""
from __future__ import annotations

from celery import Task
from core.logging_config import get_logger

logger = get_logger(__name__)


class BaseTask(Task):
    """结构化记录任务成功、重试与最终失败；ticket_id 存在时一并输出"""

    @staticmethod
    def _context(kwargs) -> dict:
        ticket_id = (kwargs or {}).get("ticket_id")
        return {"ticket_id": ticket_id} if ticket_id is not None else {}

    def on_retry(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        logger.warning(
            "celery_task_retry",
            task_id=task_id,
            task_name=self.name,
            retries=self.request.retries,
            error=str(exc),
            **self._context(kwargs),
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):  # type: ignore[override]
        # 重试耗尽后才会进入这里
        logger.error(
            "celery_task_failure",
            task_id=task_id,
            task_name=self.name,
            error=str(exc),
            error_type=type(exc).__name__,
            **self._context(kwargs),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):  # type: ignore[override]
        logger.info("celery_task_success", task_id=task_id, task_name=self.name, **self._context(kwargs))
        super().on_success(retval, task_id, args, kwargs)
