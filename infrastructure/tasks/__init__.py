"""Celery 任务：草稿过期清理与已付款工单的后续同步重跑。

API 层只依赖 TaskDispatcher，不直接接触 Celery。
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
