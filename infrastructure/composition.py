"""应用服务的组装：API 依赖与 Celery 任务共用同一套构造逻辑"""
from __future__ import annotations

from typing import Callable, Optional

from application.services.draft_cleanup_service import DraftCleanupService
from application.services.payment_service import QrisPaymentService
from application.services.post_payment_service import PostPaymentOrchestrator
from application.services.reconciliation_service import ReconciliationService
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


def build_reconciler(
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    cfg: PaymentSettings = payment_settings,
) -> ReconciliationService:
    return ReconciliationService(
        uow_factory,
        protect_closed_tickets=cfg.reconciliation.protect_closed_tickets,
    )


def build_payment_service(
    collaborators: Optional[dict] = None,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    cfg: PaymentSettings = payment_settings,
) -> QrisPaymentService:
    orchestrator = None
    if collaborators is not None:
        orchestrator = PostPaymentOrchestrator(uow_factory, timeouts=cfg.timeouts, **collaborators)
    return QrisPaymentService(
        uow_factory,
        reconciler=build_reconciler(uow_factory, cfg),
        orchestrator=orchestrator,
        qris=cfg.qris,
    )


def build_draft_cleanup_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    cfg: PaymentSettings = payment_settings,
) -> DraftCleanupService:
    return DraftCleanupService(
        uow_factory,
        build_reconciler(uow_factory, cfg),
        max_age_hours=cfg.drafts.max_age_hours,
        batch_size=cfg.drafts.batch_size,
    )
