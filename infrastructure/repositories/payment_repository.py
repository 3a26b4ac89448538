"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from domain.payment.entity import Payment, PaymentStatus
from domain.payment.payload import PaymentPayload
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            ticket_id=model.ticket_id,
            order_id=model.order_id,
            amount=int(model.amount),
            currency=model.currency,
            status=PaymentStatus(model.status),
            provider=model.provider,
            payload=PaymentPayload.from_raw(model.payload),
            version=model.version or 0,
            created_at=model.created_at,
            updated_at=model.updated_at,
            paid_at=model.paid_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            ticket_id=entity.ticket_id,
            order_id=entity.order_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            provider=entity.provider,
            payload=entity.payload.to_dict(),
            version=entity.version,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            paid_at=entity.paid_at,
        )

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            order_id=db_payment.order_id,
            ticket_id=db_payment.ticket_id,
            amount=db_payment.amount,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        query = select(PaymentModel).where(PaymentModel.id == payment_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_order_id(self, order_id: str, *, for_update: bool = False) -> Optional[Payment]:
        query = select(PaymentModel).where(PaymentModel.order_id == order_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def find_pending(
        self,
        *,
        provider: Optional[str] = None,
        amount: Optional[int] = None,
        order_id: Optional[str] = None,
        limit: int = 500,
    ) -> List[Payment]:
        query = select(PaymentModel).where(PaymentModel.status == PaymentStatus.PENDING.value)
        if provider:
            query = query.where(PaymentModel.provider == provider)
        if amount is not None:
            query = query.where(PaymentModel.amount == amount)
        if order_id:
            query = query.where(PaymentModel.order_id == order_id)
        query = query.order_by(PaymentModel.created_at.asc(), PaymentModel.id.asc()).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]

    async def get_pending_for_ticket(self, ticket_id: int) -> Optional[Payment]:
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.ticket_id == ticket_id,
                PaymentModel.status == PaymentStatus.PENDING.value,
            )
            .order_by(PaymentModel.created_at.desc())
            .limit(1)
        )
        db_payment = result.scalars().first()
        return self._to_entity(db_payment) if db_payment else None

    async def list_pending_amounts(self, provider: str, min_amount: int, max_amount: int) -> set[int]:
        result = await self.session.execute(
            select(PaymentModel.amount).where(
                PaymentModel.provider == provider,
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.amount >= min_amount,
                PaymentModel.amount <= max_amount,
            )
        )
        return {int(a) for a in result.scalars().all()}

    async def update_if_version(self, payment: Payment, expected_version: int) -> bool:
        """条件更新（WHERE id = ? AND version = ?）"""
        result = await self.session.execute(
            update(PaymentModel)
            .where(
                PaymentModel.id == payment.id,
                PaymentModel.version == expected_version,
            )
            .values(
                status=payment.status.value,
                payload=payment.payload.to_dict(),
                paid_at=payment.paid_at,
                updated_at=payment.updated_at,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "payment_version_conflict",
                payment_id=payment.id,
                order_id=payment.order_id,
                expected_version=expected_version,
            )
            return False
        payment.version = expected_version + 1
        logger.info(
            "payment_updated",
            payment_id=payment.id,
            order_id=payment.order_id,
            status=payment.status.value,
            version=payment.version,
        )
        return True
