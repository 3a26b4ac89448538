"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Payment


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        """根据ID获取支付；for_update=True 时加行锁"""
        pass

    @abstractmethod
    async def get_by_order_id(self, order_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据订单ID获取支付；for_update=True 时加行锁"""
        pass

    @abstractmethod
    async def find_pending(
        self,
        *,
        provider: Optional[str] = None,
        amount: Optional[int] = None,
        order_id: Optional[str] = None,
        limit: int = 500,
    ) -> List[Payment]:
        """查询待支付记录（按渠道/金额/订单过滤）"""
        pass

    @abstractmethod
    async def get_pending_for_ticket(self, ticket_id: int) -> Optional[Payment]:
        """获取工单当前的待支付记录"""
        pass

    @abstractmethod
    async def list_pending_amounts(self, provider: str, min_amount: int, max_amount: int) -> set[int]:
        """列出金额区间内所有待支付记录的金额（用于分配唯一码）"""
        pass

    @abstractmethod
    async def update_if_version(self, payment: Payment, expected_version: int) -> bool:
        """条件更新：仅当数据库中的版本号等于 expected_version 时写入。

        成功返回 True 并递增 payment.version；影响行数为 0 时返回 False。
        """
        pass
