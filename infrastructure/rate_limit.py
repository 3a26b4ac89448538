"""
滑动窗口限流

RateLimiter 在应用 lifespan 中创建并挂到 app.state 上，随进程生命周期存在，
关闭时 reset；不使用模块级可变全局。
"""
from __future__ import annotations

import time
from dataclasses import dataclass

from limits import RateLimitItem, parse
from limits.aio.storage import MemoryStorage
from limits.aio.strategies import MovingWindowRateLimiter

from core.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int


class RateLimiter:
    """按 (scope, key) 计数的滑动窗口限流器"""

    def __init__(self, rules: dict[str, str], *, enabled: bool = True):
        self.enabled = enabled
        self._items: dict[str, RateLimitItem] = {scope: parse(rule) for scope, rule in rules.items()}
        self._storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)

    async def hit(self, scope: str, key: str) -> RateLimitDecision:
        item = self._items.get(scope)
        if not self.enabled or item is None:
            return RateLimitDecision(allowed=True, remaining=-1, retry_after=0)

        allowed = await self._strategy.hit(item, scope, key)
        stats = await self._strategy.get_window_stats(item, scope, key)
        retry_after = 0 if allowed else max(1, int(stats.reset_time - time.time()))
        if not allowed:
            logger.warning("rate_limit_exceeded", scope=scope, key=key, retry_after=retry_after)
        return RateLimitDecision(allowed=allowed, remaining=stats.remaining, retry_after=retry_after)

    async def reset(self) -> None:
        await self._storage.reset()
