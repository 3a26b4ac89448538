"""HTTP 客户端基类：Apps Script 与 WhatsApp 网关客户端共用的重试与错误映射"""
from .base import BaseAPIClient, APIResponse, APIError, AuthenticationError, RetryableAPIError

__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "AuthenticationError",
    "RetryableAPIError",
]
