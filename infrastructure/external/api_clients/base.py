"""
REST API客户端基类

提供通用的HTTP请求功能，包括：
- 自动重试（超时 / 网络错误 / 429 与 5xx）
- 错误映射
- 超时控制
"""
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T', bound=BaseModel)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class APIResponse:
    """API响应封装"""
    status_code: int
    headers: Dict[str, str]
    data: Any
    raw_content: bytes
    elapsed_ms: float

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def json(self) -> Any:
        if self.data is not None:
            return self.data
        return json.loads(self.raw_content)


class APIError(Exception):
    """API错误基类"""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[APIResponse] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)

    def __str__(self):
        if self.status_code:
            return f"{self.message} | Status: {self.status_code}"
        return self.message


class AuthenticationError(APIError):
    """认证错误"""


class RetryableAPIError(APIError):
    """可重试的API错误"""


class BaseAPIClient:
    """
    REST API客户端基类

    子类只需组织请求参数与解析响应；重试、超时与错误映射在这里统一处理。
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API基础URL
            timeout: 单次请求超时时间（秒）
            max_retries: 最大重试次数（不含首次请求）
            retry_delay: 指数退避的基础延迟（秒）
            headers: 默认请求头
            transport: 自定义 httpx transport（测试时注入 MockTransport）
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "qris-reconciliation/1.0",
        }
        if headers:
            self.default_headers.update(headers)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """关闭HTTP客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _raise_for_status(self, response: APIResponse) -> None:
        if not response.is_error:
            return
        message = f"API request failed with status {response.status_code}"
        if isinstance(response.data, dict):
            message = response.data.get("message") or response.data.get("error") or message
        if response.status_code in RETRY_STATUS_CODES:
            raise RetryableAPIError(message, response.status_code, response)
        if response.status_code in (401, 403):
            raise AuthenticationError(message, response.status_code, response)
        raise APIError(message, response.status_code, response)

    async def _send_once(self, method: str, url: str, **kwargs) -> APIResponse:
        start = time.perf_counter()
        response = await self.client.request(method, url, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000

        data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except ValueError:
                data = None

        api_response = APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            raw_content=response.content,
            elapsed_ms=elapsed,
        )
        self._raise_for_status(api_response)
        return api_response

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> APIResponse:
        url = self._build_url(endpoint)
        request_headers = {**self.default_headers, **(headers or {})}
        if isinstance(json_data, BaseModel):
            json_data = json_data.model_dump(mode="json", exclude_unset=True)

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RetryableAPIError)),
            before_sleep=lambda state: logger.warning(
                "api_request_retrying",
                url=url,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send_once(
                        method, url, params=params, json=json_data, headers=request_headers
                    )
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout after {self.timeout}s") from exc
        except httpx.NetworkError as exc:
            raise APIError(f"Network error: {exc}") from exc
        raise APIError("Request did not complete")  # pragma: no cover

    async def get(self, endpoint: str, **kwargs) -> APIResponse:
        return await self._request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs) -> APIResponse:
        return await self._request("POST", endpoint, **kwargs)

    async def post_typed(self, endpoint: str, response_model: Type[T], **kwargs) -> T:
        """发送POST请求并返回类型化响应"""
        response = await self.post(endpoint, **kwargs)
        return response_model.model_validate(response.json())
