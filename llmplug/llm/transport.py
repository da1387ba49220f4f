"""厂商传输层

传输层负责认证、基础 URL 与网络 I/O，只交换普通字典：

- invoke(request) -> 响应载荷
- invoke_streaming(request) -> 原始事件的异步迭代器

建立请求时的失败统一包装为 RequestError；流读取过程中的异常原样抛出，
由 StreamReconstructor 包装为 StreamTransportError。
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import anthropic
import httpx
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from ..errors import RequestError

logger = logging.getLogger(__name__)

# 默认请求超时 (秒)
DEFAULT_TIMEOUT = 120.0


def _sdk_error(provider: str, e: Exception) -> RequestError:
    status_code = getattr(e, "status_code", None)
    return RequestError(f"[{provider}] API 请求失败: {e}", provider, status_code=status_code)


class Transport(ABC):
    """传输层抽象基类"""

    def __init__(self, provider: str):
        self.provider = provider

    @abstractmethod
    async def invoke(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """发送非流式请求"""
        pass

    @abstractmethod
    def invoke_streaming(self, request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        """发送流式请求，逐个产出原始事件"""
        pass


class OpenAITransport(Transport):
    """基于 openai SDK 的传输（所有 OpenAI 兼容服务共用）"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        provider: str = "openai",
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(provider)
        # 本地服务不校验 key，但 SDK 要求非空
        self.client = client or AsyncOpenAI(
            api_key=api_key or "not-needed",
            base_url=api_base,
            default_headers=default_headers,
            timeout=timeout,
            max_retries=0,
        )

    async def invoke(self, request: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"[{self.provider}] chat.completions.create model={request.get('model')}")
        try:
            response = await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            raise _sdk_error(self.provider, e) from e
        return response.model_dump()

    async def invoke_streaming(self, request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        logger.debug(f"[{self.provider}] chat.completions.create(stream) model={request.get('model')}")
        try:
            stream = await self.client.chat.completions.create(**request)
        except openai.APIError as e:
            raise _sdk_error(self.provider, e) from e

        try:
            async for chunk in stream:
                yield chunk.model_dump()
        finally:
            await stream.close()


class AnthropicTransport(Transport):
    """基于 anthropic SDK 的传输"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        provider: str = "anthropic",
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[AsyncAnthropic] = None,
    ):
        super().__init__(provider)
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            base_url=api_base,
            default_headers=default_headers,
            timeout=timeout,
            max_retries=0,
        )

    async def invoke(self, request: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"[{self.provider}] messages.create model={request.get('model')}")
        try:
            response = await self.client.messages.create(**request)
        except anthropic.APIError as e:
            raise _sdk_error(self.provider, e) from e
        return response.model_dump()

    async def invoke_streaming(self, request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        logger.debug(f"[{self.provider}] messages.create(stream) model={request.get('model')}")
        try:
            stream = await self.client.messages.create(**request)
        except anthropic.APIError as e:
            raise _sdk_error(self.provider, e) from e

        try:
            async for event in stream:
                yield event.model_dump()
        finally:
            await stream.close()


class HttpTransport(Transport):
    """基于 httpx 的 JSON-over-HTTP 传输"""

    def __init__(
        self,
        api_key: Optional[str],
        api_base: str,
        provider: str,
        default_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(provider)
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.default_headers = dict(default_headers or {})
        self.timeout = timeout
        self._client = client

    @abstractmethod
    def _prepare(self, request: Dict[str, Any], stream: bool) -> Tuple[str, Dict[str, Any]]:
        """返回 (URL, 请求体)"""
        pass

    @abstractmethod
    def _auth_headers(self) -> Dict[str, str]:
        pass

    @abstractmethod
    def _iter_events(self, response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        """把响应体解码为事件"""
        pass

    def _headers(self) -> Dict[str, str]:
        return {**self.default_headers, **self._auth_headers()}

    def _status_error(self, response: httpx.Response) -> RequestError:
        body = response.text[:500]
        return RequestError(
            f"[{self.provider}] API 请求失败: HTTP {response.status_code}: {body}",
            self.provider,
            status_code=response.status_code,
        )

    async def invoke(self, request: Dict[str, Any]) -> Dict[str, Any]:
        url, body = self._prepare(request, stream=False)
        logger.debug(f"[{self.provider}] POST {url}")

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            try:
                response = await client.post(url, json=body, headers=self._headers())
            except httpx.HTTPError as e:
                raise RequestError(f"[{self.provider}] 网络请求失败: {e}", self.provider) from e

            if response.status_code >= 400:
                raise self._status_error(response)

            try:
                return response.json()
            except json.JSONDecodeError as e:
                raise RequestError(f"[{self.provider}] 响应不是合法 JSON", self.provider) from e
        finally:
            if self._client is None:
                await client.aclose()

    async def invoke_streaming(self, request: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        url, body = self._prepare(request, stream=True)
        logger.debug(f"[{self.provider}] POST {url} (stream)")

        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            try:
                http_request = client.build_request("POST", url, json=body, headers=self._headers())
                response = await client.send(http_request, stream=True)
            except httpx.HTTPError as e:
                raise RequestError(f"[{self.provider}] 网络请求失败: {e}", self.provider) from e

            try:
                if response.status_code >= 400:
                    await response.aread()
                    raise self._status_error(response)

                async for event in self._iter_events(response):
                    yield event
            finally:
                await response.aclose()
        finally:
            if self._client is None:
                await client.aclose()


async def iter_sse(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """解码 text/event-stream，每个事件的 data 为一个 JSON 对象"""
    data_lines = []
    async for line in response.aiter_lines():
        if not line.strip():
            if data_lines:
                yield json.loads("\n".join(data_lines))
                data_lines = []
            continue
        if line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())
    if data_lines:
        yield json.loads("\n".join(data_lines))


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
    """解码换行分隔的 JSON"""
    async for line in response.aiter_lines():
        if line.strip():
            yield json.loads(line)


class GoogleTransport(HttpTransport):
    """Gemini REST API 传输"""

    DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(self, api_key: Optional[str] = None, api_base: Optional[str] = None, provider: str = "google", **kwargs):
        super().__init__(api_key, api_base or self.DEFAULT_API_BASE, provider, **kwargs)

    def _prepare(self, request: Dict[str, Any], stream: bool) -> Tuple[str, Dict[str, Any]]:
        body = dict(request)
        model = body.pop("model")
        if stream:
            return f"{self.api_base}/models/{model}:streamGenerateContent?alt=sse", body
        return f"{self.api_base}/models/{model}:generateContent", body

    def _auth_headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.api_key} if self.api_key else {}

    def _iter_events(self, response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        return iter_sse(response)


class CohereTransport(HttpTransport):
    """Cohere v1 chat 传输"""

    DEFAULT_API_BASE = "https://api.cohere.com/v1"

    def __init__(self, api_key: Optional[str] = None, api_base: Optional[str] = None, provider: str = "cohere", **kwargs):
        super().__init__(api_key, api_base or self.DEFAULT_API_BASE, provider, **kwargs)

    def _prepare(self, request: Dict[str, Any], stream: bool) -> Tuple[str, Dict[str, Any]]:
        body = dict(request)
        if stream:
            body["stream"] = True
        return f"{self.api_base}/chat", body

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    def _iter_events(self, response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        return iter_ndjson(response)
