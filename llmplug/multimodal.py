"""多模态内容解析

把图片引用（远程 URL 或 data: URL）解析为 (mime_type, base64 数据)。

注意：不做缓存，每次调用都会重新获取远程图片。
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Tuple

import httpx

from .errors import RetrievalError, UnsupportedMediaError

logger = logging.getLogger(__name__)

# 支持的图片格式
SUPPORTED_MEDIA_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")

# 文件头签名
_SIGNATURES: Tuple[Tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


@dataclass
class FetchResponse:
    """一次获取的结果"""

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    def header(self, name: str) -> Optional[str]:
        """大小写不敏感地读取响应头"""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


Fetcher = Callable[[str], Awaitable[FetchResponse]]


def sniff_media_type(data: bytes) -> Optional[str]:
    """根据文件头识别图片类型"""
    for signature, media_type in _SIGNATURES:
        if data.startswith(signature):
            return media_type
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _normalize_media_type(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    media_type = value.split(";", 1)[0].strip().lower()
    if media_type == "image/jpg":
        media_type = "image/jpeg"
    return media_type or None


class HttpxFetcher:
    """基于 httpx 的默认获取实现"""

    def __init__(self, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self._client = client

    async def __call__(self, url: str) -> FetchResponse:
        if self._client is not None:
            response = await self._client.get(url, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, follow_redirects=True)
        return FetchResponse(
            status=response.status_code,
            headers=dict(response.headers),
            content=response.content,
        )


class ImageResolver:
    """图片解析器

    远程 URL 只获取一次；类型优先取 Content-Type，缺失或不可用时按文件头识别。
    """

    def __init__(self, fetcher: Optional[Fetcher] = None):
        self.fetcher: Fetcher = fetcher or HttpxFetcher()

    async def resolve(self, url: str) -> Tuple[str, str]:
        """解析图片引用

        Returns:
            (mime_type, base64 数据)

        Raises:
            RetrievalError: 无法获取或非 2xx 响应
            UnsupportedMediaError: 不是受支持的图片格式
        """
        if url.startswith("data:"):
            return self._resolve_data_url(url)

        logger.debug(f"获取图片: {url}")
        try:
            response = await self.fetcher(url)
        except Exception as e:
            raise RetrievalError(url, reason=str(e)) from e

        if not 200 <= response.status < 300:
            raise RetrievalError(url, status_code=response.status)

        media_type = _normalize_media_type(response.header("content-type"))
        if media_type not in SUPPORTED_MEDIA_TYPES:
            sniffed = sniff_media_type(response.content)
            if sniffed is None:
                raise UnsupportedMediaError(media_type, source=url)
            media_type = sniffed

        return media_type, base64.b64encode(response.content).decode("ascii")

    def _resolve_data_url(self, url: str) -> Tuple[str, str]:
        """解析 data:[<mediatype>][;base64],<data>"""
        header, sep, payload = url[len("data:"):].partition(",")
        if not sep or not header.endswith(";base64"):
            raise UnsupportedMediaError(None, source="data URL 必须是 base64 编码")

        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise UnsupportedMediaError(None, source=f"data URL 解码失败: {e}") from e

        media_type = _normalize_media_type(header[: -len(";base64")])
        if media_type not in SUPPORTED_MEDIA_TYPES:
            sniffed = sniff_media_type(raw)
            if sniffed is None:
                raise UnsupportedMediaError(media_type, source="data URL")
            media_type = sniffed

        return media_type, payload
