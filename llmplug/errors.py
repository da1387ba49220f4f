"""异常体系

所有异常都继承自 LLMPlugError，并通过 ``raise ... from`` 链接原始厂商异常。
本层对每次调用只尝试一次，重试策略由调用方决定。
"""

from __future__ import annotations

from typing import Optional


class LLMPlugError(Exception):
    """基础异常"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class ConfigurationError(LLMPlugError):
    """配置错误：缺少凭据、缺少模型 ID、未知 provider"""

    pass


class RequestError(LLMPlugError):
    """请求错误：厂商拒绝、网络失败、载荷格式错误"""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code


class ValidationError(RequestError):
    """请求内容校验失败（例如没有任何可发送的内容）"""

    pass


class UnsupportedFeatureError(RequestError):
    """厂商无法表达所请求的选项或内容"""

    def __init__(self, feature: str, provider: Optional[str] = None, detail: str = ""):
        message = f"{provider or '该厂商'} 不支持 {feature}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, provider)
        self.feature = feature


class EmptyResponseError(RequestError):
    """厂商返回了零个 choices/candidates"""

    pass


class StreamTransportError(RequestError):
    """流式传输中途失败，已交付的片段依然有效"""

    pass


class RetrievalError(RequestError):
    """图片获取失败（不可达或非 2xx）"""

    def __init__(self, url: str, status_code: Optional[int] = None, reason: str = ""):
        message = f"获取图片失败: {url}"
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, status_code=status_code)
        self.url = url


class UnsupportedMediaError(RequestError):
    """图片格式不受支持"""

    def __init__(self, media_type: Optional[str], source: str = ""):
        message = f"不支持的图片类型: {media_type or 'unknown'}"
        if source:
            message = f"{message} ({source})"
        super().__init__(message)
        self.media_type = media_type


class ToolError(LLMPlugError):
    """工具调用无法解析：未知名称/ID 或参数无法解析"""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        tool_call_id: Optional[str] = None,
        tool_name: Optional[str] = None,
    ):
        super().__init__(message, provider)
        self.tool_call_id = tool_call_id
        self.tool_name = tool_name
