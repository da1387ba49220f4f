"""
LLMPlug - 统一的 LLM 厂商接入层

把各家厂商的请求/响应格式、流式分片、工具调用和多模态内容
统一到一套消息模型与调用接口之下。
"""

__version__ = "0.1.0"

from .config import Config
from .errors import (
    ConfigurationError,
    EmptyResponseError,
    LLMPlugError,
    RequestError,
    RetrievalError,
    StreamTransportError,
    ToolError,
    UnsupportedFeatureError,
    UnsupportedMediaError,
    ValidationError,
)
from .llm import (
    ChatStream,
    LLMClient,
    ProviderCapability,
    ProviderConfig,
    ProviderRegistry,
    collect_stream,
    default_registry,
    list_providers,
)
from .multimodal import FetchResponse, HttpxFetcher, ImageResolver
from .schema import (
    ChatMessage,
    FunctionCall,
    GenerationOptions,
    GenerationResult,
    ImagePart,
    NamedToolChoice,
    StreamChunk,
    TextPart,
    TokenUsage,
    ToolCall,
    ToolDefinition,
)
from .tools import ToolCallOutcome, resolve_tool_calls, tool_result_message

__all__ = [
    "__version__",
    # Client
    "LLMClient",
    "ChatStream",
    "collect_stream",
    "Config",
    # Providers
    "ProviderCapability",
    "ProviderConfig",
    "ProviderRegistry",
    "default_registry",
    "list_providers",
    # Schema
    "ChatMessage",
    "TextPart",
    "ImagePart",
    "ToolCall",
    "FunctionCall",
    "ToolDefinition",
    "NamedToolChoice",
    "GenerationOptions",
    "GenerationResult",
    "StreamChunk",
    "TokenUsage",
    # Multimodal
    "ImageResolver",
    "HttpxFetcher",
    "FetchResponse",
    # Tools
    "ToolCallOutcome",
    "resolve_tool_calls",
    "tool_result_message",
    # Errors
    "LLMPlugError",
    "ConfigurationError",
    "RequestError",
    "ValidationError",
    "UnsupportedFeatureError",
    "EmptyResponseError",
    "StreamTransportError",
    "RetrievalError",
    "UnsupportedMediaError",
    "ToolError",
]
