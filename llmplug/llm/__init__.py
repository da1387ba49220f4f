"""LLM 模块"""

from .base import AdapterSet, InboundAdapter, OutboundAdapter, StreamDecoder
from .openai_adapter import OpenAIDialect
from .providers import (
    PROVIDER_CONFIGS,
    ProviderCapability,
    ProviderConfig,
    ProviderRegistry,
    WireFormat,
    default_registry,
    get_capability_matrix,
    get_provider_config,
    list_providers,
)
from .streaming import (
    ById,
    ByIndex,
    ChatStream,
    StreamReconstructor,
    StreamState,
    ToolCallAccumulator,
    collect_stream,
)
from .transport import (
    AnthropicTransport,
    CohereTransport,
    GoogleTransport,
    OpenAITransport,
    Transport,
)
from .wrapper import LLMClient

__all__ = [
    # Adapters
    "AdapterSet",
    "InboundAdapter",
    "OutboundAdapter",
    "StreamDecoder",
    "OpenAIDialect",
    # Client
    "LLMClient",
    # Streaming
    "ById",
    "ByIndex",
    "ChatStream",
    "StreamReconstructor",
    "StreamState",
    "ToolCallAccumulator",
    "collect_stream",
    # Transports
    "Transport",
    "OpenAITransport",
    "AnthropicTransport",
    "GoogleTransport",
    "CohereTransport",
    # Providers
    "ProviderConfig",
    "ProviderCapability",
    "ProviderRegistry",
    "WireFormat",
    "PROVIDER_CONFIGS",
    "default_registry",
    "get_provider_config",
    "list_providers",
    "get_capability_matrix",
]
