"""
Provider 配置、注册表和能力矩阵

支持的 Provider:
- OpenAI GPT
- Anthropic Claude
- Google Gemini
- Cohere Command
- Mistral AI
- OpenRouter
- HuggingFace Router
- Ollama / llama.cpp server / oobabooga (本地)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Union

from ..errors import ConfigurationError
from ..multimodal import ImageResolver
from .anthropic_adapter import AnthropicInbound, AnthropicOutbound, AnthropicStreamDecoder
from .base import AdapterSet
from .cohere_adapter import CohereInbound, CohereOutbound, CohereStreamDecoder
from .google_adapter import GoogleInbound, GoogleOutbound, GoogleStreamDecoder
from .openai_adapter import (
    DEFAULT_DIALECT,
    LOCAL_DIALECT,
    MISTRAL_DIALECT,
    OpenAIDialect,
    OpenAIInbound,
    OpenAIOutbound,
    OpenAIStreamDecoder,
)
from .transport import (
    DEFAULT_TIMEOUT,
    AnthropicTransport,
    CohereTransport,
    GoogleTransport,
    OpenAITransport,
    Transport,
)


class WireFormat(str, Enum):
    """线协议"""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    COHERE = "cohere"


class ProviderCapability(str, Enum):
    """Provider 能力"""

    STREAMING = "streaming"  # 流式输出
    TOOL_CALLING = "tool_calling"  # 工具调用
    VISION = "vision"  # 视觉/图像理解
    JSON_MODE = "json_mode"  # JSON 输出模式
    SYSTEM_PROMPT = "system_prompt"  # 系统提示词


@dataclass
class ProviderConfig:
    """Provider 配置"""

    name: str
    display_name: str
    wire_format: WireFormat
    api_base: Optional[str]
    api_key_env: Optional[str]  # 环境变量名
    default_model: Optional[str] = None
    models: List[str] = field(default_factory=list)
    capabilities: List[ProviderCapability] = field(default_factory=list)
    # 本地服务不需要 API key，但必须指定模型
    requires_api_key: bool = True
    # OpenAI 兼容服务的能力差异
    dialect: Optional[OpenAIDialect] = None
    extra_headers: Dict[str, str] = field(default_factory=dict)
    description: str = ""

    def has_capability(self, cap: ProviderCapability) -> bool:
        """检查是否支持某能力"""
        return cap in self.capabilities

    @property
    def supports_streaming(self) -> bool:
        return self.has_capability(ProviderCapability.STREAMING)

    @property
    def supports_tools(self) -> bool:
        return self.has_capability(ProviderCapability.TOOL_CALLING)

    @property
    def supports_vision(self) -> bool:
        return self.has_capability(ProviderCapability.VISION)


_ALL_CAPS = list(ProviderCapability)


# Provider 配置表
PROVIDER_CONFIGS: Dict[str, ProviderConfig] = {
    "openai": ProviderConfig(
        name="openai",
        display_name="OpenAI GPT",
        wire_format=WireFormat.OPENAI,
        api_base="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
        default_model="gpt-4o-mini",
        models=["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
        capabilities=_ALL_CAPS,
        dialect=DEFAULT_DIALECT,
        description="GPT 系列模型，Chat Completions 协议",
    ),
    "anthropic": ProviderConfig(
        name="anthropic",
        display_name="Anthropic Claude",
        wire_format=WireFormat.ANTHROPIC,
        api_base="https://api.anthropic.com",
        api_key_env="ANTHROPIC_API_KEY",
        default_model="claude-3-5-sonnet-latest",
        models=["claude-3-5-sonnet-latest", "claude-3-5-haiku-latest", "claude-3-opus-latest"],
        capabilities=[
            ProviderCapability.STREAMING,
            ProviderCapability.TOOL_CALLING,
            ProviderCapability.VISION,
            ProviderCapability.SYSTEM_PROMPT,
        ],
        description="Claude 系列模型，Messages 协议",
    ),
    "google": ProviderConfig(
        name="google",
        display_name="Google Gemini",
        wire_format=WireFormat.GOOGLE,
        api_base="https://generativelanguage.googleapis.com/v1beta",
        api_key_env="GOOGLE_GEMINI_API_KEY",
        default_model="gemini-1.5-flash",
        models=["gemini-2.0-flash", "gemini-1.5-pro", "gemini-1.5-flash"],
        capabilities=_ALL_CAPS,
        description="Gemini 系列模型，generateContent 协议",
    ),
    "cohere": ProviderConfig(
        name="cohere",
        display_name="Cohere Command",
        wire_format=WireFormat.COHERE,
        api_base="https://api.cohere.com/v1",
        api_key_env="COHERE_API_KEY",
        default_model="command-r",
        models=["command-r", "command-r-plus", "command-light"],
        capabilities=[
            ProviderCapability.STREAMING,
            ProviderCapability.TOOL_CALLING,
            ProviderCapability.JSON_MODE,
            ProviderCapability.SYSTEM_PROMPT,
        ],
        description="Command 系列模型，v1 chat 协议",
    ),
    "mistralai": ProviderConfig(
        name="mistralai",
        display_name="Mistral AI",
        wire_format=WireFormat.OPENAI,
        api_base="https://api.mistral.ai/v1",
        api_key_env="MISTRAL_API_KEY",
        default_model="mistral-small-latest",
        models=["mistral-small-latest", "mistral-large-latest", "open-mistral-nemo"],
        capabilities=[
            ProviderCapability.STREAMING,
            ProviderCapability.TOOL_CALLING,
            ProviderCapability.JSON_MODE,
            ProviderCapability.SYSTEM_PROMPT,
        ],
        dialect=MISTRAL_DIALECT,
        description="Mistral 系列模型",
    ),
    "openrouter": ProviderConfig(
        name="openrouter",
        display_name="OpenRouter",
        wire_format=WireFormat.OPENAI,
        api_base="https://openrouter.ai/api/v1",
        api_key_env="OPENROUTER_API_KEY",
        capabilities=_ALL_CAPS,
        dialect=DEFAULT_DIALECT,
        extra_headers={
            "HTTP-Referer": "https://llmplug.dev",
            "X-Title": "LLMPlug Application",
        },
        description="多厂商模型路由，必须指定模型",
    ),
    "huggingface": ProviderConfig(
        name="huggingface",
        display_name="HuggingFace Router",
        wire_format=WireFormat.OPENAI,
        api_base="https://router.huggingface.co/v1",
        api_key_env="HUGGINGFACE_API_TOKEN",
        capabilities=_ALL_CAPS,
        requires_api_key=False,
        dialect=DEFAULT_DIALECT,
        description="HuggingFace 推理路由，公开模型可不带 token",
    ),
    "ollama": ProviderConfig(
        name="ollama",
        display_name="Ollama (Local)",
        wire_format=WireFormat.OPENAI,
        api_base="http://localhost:11434/v1",
        api_key_env=None,
        capabilities=_ALL_CAPS,
        requires_api_key=False,
        dialect=LOCAL_DIALECT,
        description="本地运行的开源模型，模型需事先 pull",
    ),
    "llamacpp": ProviderConfig(
        name="llamacpp",
        display_name="llama.cpp server (Local)",
        wire_format=WireFormat.OPENAI,
        api_base="http://localhost:8080/v1",
        api_key_env=None,
        capabilities=_ALL_CAPS,
        requires_api_key=False,
        dialect=LOCAL_DIALECT,
        description="llama.cpp server 的 OpenAI 兼容接口",
    ),
    "oobabooga": ProviderConfig(
        name="oobabooga",
        display_name="Text Generation WebUI (Local)",
        wire_format=WireFormat.OPENAI,
        api_base="http://localhost:5000/v1",
        api_key_env=None,
        capabilities=_ALL_CAPS,
        requires_api_key=False,
        dialect=LOCAL_DIALECT,
        description="oobabooga Text Generation WebUI 的 OpenAI 扩展",
    ),
}


def build_adapters(config: ProviderConfig, resolver: Optional[ImageResolver] = None) -> AdapterSet:
    """按线协议组装适配器"""
    name = config.name

    if config.wire_format is WireFormat.OPENAI:
        return AdapterSet(
            wire_format=config.wire_format.value,
            outbound=OpenAIOutbound(name, resolver, dialect=config.dialect or DEFAULT_DIALECT),
            inbound=OpenAIInbound(name),
            decoder_factory=lambda: OpenAIStreamDecoder(name),
        )
    if config.wire_format is WireFormat.ANTHROPIC:
        return AdapterSet(
            wire_format=config.wire_format.value,
            outbound=AnthropicOutbound(name, resolver),
            inbound=AnthropicInbound(name),
            decoder_factory=lambda: AnthropicStreamDecoder(name),
        )
    if config.wire_format is WireFormat.GOOGLE:
        return AdapterSet(
            wire_format=config.wire_format.value,
            outbound=GoogleOutbound(name, resolver),
            inbound=GoogleInbound(name),
            decoder_factory=lambda: GoogleStreamDecoder(name),
        )
    if config.wire_format is WireFormat.COHERE:
        return AdapterSet(
            wire_format=config.wire_format.value,
            outbound=CohereOutbound(name, resolver),
            inbound=CohereInbound(name),
            decoder_factory=lambda: CohereStreamDecoder(name),
        )
    raise ConfigurationError(f"未知的线协议: {config.wire_format}", name)


def build_transport(
    config: ProviderConfig,
    api_key: Optional[str] = None,
    api_base: Optional[str] = None,
    extra_headers: Optional[Dict[str, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> Transport:
    """按线协议创建默认传输"""
    headers = {**config.extra_headers, **(extra_headers or {})} or None
    base = api_base or config.api_base
    transport_cls = {
        WireFormat.OPENAI: OpenAITransport,
        WireFormat.ANTHROPIC: AnthropicTransport,
        WireFormat.GOOGLE: GoogleTransport,
        WireFormat.COHERE: CohereTransport,
    }[config.wire_format]
    return transport_cls(
        api_key=api_key,
        api_base=base,
        provider=config.name,
        default_headers=headers,
        timeout=timeout,
    )


class ProviderRegistry(Mapping):
    """不可变的 Provider 注册表

    名称不区分大小写；构建后不再修改，可在多个客户端间共享。
    """

    def __init__(self, configs: Union[Mapping, Iterable[ProviderConfig], None] = None):
        if configs is None:
            configs = PROVIDER_CONFIGS
        if isinstance(configs, Mapping):
            configs = configs.values()
        self._configs = MappingProxyType({config.name.lower(): config for config in configs})

    def __getitem__(self, name: str) -> ProviderConfig:
        return self._configs[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._configs)

    def __len__(self) -> int:
        return len(self._configs)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._configs

    def get_config(self, name: str) -> ProviderConfig:
        """获取 Provider 配置，未知名称抛出 ConfigurationError"""
        if not isinstance(name, str) or name.lower() not in self._configs:
            valid = ", ".join(sorted(self._configs))
            raise ConfigurationError(f"未知的 provider: {name}，可用: {valid}", name if isinstance(name, str) else None)
        return self._configs[name.lower()]

    def adapters(self, name: str, resolver: Optional[ImageResolver] = None) -> AdapterSet:
        """为指定 Provider 创建适配器组合"""
        return build_adapters(self.get_config(name), resolver)

    def with_provider(self, config: ProviderConfig) -> "ProviderRegistry":
        """返回加入（或替换）一个 Provider 后的新注册表"""
        merged = dict(self._configs)
        merged[config.name.lower()] = config
        return ProviderRegistry(merged)

    def capability_matrix(self) -> Dict[str, Dict[str, bool]]:
        """获取能力矩阵"""
        return {
            name: {cap.value: config.has_capability(cap) for cap in ProviderCapability}
            for name, config in self._configs.items()
        }


default_registry = ProviderRegistry(PROVIDER_CONFIGS)


def get_provider_config(name: str) -> Optional[ProviderConfig]:
    """获取 Provider 配置"""
    return default_registry.get(name.lower())


def list_providers() -> List[str]:
    """列出所有支持的 Provider"""
    return list(default_registry)


def get_capability_matrix() -> Dict[str, Dict[str, bool]]:
    """获取能力矩阵"""
    return default_registry.capability_matrix()
