"""LLM 客户端统一入口"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from ..errors import ConfigurationError
from ..multimodal import Fetcher, ImageResolver
from ..schema import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    to_messages,
    to_options,
)
from .providers import (
    ProviderCapability,
    ProviderConfig,
    ProviderRegistry,
    build_transport,
    default_registry,
)
from .streaming import ChatStream, StreamReconstructor
from .transport import DEFAULT_TIMEOUT, Transport

if TYPE_CHECKING:
    from ..config import Config

logger = logging.getLogger(__name__)

MessagesInput = Union[str, ChatMessage, Dict[str, Any], List[Union[ChatMessage, Dict[str, Any]]]]
OptionsInput = Union[GenerationOptions, Dict[str, Any], None]


class LLMClient:
    """统一 LLM 客户端

    用法:
        client = LLMClient("anthropic")
        result = await client.chat([{"role": "user", "content": "2+2?"}], max_tokens=16)
        print(result.text, result.usage.total_tokens)

    每次调用只尝试一次，不做自动重试。
    """

    def __init__(
        self,
        provider: str = "openai",
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        registry: Optional[ProviderRegistry] = None,
        transport: Optional[Transport] = None,
        fetcher: Optional[Fetcher] = None,
        extra_headers: Optional[Dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        default_options: OptionsInput = None,
    ):
        self.registry = registry if registry is not None else default_registry
        self.provider_config = self.registry.get_config(provider)
        self.provider = self.provider_config.name

        # 从参数或环境变量获取 API key
        if not api_key and self.provider_config.api_key_env:
            api_key = os.environ.get(self.provider_config.api_key_env) or None
        if not api_key and self.provider_config.requires_api_key:
            raise ConfigurationError(
                f"缺少 {self.provider_config.display_name} 的 API key："
                f"请传入 api_key 或设置环境变量 {self.provider_config.api_key_env}",
                self.provider,
            )

        self.api_key = api_key
        self.api_base = api_base or self.provider_config.api_base
        self.model = model or self.provider_config.default_model
        self.default_options = to_options(default_options) if default_options else None

        self.resolver = ImageResolver(fetcher)
        self.adapters = self.registry.adapters(self.provider, self.resolver)
        self.transport = transport or build_transport(
            self.provider_config,
            api_key=api_key,
            api_base=self.api_base,
            extra_headers=extra_headers,
            timeout=timeout,
        )

    def _options(self, options: OptionsInput, kwargs: Dict[str, Any]) -> GenerationOptions:
        """合并客户端默认选项与单次调用选项，单次调用优先"""
        opts = to_options(options, **kwargs)
        if self.default_options is None:
            return opts
        data = self.default_options.model_dump(exclude_unset=True)
        data.update(opts.model_dump(exclude_unset=True))
        return GenerationOptions.model_validate(data)

    def _resolve_model(self, options: GenerationOptions) -> str:
        model = options.model or self.model
        if not model:
            raise ConfigurationError(
                f"{self.provider_config.display_name} 没有默认模型，请在客户端或单次调用中指定 model",
                self.provider,
            )
        return model

    @property
    def capabilities(self) -> List[ProviderCapability]:
        """获取当前 provider 的能力列表"""
        return self.provider_config.capabilities

    def has_capability(self, cap: str) -> bool:
        """检查是否支持某能力"""
        try:
            return self.provider_config.has_capability(ProviderCapability(cap))
        except ValueError:
            return False

    async def generate(
        self,
        prompt_or_messages: MessagesInput,
        options: OptionsInput = None,
        **kwargs: Any,
    ) -> GenerationResult:
        """生成响应，接受裸 prompt 或消息列表"""
        return await self.chat(to_messages(prompt_or_messages), options, **kwargs)

    async def chat(
        self,
        messages: MessagesInput,
        options: OptionsInput = None,
        **kwargs: Any,
    ) -> GenerationResult:
        """多轮对话"""
        messages = to_messages(messages)
        opts = self._options(options, kwargs)
        model = self._resolve_model(opts)

        request = await self.adapters.outbound.build_request(messages, opts, model, stream=False)
        payload = await self.transport.invoke(request)
        result = self.adapters.inbound.parse_response(payload)

        logger.debug(
            f"[{self.provider}] 完成: finish_reason={result.finish_reason}, "
            f"tool_calls={len(result.tool_calls)}, total_tokens={result.usage.total_tokens}"
        )
        return result

    def generate_stream(
        self,
        prompt_or_messages: MessagesInput,
        options: OptionsInput = None,
        **kwargs: Any,
    ) -> ChatStream:
        """流式生成，接受裸 prompt 或消息列表"""
        return self.chat_stream(to_messages(prompt_or_messages), options, **kwargs)

    def chat_stream(
        self,
        messages: MessagesInput,
        options: OptionsInput = None,
        **kwargs: Any,
    ) -> ChatStream:
        """流式对话

        返回的 ChatStream 只能遍历一次；请求在第一次读取时才真正发出。
        """
        messages = to_messages(messages)
        opts = self._options(options, kwargs)
        model = self._resolve_model(opts)

        async def opener() -> StreamReconstructor:
            request = await self.adapters.outbound.build_request(messages, opts, model, stream=True)
            events = self.transport.invoke_streaming(request)
            return StreamReconstructor(self.adapters.decoder_factory(), events, self.provider)

        return ChatStream(opener)

    @classmethod
    def from_config(
        cls,
        config: "Config",
        registry: Optional[ProviderRegistry] = None,
        **kwargs: Any,
    ) -> "LLMClient":
        """从配置创建客户端"""
        return cls(
            provider=config.provider,
            api_key=config.api_key,
            api_base=config.api_base,
            model=config.model,
            registry=registry,
            extra_headers=config.extra_headers or None,
            timeout=config.timeout,
            default_options=config.options,
            **kwargs,
        )

    @staticmethod
    def list_providers() -> List[str]:
        """列出所有支持的 provider"""
        return list(default_registry)

    @staticmethod
    def get_provider_info(provider: str) -> Optional[ProviderConfig]:
        """获取 provider 信息"""
        return default_registry.get(provider.lower())
