"""OpenAI 兼容线协议适配器

支持:
- OpenAI GPT 系列
- OpenRouter / HuggingFace Router
- Mistral AI
- Ollama / llama.cpp / oobabooga 等本地 OpenAI 兼容服务

各家的差异用 OpenAIDialect 描述，而不是子类。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..errors import EmptyResponseError
from ..schema import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    ImagePart,
    NamedToolChoice,
    TextPart,
    TokenUsage,
)
from .base import (
    InboundAdapter,
    OutboundAdapter,
    StreamDecoder,
    drop_none,
    ensure_sendable,
    lower,
    make_tool_call,
    split_system,
    validate_tool_results,
)
from .streaming import ByIndex, StreamDelta, ToolCallDelta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenAIDialect:
    """OpenAI 兼容服务的能力差异"""

    vision: bool = True
    tools: bool = True
    named_tool_choice: bool = True
    json_mode: bool = True
    seed: bool = True
    stream_usage: bool = True  # 支持 stream_options.include_usage


DEFAULT_DIALECT = OpenAIDialect()
MISTRAL_DIALECT = OpenAIDialect(vision=False, named_tool_choice=False)
LOCAL_DIALECT = OpenAIDialect(stream_usage=False)


def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    return TokenUsage(
        prompt_tokens=raw.get("prompt_tokens"),
        completion_tokens=raw.get("completion_tokens"),
        total_tokens=raw.get("total_tokens"),
    )


class OpenAIOutbound(OutboundAdapter):
    """转换为 Chat Completions 请求"""

    def __init__(self, provider: str, resolver=None, dialect: OpenAIDialect = DEFAULT_DIALECT):
        super().__init__(provider, resolver)
        self.dialect = dialect

    def _convert_content(self, msg: ChatMessage) -> Union[str, List[Dict[str, Any]]]:
        if msg.content is None or isinstance(msg.content, str):
            return msg.content or ""

        parts: List[Dict[str, Any]] = []
        for part in msg.content:
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                if not self.dialect.vision:
                    raise self.unsupported("image content")
                # 远程 URL 直接引用，内联数据以 data: URL 传递
                image_url = drop_none({"url": part.url, "detail": part.detail})
                parts.append({"type": "image_url", "image_url": image_url})
        return parts

    def _convert_messages(self, messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        system, rest = split_system(messages)
        ensure_sendable(system, rest, self.provider)

        api_messages: List[Dict[str, Any]] = []
        if system:
            api_messages.append({"role": "system", "content": system})

        for msg in rest:
            if msg.role == "user":
                api_messages.append({"role": "user", "content": self._convert_content(msg)})

            elif msg.role == "assistant":
                assistant_msg: Dict[str, Any] = {"role": "assistant", "content": msg.text or None}
                if msg.tool_calls:
                    assistant_msg["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.function.name,
                                "arguments": tc.function.arguments,
                            },
                        }
                        for tc in msg.tool_calls
                    ]
                api_messages.append(assistant_msg)

            elif msg.role == "tool":
                api_messages.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.text,
                })

        return api_messages

    def _convert_tool_choice(self, choice: Any) -> Any:
        if isinstance(choice, NamedToolChoice):
            if not self.dialect.named_tool_choice:
                raise self.unsupported("named tool_choice", choice.name)
            return {"type": "function", "function": {"name": choice.name}}
        return choice

    async def build_request(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        model: str,
        stream: bool = False,
    ) -> Dict[str, Any]:
        validate_tool_results(messages, self.provider)

        if options.tools and not self.dialect.tools:
            raise self.unsupported("tools")
        if options.seed is not None and not self.dialect.seed:
            raise self.unsupported("seed")
        if options.json_mode and not self.dialect.json_mode:
            raise self.unsupported("JSON mode")

        params = drop_none({
            "model": model,
            "messages": self._convert_messages(messages),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stop": options.stop_sequences,
            "top_p": options.top_p,
            "seed": options.seed,
            "response_format": {"type": options.response_format} if options.response_format else None,
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in options.tools
            ] if options.tools else None,
            "tool_choice": self._convert_tool_choice(options.tool_choice),
        })

        if stream:
            params["stream"] = True
            if self.dialect.stream_usage:
                params["stream_options"] = {"include_usage": True}

        params.update(options.extra_params)
        logger.debug(f"[{self.provider}] 构建请求: model={model}, messages={len(params['messages'])}")
        return params


class OpenAIInbound(InboundAdapter):
    """解析 Chat Completions 响应"""

    def parse_response(self, payload: Dict[str, Any]) -> GenerationResult:
        choices = payload.get("choices") or []
        if not choices:
            raise EmptyResponseError(f"[{self.provider}] 响应中没有 choices", self.provider)

        choice = choices[0]
        message = choice.get("message") or {}

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc.get("function") or {}
            tool_calls.append(
                make_tool_call(tc.get("id"), function.get("name", ""), function.get("arguments"))
            )

        usage = parse_usage(payload.get("usage"))

        return GenerationResult(
            text=message.get("content"),
            tool_calls=tool_calls,
            usage=usage.complete() if usage else TokenUsage(),
            finish_reason=lower(choice.get("finish_reason")),
            raw_response=payload,
        )


class OpenAIStreamDecoder(StreamDecoder):
    """解码 chat.completion.chunk 事件

    工具调用以位置索引关联，ID 只在首个片段中出现。
    """

    def decode(self, event: Dict[str, Any]) -> Optional[StreamDelta]:
        delta = StreamDelta(usage=parse_usage(event.get("usage")))

        choices = event.get("choices") or []
        if choices:
            choice = choices[0]
            raw_delta = choice.get("delta") or {}

            if raw_delta.get("content"):
                delta.text = raw_delta["content"]

            for tc in raw_delta.get("tool_calls") or []:
                function = tc.get("function") or {}
                delta.tool_calls.append(ToolCallDelta(
                    key=ByIndex(tc.get("index", 0)),
                    id=tc.get("id"),
                    name=function.get("name"),
                    arguments=function.get("arguments"),
                ))

            delta.finish_reason = lower(choice.get("finish_reason"))

        return delta
