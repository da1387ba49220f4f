"""Anthropic Messages API 适配器"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from ..errors import EmptyResponseError, RequestError, StreamTransportError
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
    parse_arguments,
    split_system,
    validate_tool_results,
)
from .streaming import ByIndex, StreamDelta, ToolCallDelta

logger = logging.getLogger(__name__)

# Anthropic 要求必须提供 max_tokens
DEFAULT_MAX_TOKENS = 1024


def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    return TokenUsage(
        prompt_tokens=raw.get("input_tokens"),
        completion_tokens=raw.get("output_tokens"),
    )


class AnthropicOutbound(OutboundAdapter):
    """转换为 Anthropic 消息格式"""

    async def _convert_content(self, msg: ChatMessage) -> Union[str, List[Dict[str, Any]]]:
        if msg.content is None or isinstance(msg.content, str):
            return msg.content or ""

        blocks: List[Dict[str, Any]] = []
        for part in msg.content:
            if isinstance(part, TextPart):
                blocks.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                # Anthropic 只接受内联 base64 图片
                media_type, data = await self.resolver.resolve(part.url)
                blocks.append({
                    "type": "image",
                    "source": {"type": "base64", "media_type": media_type, "data": data},
                })
        return blocks

    async def _convert_messages(self, messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        api_messages: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == "user":
                api_messages.append({"role": "user", "content": await self._convert_content(msg)})

            elif msg.role == "assistant":
                if not msg.text and not msg.tool_calls:
                    # 厂商拒绝空的 assistant 轮次
                    logger.debug(f"[{self.provider}] 跳过空的 assistant 消息")
                    continue
                if msg.tool_calls:
                    content_blocks: List[Dict[str, Any]] = []
                    if msg.text:
                        content_blocks.append({"type": "text", "text": msg.text})
                    for tc in msg.tool_calls:
                        content_blocks.append({
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.function.name,
                            "input": parse_arguments(tc, self.provider),
                        })
                    api_messages.append({"role": "assistant", "content": content_blocks})
                else:
                    api_messages.append({"role": "assistant", "content": msg.text})

            elif msg.role == "tool":
                # tool 结果用 user role + tool_result，连续的结果合并到同一轮
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.text,
                }
                last = api_messages[-1] if api_messages else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(b.get("type") == "tool_result" for b in last["content"])
                ):
                    last["content"].append(block)
                else:
                    api_messages.append({"role": "user", "content": [block]})

        return api_messages

    def _convert_tool_choice(self, choice: Any) -> Optional[Dict[str, Any]]:
        if choice is None:
            return None
        if isinstance(choice, NamedToolChoice):
            return {"type": "tool", "name": choice.name}
        return {"type": choice}

    async def build_request(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        model: str,
        stream: bool = False,
    ) -> Dict[str, Any]:
        validate_tool_results(messages, self.provider)

        if options.seed is not None:
            raise self.unsupported("seed")
        if options.json_mode:
            raise self.unsupported("JSON mode", "请在提示词中要求 JSON 输出")

        system, rest = split_system(messages)
        ensure_sendable(system, rest, self.provider)

        params = drop_none({
            "model": model,
            "system": system,
            "messages": await self._convert_messages(rest),
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": options.temperature,
            "top_p": options.top_p,
            "stop_sequences": options.stop_sequences,
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in options.tools
            ] if options.tools else None,
            "tool_choice": self._convert_tool_choice(options.tool_choice),
        })

        if stream:
            params["stream"] = True

        params.update(options.extra_params)
        logger.debug(f"[{self.provider}] 构建请求: model={model}, messages={len(params['messages'])}")
        return params


class AnthropicInbound(InboundAdapter):
    """解析 Anthropic 响应"""

    def parse_response(self, payload: Dict[str, Any]) -> GenerationResult:
        if payload.get("type") == "error":
            error = payload.get("error") or {}
            raise RequestError(f"[{self.provider}] {error.get('message', 'API 错误')}", self.provider)

        content = payload.get("content")
        if content is None:
            raise EmptyResponseError(f"[{self.provider}] 响应中没有 content", self.provider)

        text_content = ""
        tool_calls = []
        for block in content:
            if block.get("type") == "text":
                text_content += block.get("text", "")
            elif block.get("type") == "tool_use":
                tool_calls.append(make_tool_call(block.get("id"), block.get("name", ""), block.get("input")))

        text_content = text_content.strip()
        usage = parse_usage(payload.get("usage"))

        return GenerationResult(
            text=text_content or None,
            tool_calls=tool_calls,
            usage=usage.complete() if usage else TokenUsage(),
            finish_reason=lower(payload.get("stop_reason")),
            raw_response=payload,
        )


class AnthropicStreamDecoder(StreamDecoder):
    """解码 Anthropic 流事件

    - message_start 提前给出输入 token 数
    - content_block_start 宣布工具调用的 id 与名称
    - input_json_delta 按内容块索引追加参数片段
    - message_delta 给出 stop_reason 与输出 token 数
    - message_stop 是显式的结束事件
    """

    def decode(self, event: Dict[str, Any]) -> Optional[StreamDelta]:
        event_type = event.get("type")

        if event_type == "message_start":
            message = event.get("message") or {}
            return StreamDelta(usage=parse_usage(message.get("usage")))

        if event_type == "content_block_start":
            block = event.get("content_block") or {}
            index = event.get("index", 0)
            if block.get("type") == "tool_use":
                return StreamDelta(tool_calls=[ToolCallDelta(
                    key=ByIndex(index),
                    id=block.get("id"),
                    name=block.get("name"),
                )])
            if block.get("type") == "text" and block.get("text"):
                return StreamDelta(text=block["text"])
            return None

        if event_type == "content_block_delta":
            delta = event.get("delta") or {}
            if delta.get("type") == "text_delta":
                return StreamDelta(text=delta.get("text"))
            if delta.get("type") == "input_json_delta":
                return StreamDelta(tool_calls=[ToolCallDelta(
                    key=ByIndex(event.get("index", 0)),
                    arguments=delta.get("partial_json"),
                )])
            return None

        if event_type == "message_delta":
            delta = event.get("delta") or {}
            return StreamDelta(
                usage=parse_usage(event.get("usage")),
                finish_reason=lower(delta.get("stop_reason")),
            )

        if event_type == "message_stop":
            return StreamDelta(terminal=True)

        if event_type == "error":
            error = event.get("error") or {}
            raise StreamTransportError(
                f"[{self.provider}] 流式错误事件: {error.get('type', 'error')}: {error.get('message', '')}",
                self.provider,
            )

        # ping / content_block_stop
        return None
