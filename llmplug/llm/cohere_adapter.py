"""Cohere v1 chat 适配器

Cohere 把当前 user 消息放在 message 字段，之前的轮次放在 chat_history，
系统指令放在 preamble。工具调用没有 ID，工具结果需要原调用的名称和参数。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..errors import EmptyResponseError, ValidationError
from ..schema import (
    ChatMessage,
    GenerationOptions,
    GenerationResult,
    ImagePart,
    TokenUsage,
    ToolDefinition,
)
from .base import (
    InboundAdapter,
    OutboundAdapter,
    StreamDecoder,
    drop_none,
    dump_arguments,
    ensure_sendable,
    find_tool_call,
    lower,
    make_tool_call,
    map_role,
    parse_arguments,
    split_system,
    tool_output,
    validate_tool_results,
)
from .streaming import ByIndex, StreamDelta, ToolCallDelta

logger = logging.getLogger(__name__)

ROLE_MAP = {"user": "USER", "assistant": "CHATBOT", "tool": "TOOL"}

# JSON Schema 类型 -> Cohere parameter_definitions 类型
PARAMETER_TYPES = {
    "string": "str",
    "integer": "int",
    "number": "float",
    "boolean": "bool",
    "array": "list",
    "object": "dict",
}


def parse_usage(meta: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not meta:
        return None
    tokens = meta.get("tokens") or meta.get("billed_units")
    if not tokens:
        return None
    return TokenUsage(
        prompt_tokens=tokens.get("input_tokens"),
        completion_tokens=tokens.get("output_tokens"),
    )


def convert_tool(tool: ToolDefinition) -> Dict[str, Any]:
    """把 JSON Schema 参数展开为 parameter_definitions"""
    properties = tool.parameters.get("properties") or {}
    required = set(tool.parameters.get("required") or [])

    definitions = {}
    for name, schema in properties.items():
        json_type = schema.get("type", "string")
        definitions[name] = drop_none({
            "description": schema.get("description"),
            "type": PARAMETER_TYPES.get(json_type, json_type),
            "required": name in required,
        })

    return drop_none({
        "name": tool.name,
        "description": tool.description,
        "parameter_definitions": definitions or None,
    })


class CohereOutbound(OutboundAdapter):
    """转换为 Cohere chat 请求"""

    def _tool_result(self, msg: ChatMessage, messages: List[ChatMessage], index: int) -> Dict[str, Any]:
        call = find_tool_call(messages, msg.tool_call_id, before=index)
        output = tool_output(msg)
        if not isinstance(output, dict):
            output = {"result": output}
        return {
            "call": {
                "name": call.function.name,
                "parameters": parse_arguments(call, self.provider),
            },
            "outputs": [output],
        }

    def _history_entry(self, msg: ChatMessage, messages: List[ChatMessage], index: int) -> Dict[str, Any]:
        role = map_role(msg.role, ROLE_MAP)
        if msg.role == "tool":
            return {"role": role, "tool_results": [self._tool_result(msg, messages, index)]}

        entry: Dict[str, Any] = {"role": role, "message": msg.text}
        if msg.tool_calls:
            entry["tool_calls"] = [
                {"name": tc.function.name, "parameters": parse_arguments(tc, self.provider)}
                for tc in msg.tool_calls
            ]
        return entry

    def _split_turns(
        self, messages: List[ChatMessage]
    ) -> Tuple[str, List[ChatMessage], List[ChatMessage]]:
        """拆分为 (当前 message, 历史, 末尾的工具结果)"""
        trailing = 0
        while trailing < len(messages) and messages[-1 - trailing].role == "tool":
            trailing += 1

        if trailing:
            return "", messages[:-trailing], messages[-trailing:]

        if messages and messages[-1].role == "user":
            return messages[-1].text, messages[:-1], []

        raise ValidationError(
            "Cohere 对话必须以 user 消息或工具结果结尾", self.provider
        )

    async def build_request(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        model: str,
        stream: bool = False,
    ) -> Dict[str, Any]:
        validate_tool_results(messages, self.provider)

        if any(isinstance(p, ImagePart) for m in messages for p in m.parts):
            raise self.unsupported("image content")
        if options.tool_choice not in (None, "auto"):
            raise self.unsupported("tool_choice", str(options.tool_choice))

        system, rest = split_system(messages)
        ensure_sendable(system, rest, self.provider)

        if rest:
            message, history, trailing = self._split_turns(rest)
        else:
            # 只有 preamble
            message, history, trailing = "", [], []

        params = drop_none({
            "model": model,
            "message": message,
            "preamble": system,
            "chat_history": [
                self._history_entry(msg, rest, index) for index, msg in enumerate(history)
            ] or None,
            "tool_results": [
                self._tool_result(msg, rest, len(history) + offset)
                for offset, msg in enumerate(trailing)
            ] or None,
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "p": options.top_p,
            "seed": options.seed,
            "stop_sequences": options.stop_sequences,
            "response_format": {"type": options.response_format} if options.response_format else None,
            "tools": [convert_tool(tool) for tool in options.tools] if options.tools else None,
        })

        if stream:
            params["stream"] = True

        params.update(options.extra_params)
        logger.debug(
            f"[{self.provider}] 构建请求: model={model}, history={len(history)}, tool_results={len(trailing)}"
        )
        return params


class CohereInbound(InboundAdapter):
    """解析 Cohere chat 响应"""

    def parse_response(self, payload: Dict[str, Any]) -> GenerationResult:
        if "text" not in payload and not payload.get("tool_calls"):
            raise EmptyResponseError(f"[{self.provider}] 响应中没有 text 或 tool_calls", self.provider)

        tool_calls = [
            make_tool_call(tc.get("id"), tc.get("name", ""), tc.get("parameters"))
            for tc in payload.get("tool_calls") or []
        ]
        usage = parse_usage(payload.get("meta"))

        return GenerationResult(
            text=payload.get("text"),
            tool_calls=tool_calls,
            usage=usage.complete() if usage else TokenUsage(),
            finish_reason=lower(payload.get("finish_reason")),
            raw_response=payload,
        )


class CohereStreamDecoder(StreamDecoder):
    """解码 Cohere NDJSON 流事件

    - tool-calls-chunk 按索引追加参数片段
    - tool-calls-generation 给出完整的工具调用，覆盖此前的片段
    - stream-end 是显式的结束事件，携带 finish_reason 与用量
    """

    def decode(self, event: Dict[str, Any]) -> Optional[StreamDelta]:
        event_type = event.get("event_type")

        if event_type == "text-generation":
            return StreamDelta(text=event.get("text"))

        if event_type == "tool-calls-chunk":
            call = event.get("tool_call_delta")
            if not call:
                # 工具调用前的说明文字
                return StreamDelta(text=event.get("text"))
            return StreamDelta(tool_calls=[ToolCallDelta(
                key=ByIndex(call.get("index", 0)),
                name=call.get("name"),
                arguments=call.get("parameters"),
            )])

        if event_type == "tool-calls-generation":
            return StreamDelta(tool_calls=[
                ToolCallDelta(
                    key=ByIndex(index),
                    name=call.get("name"),
                    arguments=dump_arguments(call.get("parameters")),
                    complete=True,
                )
                for index, call in enumerate(event.get("tool_calls") or [])
            ])

        if event_type == "stream-end":
            response = event.get("response") or {}
            return StreamDelta(
                usage=parse_usage(response.get("meta")),
                finish_reason=lower(event.get("finish_reason")),
                terminal=True,
            )

        # stream-start / search-results / citation-generation 等
        return None
