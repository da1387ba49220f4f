"""Google Gemini generateContent 适配器

Gemini 的角色只有 user / model，没有独立的系统消息通道：
系统指令拼接到第一条 user 消息前面。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..errors import EmptyResponseError, StreamTransportError, ToolError
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
    dump_arguments,
    ensure_sendable,
    find_tool_call,
    lower,
    make_tool_call,
    map_role,
    new_call_id,
    parse_arguments,
    split_system,
    tool_output,
    validate_tool_results,
)
from .streaming import ById, StreamDelta, ToolCallDelta

logger = logging.getLogger(__name__)

ROLE_MAP = {"user": "user", "assistant": "model", "tool": "user"}

TOOL_CHOICE_MODES = {"auto": "AUTO", "none": "NONE"}


def parse_usage(raw: Optional[Dict[str, Any]]) -> Optional[TokenUsage]:
    if not raw:
        return None
    return TokenUsage(
        prompt_tokens=raw.get("promptTokenCount"),
        completion_tokens=raw.get("candidatesTokenCount"),
        total_tokens=raw.get("totalTokenCount"),
    )


class GoogleOutbound(OutboundAdapter):
    """转换为 Gemini contents 格式"""

    async def _convert_parts(self, msg: ChatMessage) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = []
        for part in msg.parts:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                media_type, data = await self.resolver.resolve(part.url)
                parts.append({"inline_data": {"mime_type": media_type, "data": data}})
        return parts

    def _function_response(self, msg: ChatMessage, messages: List[ChatMessage], index: int) -> Dict[str, Any]:
        call = find_tool_call(messages, msg.tool_call_id, before=index)
        if call is None:
            raise ToolError(
                f"tool 消息引用了未知的工具调用: {msg.tool_call_id}",
                self.provider,
                tool_call_id=msg.tool_call_id,
                tool_name=msg.name,
            )
        output = tool_output(msg)
        if not isinstance(output, dict):
            output = {"content": output}
        return {"functionResponse": {"name": call.function.name, "response": output}}

    async def _convert_messages(
        self, system: Optional[str], messages: List[ChatMessage]
    ) -> List[Dict[str, Any]]:
        contents: List[Dict[str, Any]] = []
        pending_system = system

        for index, msg in enumerate(messages):
            role = map_role(msg.role, ROLE_MAP)

            if msg.role == "user":
                parts = await self._convert_parts(msg)
                if pending_system:
                    if parts and "text" in parts[0]:
                        parts[0] = {"text": f"{pending_system}\n{parts[0]['text']}"}
                    else:
                        parts.insert(0, {"text": pending_system})
                    pending_system = None
                contents.append({"role": role, "parts": parts})

            elif msg.role == "assistant":
                if not msg.text and not msg.tool_calls:
                    # 厂商拒绝空的 model 轮次
                    logger.debug(f"[{self.provider}] 跳过空的 assistant 消息")
                    continue
                parts = [{"text": msg.text}] if msg.text else []
                for tc in msg.tool_calls or []:
                    parts.append({
                        "functionCall": {
                            "name": tc.function.name,
                            "args": parse_arguments(tc, self.provider),
                        }
                    })
                contents.append({"role": role, "parts": parts})

            elif msg.role == "tool":
                part = self._function_response(msg, messages, index)
                last = contents[-1] if contents else None
                if last is not None and last["role"] == role and all(
                    "functionResponse" in p for p in last["parts"]
                ):
                    last["parts"].append(part)
                else:
                    contents.append({"role": role, "parts": [part]})

        if pending_system:
            # 没有 user 消息时，系统指令单独作为一轮 user 发送
            contents.insert(0, {"role": "user", "parts": [{"text": pending_system}]})

        return contents

    def _convert_tool_config(self, choice: Any) -> Optional[Dict[str, Any]]:
        if choice is None:
            return None
        if isinstance(choice, NamedToolChoice):
            config = {"mode": "ANY", "allowedFunctionNames": [choice.name]}
        else:
            config = {"mode": TOOL_CHOICE_MODES[choice]}
        return {"functionCallingConfig": config}

    async def build_request(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        model: str,
        stream: bool = False,
    ) -> Dict[str, Any]:
        validate_tool_results(messages, self.provider)

        system, rest = split_system(messages)
        ensure_sendable(system, rest, self.provider)

        response_mime_type = None
        if options.response_format is not None:
            response_mime_type = "application/json" if options.json_mode else "text/plain"

        generation_config = drop_none({
            "temperature": options.temperature,
            "maxOutputTokens": options.max_tokens,
            "stopSequences": options.stop_sequences,
            "topP": options.top_p,
            "seed": options.seed,
            "responseMimeType": response_mime_type,
        })

        params = drop_none({
            "model": model,
            "contents": await self._convert_messages(system, rest),
            "generationConfig": generation_config or None,
            "tools": [{
                "functionDeclarations": [
                    {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    }
                    for tool in options.tools
                ]
            }] if options.tools else None,
            "toolConfig": self._convert_tool_config(options.tool_choice),
        })

        params.update(options.extra_params)
        logger.debug(f"[{self.provider}] 构建请求: model={model}, contents={len(params['contents'])}")
        return params


class GoogleInbound(InboundAdapter):
    """解析 generateContent 响应"""

    def parse_response(self, payload: Dict[str, Any]) -> GenerationResult:
        candidates = payload.get("candidates") or []
        if not candidates:
            message = f"[{self.provider}] 响应中没有 candidates"
            block_reason = (payload.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                message = f"{message} (blockReason: {block_reason})"
            raise EmptyResponseError(message, self.provider)

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []

        text_content = ""
        tool_calls = []
        for part in parts:
            if "text" in part:
                text_content += part["text"]
            elif "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(make_tool_call(call.get("id"), call.get("name", ""), call.get("args")))

        text_content = text_content.strip()
        usage = parse_usage(payload.get("usageMetadata"))

        return GenerationResult(
            text=text_content or None,
            tool_calls=tool_calls,
            usage=usage.complete() if usage else TokenUsage(),
            finish_reason=lower(candidate.get("finishReason")),
            raw_response=payload,
        )


class GoogleStreamDecoder(StreamDecoder):
    """解码 streamGenerateContent 的 SSE 事件

    Gemini 一次性给出完整的 functionCall，按 ID 关联；没有 ID 时为每个调用合成一个。
    """

    def decode(self, event: Dict[str, Any]) -> Optional[StreamDelta]:
        if "error" in event:
            error = event.get("error") or {}
            raise StreamTransportError(
                f"[{self.provider}] 流式错误事件: {error.get('status', '')} {error.get('message', '')}".strip(),
                self.provider,
                status_code=error.get("code"),
            )

        delta = StreamDelta(usage=parse_usage(event.get("usageMetadata")))

        candidates = event.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            text_parts = []
            for part in (candidate.get("content") or {}).get("parts") or []:
                if "text" in part:
                    text_parts.append(part["text"])
                elif "functionCall" in part:
                    call = part["functionCall"]
                    call_id = call.get("id") or new_call_id()
                    delta.tool_calls.append(ToolCallDelta(
                        key=ById(call_id),
                        id=call_id,
                        name=call.get("name"),
                        arguments=dump_arguments(call.get("args")),
                        complete=True,
                    ))
            if text_parts:
                delta.text = "".join(text_parts)
            delta.finish_reason = lower(candidate.get("finishReason"))

        return delta
