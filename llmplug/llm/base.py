"""适配器基类与共享的纯函数"""

from __future__ import annotations

import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..errors import ToolError, UnsupportedFeatureError, ValidationError
from ..multimodal import ImageResolver
from ..schema import ChatMessage, GenerationOptions, GenerationResult, ToolCall

if TYPE_CHECKING:
    from .streaming import StreamDelta


class OutboundAdapter(ABC):
    """规范消息 -> 厂商请求"""

    def __init__(self, provider: str, resolver: Optional[ImageResolver] = None):
        self.provider = provider
        self.resolver = resolver or ImageResolver()

    @abstractmethod
    async def build_request(
        self,
        messages: List[ChatMessage],
        options: GenerationOptions,
        model: str,
        stream: bool = False,
    ) -> Dict[str, Any]:
        """构建厂商请求"""
        pass

    def unsupported(self, feature: str, detail: str = "") -> UnsupportedFeatureError:
        return UnsupportedFeatureError(feature, provider=self.provider, detail=detail)


class InboundAdapter(ABC):
    """厂商响应 -> GenerationResult"""

    def __init__(self, provider: str):
        self.provider = provider

    @abstractmethod
    def parse_response(self, payload: Dict[str, Any]) -> GenerationResult:
        """解析非流式响应"""
        pass


class StreamDecoder(ABC):
    """厂商流事件 -> 规范增量

    每次流式调用创建一个新实例。
    """

    def __init__(self, provider: str):
        self.provider = provider

    @abstractmethod
    def decode(self, event: Dict[str, Any]) -> Optional["StreamDelta"]:
        """解码单个事件，无关事件返回 None"""
        pass


@dataclass(frozen=True)
class AdapterSet:
    """某种线协议的适配器组合"""

    wire_format: str
    outbound: OutboundAdapter
    inbound: InboundAdapter
    decoder_factory: Callable[[], StreamDecoder]


# ---------------------------------------------------------------------------
# 共享工具函数
# ---------------------------------------------------------------------------


def new_call_id() -> str:
    """为不提供 ID 的厂商合成工具调用 ID"""
    return f"call_{uuid.uuid4().hex[:24]}"


def drop_none(params: Dict[str, Any]) -> Dict[str, Any]:
    """去掉值为 None 的键，未设置的选项绝不以 null 发送"""
    return {k: v for k, v in params.items() if v is not None}


def lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if isinstance(value, str) else None


def map_role(role: str, table: Dict[str, str]) -> str:
    """按角色映射表转换角色名"""
    return table.get(role, role)


def split_system(messages: Sequence[ChatMessage]) -> Tuple[Optional[str], List[ChatMessage]]:
    """抽取系统指令

    多条 system 消息合并为一条逻辑指令。
    """
    system_parts = [m.text for m in messages if m.role == "system" and m.text]
    rest = [m for m in messages if m.role != "system"]
    return ("\n".join(system_parts) if system_parts else None), rest


def ensure_sendable(system: Optional[str], messages: Sequence[ChatMessage], provider: str) -> None:
    """既没有消息内容也没有系统指令时拒绝请求"""
    if system:
        return
    if not any(m.has_content for m in messages):
        raise ValidationError("没有可发送的消息内容或系统指令", provider)


def find_tool_call(
    messages: Sequence[ChatMessage],
    tool_call_id: Optional[str],
    before: Optional[int] = None,
) -> Optional[ToolCall]:
    """在此前的 assistant 消息中查找对应 ID 的工具调用"""
    scope = messages if before is None else messages[:before]
    for msg in reversed(scope):
        if msg.role != "assistant" or not msg.tool_calls:
            continue
        for tc in msg.tool_calls:
            if tc.id == tool_call_id:
                return tc
    return None


def validate_tool_results(messages: Sequence[ChatMessage], provider: str) -> None:
    """tool 消息的 tool_call_id 必须对应此前某个 assistant 工具调用"""
    for index, msg in enumerate(messages):
        if msg.role != "tool":
            continue
        if find_tool_call(messages, msg.tool_call_id, before=index) is None:
            raise ToolError(
                f"tool 消息引用了未知的工具调用: {msg.tool_call_id}",
                provider,
                tool_call_id=msg.tool_call_id,
                tool_name=msg.name,
            )


def parse_arguments(tool_call: ToolCall, provider: Optional[str] = None) -> Dict[str, Any]:
    """把 JSON 字符串参数解析为字典（需要结构化参数的厂商使用）"""
    raw = tool_call.function.arguments
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolError(
            f"工具调用参数不是合法 JSON: {tool_call.function.name}",
            provider,
            tool_call_id=tool_call.id,
            tool_name=tool_call.function.name,
        ) from e
    if not isinstance(value, dict):
        raise ToolError(
            f"工具调用参数必须是 JSON 对象: {tool_call.function.name}",
            provider,
            tool_call_id=tool_call.id,
            tool_name=tool_call.function.name,
        )
    return value


def dump_arguments(value: Any) -> str:
    """参数统一为 JSON 字符串：已是字符串则原样返回"""
    if isinstance(value, str):
        return value
    if value is None:
        return "{}"
    return json.dumps(value, ensure_ascii=False)


def tool_output(message: ChatMessage) -> Any:
    """tool 消息内容：能解析为 JSON 对象时返回对象，否则返回文本"""
    text = message.text
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return text
    return value if isinstance(value, dict) else text


def make_tool_call(call_id: Optional[str], name: str, arguments: Any) -> ToolCall:
    return ToolCall(
        id=call_id or new_call_id(),
        function={"name": name, "arguments": dump_arguments(arguments)},
    )
