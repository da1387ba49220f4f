"""工具调用解析

把模型返回的工具调用解析为结构化参数。每个调用单独给出结果：
某个调用解析失败只影响它自己，不影响同一轮的其他调用。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .errors import ToolError
from .llm.base import parse_arguments
from .schema import ChatMessage, ToolCall, ToolDefinition

logger = logging.getLogger(__name__)


@dataclass
class ToolCallOutcome:
    """单个工具调用的解析结果"""

    tool_call: ToolCall
    arguments: Optional[Dict[str, Any]] = None
    error: Optional[ToolError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def name(self) -> str:
        return self.tool_call.function.name


def resolve_tool_calls(
    tool_calls: Sequence[ToolCall],
    tools: Optional[Iterable[ToolDefinition]] = None,
    provider: Optional[str] = None,
) -> List[ToolCallOutcome]:
    """解析一组工具调用

    Args:
        tool_calls: 模型返回的工具调用
        tools: 已声明的工具；给出时，名称不在其中的调用视为失败
        provider: 用于错误信息

    Returns:
        与 tool_calls 一一对应的解析结果
    """
    known = {tool.name for tool in tools} if tools is not None else None
    outcomes = []

    for call in tool_calls:
        if known is not None and call.function.name not in known:
            error = ToolError(
                f"未知的工具: {call.function.name}",
                provider,
                tool_call_id=call.id,
                tool_name=call.function.name,
            )
            outcomes.append(ToolCallOutcome(tool_call=call, error=error))
            continue

        try:
            arguments = parse_arguments(call, provider)
        except ToolError as e:
            logger.debug(f"工具调用参数解析失败: {call.function.name} ({call.id})")
            outcomes.append(ToolCallOutcome(tool_call=call, error=e))
            continue

        outcomes.append(ToolCallOutcome(tool_call=call, arguments=arguments))

    return outcomes


def tool_result_message(tool_call: ToolCall, result: Any) -> ChatMessage:
    """把工具执行结果包装为 tool 消息，非字符串结果序列化为 JSON"""
    content = result if isinstance(result, str) else json.dumps(result, ensure_ascii=False)
    return ChatMessage(
        role="tool",
        content=content,
        tool_call_id=tool_call.id,
        name=tool_call.function.name,
    )
