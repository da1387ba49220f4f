"""工具调用解析测试"""

import json

from llmplug.errors import ToolError
from llmplug.schema import FunctionCall, ToolCall, ToolDefinition
from llmplug.tools import resolve_tool_calls, tool_result_message


def call(call_id, name, arguments):
    return ToolCall(id=call_id, function=FunctionCall(name=name, arguments=arguments))


class TestResolveToolCalls:
    """工具调用参数解析测试"""

    def test_parse_arguments(self):
        outcomes = resolve_tool_calls([call("c1", "add", '{"a": 2, "b": 3}')])
        assert outcomes[0].ok
        assert outcomes[0].name == "add"
        assert outcomes[0].arguments == {"a": 2, "b": 3}

    def test_empty_arguments(self):
        assert resolve_tool_calls([call("c1", "now", "")])[0].arguments == {}

    def test_failures_are_isolated(self):
        """测试单个调用解析失败不影响其他调用"""
        outcomes = resolve_tool_calls([
            call("c1", "add", '{"a": 1}'),
            call("c2", "add", "{not json"),
            call("c3", "add", '{"a": 3}'),
        ])

        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, ToolError)
        assert outcomes[1].error.tool_call_id == "c2"
        assert outcomes[2].arguments == {"a": 3}

    def test_unknown_tool_name(self):
        tools = [ToolDefinition(name="add")]
        outcomes = resolve_tool_calls([call("c1", "delete_all", "{}")], tools=tools, provider="openai")

        assert not outcomes[0].ok
        assert outcomes[0].error.tool_name == "delete_all"
        assert outcomes[0].error.provider == "openai"


class TestToolResultMessage:
    """工具结果消息测试"""

    def test_string_result(self):
        msg = tool_result_message(call("c1", "add", "{}"), "5")
        assert msg.role == "tool"
        assert msg.tool_call_id == "c1"
        assert msg.name == "add"
        assert msg.content == "5"

    def test_structured_result(self):
        msg = tool_result_message(call("c1", "weather", "{}"), {"city": "北京", "temp": 21})
        assert json.loads(msg.content) == {"city": "北京", "temp": 21}
        assert "北京" in msg.content
