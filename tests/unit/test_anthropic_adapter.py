"""Anthropic 适配器测试"""

import base64

import pytest

from llmplug.errors import (
    EmptyResponseError,
    RetrievalError,
    StreamTransportError,
    ToolError,
    UnsupportedFeatureError,
)
from llmplug.llm.anthropic_adapter import (
    DEFAULT_MAX_TOKENS,
    AnthropicInbound,
    AnthropicOutbound,
    AnthropicStreamDecoder,
)
from llmplug.llm.streaming import ByIndex
from llmplug.multimodal import ImageResolver
from llmplug.schema import ChatMessage, GenerationOptions, NamedToolChoice, ToolDefinition


class TestAnthropicOutbound:
    """请求构建测试"""

    @pytest.mark.asyncio
    async def test_text_only_request(self):
        request = await AnthropicOutbound("anthropic").build_request(
            [ChatMessage(role="user", content="Hello")], GenerationOptions(), "claude"
        )
        assert request == {
            "model": "claude",
            "messages": [{"role": "user", "content": "Hello"}],
            "max_tokens": DEFAULT_MAX_TOKENS,
        }

    @pytest.mark.asyncio
    async def test_system_top_level(self):
        """测试系统指令放到顶层 system 字段"""
        request = await AnthropicOutbound("anthropic").build_request(
            [
                ChatMessage(role="system", content="Be brief."),
                ChatMessage(role="user", content="Hi"),
            ],
            GenerationOptions(max_tokens=50, stop_sequences=["\n\n"], top_p=0.9),
            "claude",
        )
        assert request["system"] == "Be brief."
        assert all(m["role"] != "system" for m in request["messages"])
        assert request["max_tokens"] == 50
        assert request["stop_sequences"] == ["\n\n"]
        assert request["top_p"] == 0.9

    @pytest.mark.asyncio
    async def test_system_only(self):
        """测试只有系统指令时也可以发送"""
        request = await AnthropicOutbound("anthropic").build_request(
            [ChatMessage(role="system", content="Say hi.")], GenerationOptions(), "claude"
        )
        assert request["system"] == "Say hi."
        assert request["messages"] == []

    @pytest.mark.asyncio
    async def test_empty_assistant_skipped(self):
        """测试空的 assistant 消息不会发送"""
        request = await AnthropicOutbound("anthropic").build_request(
            [
                ChatMessage(role="user", content="hi"),
                ChatMessage(role="assistant", content=""),
                ChatMessage(role="user", content="again"),
            ],
            GenerationOptions(),
            "claude",
        )
        assert [m["role"] for m in request["messages"]] == ["user", "user"]
        assert all(m["content"] for m in request["messages"])

    @pytest.mark.asyncio
    async def test_tool_use_blocks(self):
        """测试工具调用与结果转换为内容块"""
        messages = [
            ChatMessage(role="user", content="Add 2 and 3, and 4 and 5"),
            ChatMessage(
                role="assistant",
                content="Let me compute.",
                tool_calls=[
                    {"id": "toolu_1", "function": {"name": "add", "arguments": '{"a":2,"b":3}'}},
                    {"id": "toolu_2", "function": {"name": "add", "arguments": '{"a":4,"b":5}'}},
                ],
            ),
            ChatMessage(role="tool", content="5", tool_call_id="toolu_1"),
            ChatMessage(role="tool", content="9", tool_call_id="toolu_2"),
        ]
        request = await AnthropicOutbound("anthropic").build_request(messages, GenerationOptions(), "claude")

        assistant = request["messages"][1]
        assert assistant["content"][0] == {"type": "text", "text": "Let me compute."}
        assert assistant["content"][1] == {
            "type": "tool_use", "id": "toolu_1", "name": "add", "input": {"a": 2, "b": 3},
        }

        # 连续的工具结果合并到同一个 user 轮次
        assert len(request["messages"]) == 3
        results = request["messages"][2]
        assert results["role"] == "user"
        assert [b["tool_use_id"] for b in results["content"]] == ["toolu_1", "toolu_2"]
        assert results["content"][0]["type"] == "tool_result"

    @pytest.mark.asyncio
    async def test_invalid_stored_arguments(self):
        """测试历史中的参数不是合法 JSON"""
        messages = [
            ChatMessage(role="user", content="Hi"),
            ChatMessage(
                role="assistant",
                content=None,
                tool_calls=[{"id": "toolu_1", "function": {"name": "add", "arguments": "{not json"}}],
            ),
        ]
        with pytest.raises(ToolError):
            await AnthropicOutbound("anthropic").build_request(messages, GenerationOptions(), "claude")

    @pytest.mark.asyncio
    async def test_image_inlined(self, fake_fetcher, png_bytes):
        """测试图片获取后内联为 base64"""
        adapter = AnthropicOutbound("anthropic", ImageResolver(fake_fetcher))
        msg = ChatMessage(
            role="user",
            content=[
                {"type": "image_url", "url": "https://example.com/cat.png"},
                {"type": "text", "text": "What is this?"},
            ],
        )
        request = await adapter.build_request([msg], GenerationOptions(), "claude")
        image = request["messages"][0]["content"][0]

        assert image["type"] == "image"
        assert image["source"]["type"] == "base64"
        assert image["source"]["media_type"] == "image/png"
        assert base64.b64decode(image["source"]["data"]) == png_bytes
        assert fake_fetcher.calls == ["https://example.com/cat.png"]

    @pytest.mark.asyncio
    async def test_image_retrieval_failure(self, make_fetcher):
        adapter = AnthropicOutbound("anthropic", ImageResolver(make_fetcher(error=OSError("down"))))
        msg = ChatMessage(role="user", content=[{"type": "image_url", "url": "https://example.com/x.png"}])
        with pytest.raises(RetrievalError):
            await adapter.build_request([msg], GenerationOptions(), "claude")

    @pytest.mark.asyncio
    async def test_seed_unsupported(self):
        with pytest.raises(UnsupportedFeatureError):
            await AnthropicOutbound("anthropic").build_request(
                [ChatMessage(role="user", content="Hi")], GenerationOptions(seed=1), "claude"
            )

    @pytest.mark.asyncio
    async def test_json_mode_unsupported(self):
        with pytest.raises(UnsupportedFeatureError):
            await AnthropicOutbound("anthropic").build_request(
                [ChatMessage(role="user", content="Hi")],
                GenerationOptions(response_format="json_object"),
                "claude",
            )

    @pytest.mark.asyncio
    async def test_tools(self):
        options = GenerationOptions(
            tools=[ToolDefinition(name="add", parameters={"type": "object"})],
            tool_choice=NamedToolChoice(name="add"),
        )
        request = await AnthropicOutbound("anthropic").build_request(
            [ChatMessage(role="user", content="Hi")], options, "claude", stream=True
        )
        assert request["tools"] == [{"name": "add", "description": "", "input_schema": {"type": "object"}}]
        assert request["tool_choice"] == {"type": "tool", "name": "add"}
        assert request["stream"] is True


class TestAnthropicInbound:
    """响应解析测试"""

    def test_text_blocks(self):
        """测试文本块拼接并去除首尾空白"""
        payload = {
            "content": [{"type": "text", "text": "\n4"}, {"type": "text", "text": " is the answer \n"}],
            "stop_reason": "end_turn",
            "usage": {"input_tokens": 5, "output_tokens": 1},
        }
        result = AnthropicInbound("anthropic").parse_response(payload)

        assert result.text == "4 is the answer"
        assert result.finish_reason == "end_turn"
        assert result.usage.prompt_tokens == 5
        assert result.usage.completion_tokens == 1
        assert result.usage.total_tokens == 6

    def test_tool_use(self):
        """测试 tool_use 的 input 序列化为 JSON 字符串"""
        payload = {
            "content": [{"type": "tool_use", "id": "toolu_1", "name": "add", "input": {"a": 2}}],
            "stop_reason": "tool_use",
        }
        result = AnthropicInbound("anthropic").parse_response(payload)
        assert result.text is None
        assert result.tool_calls[0].id == "toolu_1"
        assert result.tool_calls[0].function.arguments == '{"a": 2}'

    def test_missing_content(self):
        with pytest.raises(EmptyResponseError):
            AnthropicInbound("anthropic").parse_response({"stop_reason": "end_turn"})


class TestAnthropicStreamDecoder:
    """流事件解码测试"""

    def test_message_start_usage(self):
        delta = AnthropicStreamDecoder("anthropic").decode(
            {"type": "message_start", "message": {"usage": {"input_tokens": 12, "output_tokens": 1}}}
        )
        assert delta.usage.prompt_tokens == 12

    def test_tool_use_start_and_fragments(self):
        decoder = AnthropicStreamDecoder("anthropic")
        start = decoder.decode({
            "type": "content_block_start",
            "index": 1,
            "content_block": {"type": "tool_use", "id": "toolu_1", "name": "add", "input": {}},
        })
        fragment = decoder.decode({
            "type": "content_block_delta",
            "index": 1,
            "delta": {"type": "input_json_delta", "partial_json": '{"a":'},
        })

        assert start.tool_calls[0].key == ByIndex(1)
        assert start.tool_calls[0].id == "toolu_1"
        assert start.tool_calls[0].name == "add"
        assert fragment.tool_calls[0].key == ByIndex(1)
        assert fragment.tool_calls[0].arguments == '{"a":'

    def test_message_delta(self):
        delta = AnthropicStreamDecoder("anthropic").decode(
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 7}}
        )
        assert delta.finish_reason == "end_turn"
        assert delta.usage.completion_tokens == 7
        assert delta.usage.prompt_tokens is None

    def test_message_stop_terminal(self):
        assert AnthropicStreamDecoder("anthropic").decode({"type": "message_stop"}).terminal

    def test_ping_ignored(self):
        assert AnthropicStreamDecoder("anthropic").decode({"type": "ping"}) is None

    def test_error_event(self):
        with pytest.raises(StreamTransportError):
            AnthropicStreamDecoder("anthropic").decode(
                {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}}
            )
