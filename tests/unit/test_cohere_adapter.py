"""Cohere 适配器测试"""

import pytest

from llmplug.errors import EmptyResponseError, UnsupportedFeatureError, ValidationError
from llmplug.llm.cohere_adapter import CohereInbound, CohereOutbound, CohereStreamDecoder, convert_tool
from llmplug.llm.streaming import ByIndex
from llmplug.schema import ChatMessage, GenerationOptions, NamedToolChoice, ToolDefinition


def weather_history():
    return [
        ChatMessage(role="system", content="You are a weather bot."),
        ChatMessage(role="user", content="Weather in Paris?"),
        ChatMessage(
            role="assistant",
            content="",
            tool_calls=[{"id": "call_1", "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'}}],
        ),
        ChatMessage(role="tool", content='{"temp": 21}', tool_call_id="call_1"),
    ]


class TestCohereOutbound:
    """请求构建测试"""

    @pytest.mark.asyncio
    async def test_text_only_request(self):
        request = await CohereOutbound("cohere").build_request(
            [ChatMessage(role="user", content="Hello")], GenerationOptions(), "command-r"
        )
        assert request == {"model": "command-r", "message": "Hello"}

    @pytest.mark.asyncio
    async def test_preamble_and_history(self):
        """测试 preamble、当前消息与历史的拆分"""
        request = await CohereOutbound("cohere").build_request(
            [
                ChatMessage(role="system", content="Be brief."),
                ChatMessage(role="user", content="Hi"),
                ChatMessage(role="assistant", content="Hello!"),
                ChatMessage(role="user", content="Bye"),
            ],
            GenerationOptions(top_p=0.8, max_tokens=10),
            "command-r",
        )
        assert request["preamble"] == "Be brief."
        assert request["message"] == "Bye"
        assert request["chat_history"] == [
            {"role": "USER", "message": "Hi"},
            {"role": "CHATBOT", "message": "Hello!"},
        ]
        assert request["p"] == 0.8
        assert request["max_tokens"] == 10

    @pytest.mark.asyncio
    async def test_trailing_tool_results(self):
        """测试末尾的工具结果带上原调用的名称和参数"""
        request = await CohereOutbound("cohere").build_request(weather_history(), GenerationOptions(), "command-r")

        assert request["message"] == ""
        assert request["chat_history"][1] == {
            "role": "CHATBOT",
            "message": "",
            "tool_calls": [{"name": "get_weather", "parameters": {"city": "Paris"}}],
        }
        assert request["tool_results"] == [{
            "call": {"name": "get_weather", "parameters": {"city": "Paris"}},
            "outputs": [{"temp": 21}],
        }]

    @pytest.mark.asyncio
    async def test_tool_results_in_history(self):
        """测试历史中的工具结果使用 TOOL 角色"""
        messages = weather_history() + [
            ChatMessage(role="assistant", content="It's 21 degrees."),
            ChatMessage(role="user", content="Thanks"),
        ]
        request = await CohereOutbound("cohere").build_request(messages, GenerationOptions(), "command-r")
        tool_entry = request["chat_history"][2]
        assert tool_entry["role"] == "TOOL"
        assert tool_entry["tool_results"][0]["call"]["name"] == "get_weather"
        assert "tool_results" not in request

    @pytest.mark.asyncio
    async def test_must_end_with_user_or_tool(self):
        with pytest.raises(ValidationError):
            await CohereOutbound("cohere").build_request(
                [ChatMessage(role="user", content="Hi"), ChatMessage(role="assistant", content="Hello")],
                GenerationOptions(),
                "command-r",
            )

    @pytest.mark.asyncio
    async def test_images_unsupported(self):
        msg = ChatMessage(role="user", content=[{"type": "image_url", "url": "https://example.com/cat.png"}])
        with pytest.raises(UnsupportedFeatureError):
            await CohereOutbound("cohere").build_request([msg], GenerationOptions(), "command-r")

    @pytest.mark.asyncio
    async def test_named_tool_choice_unsupported(self):
        with pytest.raises(UnsupportedFeatureError):
            await CohereOutbound("cohere").build_request(
                [ChatMessage(role="user", content="Hi")],
                GenerationOptions(tool_choice=NamedToolChoice(name="add")),
                "command-r",
            )


class TestConvertTool:
    """工具声明展开测试"""

    def test_parameter_definitions(self):
        tool = ToolDefinition(
            name="get_weather",
            description="Get weather",
            parameters={
                "type": "object",
                "properties": {
                    "city": {"type": "string", "description": "City name"},
                    "days": {"type": "integer"},
                },
                "required": ["city"],
            },
        )
        assert convert_tool(tool) == {
            "name": "get_weather",
            "description": "Get weather",
            "parameter_definitions": {
                "city": {"description": "City name", "type": "str", "required": True},
                "days": {"type": "int", "required": False},
            },
        }


class TestCohereInbound:
    """响应解析测试"""

    def test_simple_chat(self):
        payload = {
            "text": "4",
            "finish_reason": "COMPLETE",
            "meta": {"tokens": {"input_tokens": 5, "output_tokens": 1}},
        }
        result = CohereInbound("cohere").parse_response(payload)
        assert result.text == "4"
        assert result.finish_reason == "complete"
        assert result.usage.total_tokens == 6

    def test_tool_calls_get_ids(self):
        """测试为没有 ID 的工具调用合成 ID"""
        payload = {
            "text": "",
            "tool_calls": [
                {"name": "a", "parameters": {"x": 1}},
                {"name": "b", "parameters": {}},
            ],
            "finish_reason": "COMPLETE",
        }
        result = CohereInbound("cohere").parse_response(payload)
        ids = [tc.id for tc in result.tool_calls]
        assert all(i.startswith("call_") for i in ids)
        assert len(set(ids)) == 2
        assert result.tool_calls[0].function.arguments == '{"x": 1}'

    def test_empty(self):
        with pytest.raises(EmptyResponseError):
            CohereInbound("cohere").parse_response({"finish_reason": "ERROR"})


class TestCohereStreamDecoder:
    """流事件解码测试"""

    def test_text_generation(self):
        assert CohereStreamDecoder("cohere").decode({"event_type": "text-generation", "text": "Hel"}).text == "Hel"

    def test_tool_calls_chunk(self):
        delta = CohereStreamDecoder("cohere").decode({
            "event_type": "tool-calls-chunk",
            "tool_call_delta": {"index": 0, "name": "add", "parameters": '{"a":'},
        })
        assert delta.tool_calls[0].key == ByIndex(0)
        assert delta.tool_calls[0].arguments == '{"a":'

    def test_tool_calls_generation_complete(self):
        delta = CohereStreamDecoder("cohere").decode({
            "event_type": "tool-calls-generation",
            "tool_calls": [{"name": "add", "parameters": {"a": 1}}],
        })
        assert delta.tool_calls[0].complete
        assert delta.tool_calls[0].arguments == '{"a": 1}'

    def test_stream_end(self):
        delta = CohereStreamDecoder("cohere").decode({
            "event_type": "stream-end",
            "finish_reason": "COMPLETE",
            "response": {"meta": {"billed_units": {"input_tokens": 3, "output_tokens": 4}}},
        })
        assert delta.terminal
        assert delta.finish_reason == "complete"
        assert delta.usage.prompt_tokens == 3

    def test_stream_start_ignored(self):
        assert CohereStreamDecoder("cohere").decode({"event_type": "stream-start"}) is None
