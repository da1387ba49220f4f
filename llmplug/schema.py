"""数据模型定义

厂商无关的规范消息模型：消息、工具调用、生成选项、用量与结果。
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class TextPart(BaseModel):
    """文本内容片段"""
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """图片内容片段

    url 可以是远程地址，也可以是 data: URL（内联数据）。
    """
    type: Literal["image_url"] = "image_url"
    url: str
    detail: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.url.startswith("data:")


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class FunctionCall(BaseModel):
    """函数调用"""
    name: str
    arguments: str = ""  # JSON 字符串，流式累积期间可能不完整


class ToolCall(BaseModel):
    """工具调用"""
    id: str
    type: str = "function"
    function: FunctionCall


class ChatMessage(BaseModel):
    """消息"""
    role: Literal["system", "user", "assistant", "tool"]
    content: Union[str, List[ContentPart], None] = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @model_validator(mode="after")
    def _check_tool_role(self) -> "ChatMessage":
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("tool 角色消息必须提供 tool_call_id")
        return self

    @property
    def text(self) -> str:
        """纯文本内容（列表内容时拼接所有文本片段）"""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def parts(self) -> List[Union[TextPart, ImagePart]]:
        """内容片段列表（字符串内容视为单个文本片段）"""
        if self.content is None or self.content == "":
            return []
        if isinstance(self.content, str):
            return [TextPart(text=self.content)]
        return list(self.content)

    @property
    def has_content(self) -> bool:
        return bool(self.parts) or bool(self.tool_calls)


class ToolDefinition(BaseModel):
    """工具声明

    同时接受 OpenAI 的 {"type": "function", "function": {...}} 包装格式
    和 Anthropic 的 input_schema 写法。
    """
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if data.get("type") == "function" and isinstance(data.get("function"), dict):
                data = data["function"]
            if "input_schema" in data and "parameters" not in data:
                data = {**data, "parameters": data["input_schema"]}
        return data


class NamedToolChoice(BaseModel):
    """强制调用指定工具"""
    name: str


class GenerationOptions(BaseModel):
    """生成选项

    未设置的选项不会出现在厂商请求中。
    """
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    top_p: Optional[float] = None
    seed: Optional[int] = None
    tools: Optional[List[ToolDefinition]] = None
    tool_choice: Union[Literal["auto", "none"], NamedToolChoice, None] = None
    response_format: Optional[Literal["text", "json_object"]] = None
    extra_params: Dict[str, Any] = Field(default_factory=dict)

    @property
    def json_mode(self) -> bool:
        return self.response_format == "json_object"


class TokenUsage(BaseModel):
    """Token 使用统计

    各字段均可为空：厂商没有报告的字段保持为 None。
    """
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    def merge(self, other: Optional["TokenUsage"]) -> "TokenUsage":
        """合并用量片段，已知字段不会被缺失值覆盖"""
        if other is None:
            return self
        return TokenUsage(
            prompt_tokens=other.prompt_tokens if other.prompt_tokens is not None else self.prompt_tokens,
            completion_tokens=(
                other.completion_tokens if other.completion_tokens is not None else self.completion_tokens
            ),
            total_tokens=other.total_tokens if other.total_tokens is not None else self.total_tokens,
        )

    def complete(self) -> "TokenUsage":
        """厂商未报告总数且两部分均已知时，补上总数"""
        if (
            self.total_tokens is None
            and self.prompt_tokens is not None
            and self.completion_tokens is not None
        ):
            return self.model_copy(
                update={"total_tokens": self.prompt_tokens + self.completion_tokens}
            )
        return self

    @property
    def is_empty(self) -> bool:
        return (
            self.prompt_tokens is None
            and self.completion_tokens is None
            and self.total_tokens is None
        )


class GenerationResult(BaseModel):
    """生成结果"""
    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: Optional[str] = None
    raw_response: Any = None


class StreamChunk(BaseModel):
    """流式片段"""
    text: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    is_final: bool = False  # tool_calls 为最终快照
    raw_event: Any = None


def to_messages(prompt_or_messages: Any) -> List[ChatMessage]:
    """把裸 prompt、字典或消息列表统一为 ChatMessage 列表"""
    if isinstance(prompt_or_messages, str):
        return [ChatMessage(role="user", content=prompt_or_messages)]
    if isinstance(prompt_or_messages, (ChatMessage, dict)):
        prompt_or_messages = [prompt_or_messages]
    if not isinstance(prompt_or_messages, (list, tuple)):
        raise TypeError(f"不支持的输入类型: {type(prompt_or_messages)}")
    return [
        m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m)
        for m in prompt_or_messages
    ]


def to_options(options: Union[GenerationOptions, Dict[str, Any], None] = None, **kwargs: Any) -> GenerationOptions:
    """合并选项对象/字典与关键字参数"""
    if options is None:
        data: Dict[str, Any] = {}
    elif isinstance(options, GenerationOptions):
        data = options.model_dump(exclude_unset=True)
    else:
        data = dict(options)
    data.update({k: v for k, v in kwargs.items() if v is not None})
    return GenerationOptions.model_validate(data)
