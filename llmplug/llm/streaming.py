"""
流式响应重建

把厂商分片事件流重建为规范的增量片段 (StreamChunk) 与最终聚合结果：

- 文本增量立即转发，不做缓冲；完整文本是所有片段按序拼接
- 工具调用参数按关联键 (稳定 ID 或位置索引) 追加拼接
- 结束事件上的快照是权威版本，覆盖此前所有中间快照
- 用量在不同事件中分段到达时合并，已知字段不会被缺失值覆盖

状态机: OPEN -> ACCUMULATING -> FINALIZING -> CLOSED
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from ..errors import LLMPlugError, StreamTransportError
from ..schema import FunctionCall, GenerationResult, StreamChunk, TokenUsage, ToolCall
from .base import StreamDecoder, new_call_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 关联键
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ById:
    """厂商只宣布一次的稳定 ID"""

    id: str


@dataclass(frozen=True)
class ByIndex:
    """调用生命周期内复用的位置索引"""

    index: int


CorrelationKey = Union[ById, ByIndex]


@dataclass
class ToolCallDelta:
    """单个工具调用的增量

    complete=True 表示 arguments 是完整参数，替换此前累积的内容。
    """

    key: CorrelationKey
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None
    complete: bool = False


@dataclass
class StreamDelta:
    """单个厂商事件解码后的规范增量"""

    text: Optional[str] = None
    tool_calls: List[ToolCallDelta] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None
    terminal: bool = False  # 显式的流结束控制事件


class StreamState(str, Enum):
    """重建器状态"""

    OPEN = "open"
    ACCUMULATING = "accumulating"
    FINALIZING = "finalizing"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# 工具调用累积
# ---------------------------------------------------------------------------


@dataclass
class _PendingCall:
    id: str
    name: str = ""
    fragments: List[str] = field(default_factory=list)

    def snapshot(self, final: bool = False) -> ToolCall:
        arguments = "".join(self.fragments)
        if final and not arguments.strip():
            # 无参数调用的最终快照也必须是合法 JSON
            arguments = "{}"
        return ToolCall(
            id=self.id,
            function=FunctionCall(name=self.name, arguments=arguments),
        )


class ToolCallAccumulator:
    """按关联键累积工具调用参数片段（保持首次出现的顺序）"""

    def __init__(self):
        self._calls: Dict[CorrelationKey, _PendingCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def update(self, delta: ToolCallDelta) -> ToolCall:
        """应用一个增量，返回该调用的实时快照"""
        pending = self._calls.get(delta.key)
        if pending is None:
            call_id = delta.id
            if call_id is None and isinstance(delta.key, ById):
                call_id = delta.key.id
            pending = _PendingCall(id=call_id or new_call_id())
            self._calls[delta.key] = pending

        if delta.id:
            pending.id = delta.id
        if delta.name:
            pending.name = delta.name

        if delta.complete:
            pending.fragments = [delta.arguments or ""]
        elif delta.arguments:
            pending.fragments.append(delta.arguments)

        return pending.snapshot()

    def snapshot(self, final: bool = False) -> List[ToolCall]:
        return [pending.snapshot(final) for pending in self._calls.values()]


# ---------------------------------------------------------------------------
# 重建器
# ---------------------------------------------------------------------------


class StreamReconstructor:
    """消费厂商事件流，产出 StreamChunk，并在耗尽后提供聚合结果

    每次调用一个实例，不与其他调用共享任何状态。
    """

    def __init__(
        self,
        decoder: StreamDecoder,
        events: AsyncIterator[Dict[str, Any]],
        provider: Optional[str] = None,
    ):
        self.decoder = decoder
        self.events = events
        self.provider = provider or decoder.provider
        self.state: Optional[StreamState] = None

        self._text_parts: List[str] = []
        self._calls = ToolCallAccumulator()
        self._usage = TokenUsage()
        self._finish_reason: Optional[str] = None
        self._finalized = False
        self._raw_events: List[Dict[str, Any]] = []

    def _transition(self, state: StreamState) -> None:
        if self.state is not state:
            logger.debug(f"[{self.provider}] 流状态: {self.state and self.state.value} -> {state.value}")
            self.state = state

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    @property
    def result(self) -> GenerationResult:
        """当前的聚合结果（流耗尽后为最终结果）"""
        text = self.text
        return GenerationResult(
            text=text if text else None,
            tool_calls=self._calls.snapshot(final=self._finalized),
            usage=self._usage.complete(),
            finish_reason=self._finish_reason,
            raw_response=list(self._raw_events),
        )

    async def _next_event(self) -> Optional[Dict[str, Any]]:
        try:
            return await self.events.__anext__()
        except StopAsyncIteration:
            return None
        except LLMPlugError:
            raise
        except Exception as e:
            raise StreamTransportError(
                f"[{self.provider}] 流式传输中断: {e}", self.provider
            ) from e

    def _apply(self, delta: StreamDelta, event: Dict[str, Any]) -> Optional[StreamChunk]:
        snapshots = [self._calls.update(d) for d in delta.tool_calls]

        if delta.text:
            self._text_parts.append(delta.text)
        if delta.usage is not None:
            self._usage = self._usage.merge(delta.usage)
        if delta.finish_reason is not None:
            self._finish_reason = delta.finish_reason

        is_final = False
        if delta.finish_reason is not None or delta.terminal:
            self._transition(StreamState.FINALIZING)
        if self.state is StreamState.FINALIZING and (snapshots or not self._finalized):
            if len(self._calls):
                snapshots = self._calls.snapshot(final=True)
                is_final = True
            self._finalized = True
        elif self.state is not StreamState.FINALIZING:
            self._transition(StreamState.ACCUMULATING)

        if not (delta.text or snapshots or delta.usage is not None or delta.finish_reason is not None):
            return None

        return StreamChunk(
            text=delta.text or None,
            tool_calls=snapshots,
            usage=self._usage.complete() if delta.usage is not None else None,
            finish_reason=delta.finish_reason,
            is_final=is_final,
            raw_event=event,
        )

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        """逐个产出片段（单次遍历）"""
        try:
            while True:
                event = await self._next_event()
                if event is None:
                    break
                if self.state is None:
                    self._transition(StreamState.OPEN)
                self._raw_events.append(event)

                delta = self.decoder.decode(event)
                if delta is None:
                    continue

                chunk = self._apply(delta, event)
                if chunk is not None:
                    yield chunk
                if delta.terminal:
                    break

            if len(self._calls) and not self._finalized:
                # 传输关闭但没有结束事件: 仍返回已累积的工具调用，finish_reason 保持为空
                self._finalized = True
                yield StreamChunk(tool_calls=self._calls.snapshot(final=True), is_final=True)
        finally:
            self._transition(StreamState.CLOSED)
            aclose = getattr(self.events, "aclose", None)
            if aclose is not None:
                await aclose()


class ChatStream:
    """调用方拿到的惰性、有限、单次遍历的片段序列

    用法:
        async with client.chat_stream(messages) as stream:
            async for chunk in stream:
                print(chunk.text or "", end="")
        print(stream.result.usage)

    注意：不使用 async with 时，用 break 提前退出 async for 不会关闭连接，
    连接要等到生成器被垃圾回收才释放。提前退出时请调用 aclose()。
    """

    def __init__(self, opener: Callable[[], Awaitable[StreamReconstructor]]):
        self._opener = opener
        self._reconstructor: Optional[StreamReconstructor] = None
        self._iterator: Optional[AsyncIterator[StreamChunk]] = None

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        self._reconstructor = await self._opener()
        chunks = self._reconstructor.chunks()
        try:
            async for chunk in chunks:
                yield chunk
        finally:
            await chunks.aclose()

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._iterator is None:
            self._iterator = self._iterate()
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        """提前放弃流，立即释放底层连接"""
        if self._iterator is None:
            self._iterator = self._iterate()
        await self._iterator.aclose()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def state(self) -> Optional[StreamState]:
        return self._reconstructor.state if self._reconstructor else None

    @property
    def result(self) -> GenerationResult:
        """聚合结果，流耗尽（或关闭）后可用"""
        if self._reconstructor is None or self._reconstructor.state is not StreamState.CLOSED:
            raise RuntimeError("流尚未读取完毕")
        return self._reconstructor.result


async def collect_stream(stream: ChatStream) -> GenerationResult:
    """读取整个流并返回聚合结果"""
    async with stream:
        async for _ in stream:
            pass
    return stream.result
