"""
Fake provider（离线回归夹具）。

用途：
- 在不依赖真实模型/外网的情况下，回归 Agent 的编排逻辑（分片 → 重建 → 审批 → 执行 → 收尾）。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Sequence, Union

from rubrduck.llm.protocol import (
    ChatRequest,
    ChatResponse,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatStreamDelta,
    Choice,
    Message,
    ToolCall,
    ToolCallFunction,
    Usage,
)


@dataclass(frozen=True)
class FakeStreamCall:
    """
    一次 stream_chat 调用的预期输出。

    字段：
    - chunks：按顺序吐出的 chunk
    - error：可选；吐完 chunks 后抛出（模拟流中断）
    - chunk_delay_sec：每个 chunk 之前的等待（用于取消测试）
    """

    chunks: List[ChatStreamChunk]
    error: Optional[BaseException] = None
    chunk_delay_sec: float = 0.0


@dataclass
class FakeProvider:
    """
    用脚本化序列模拟 provider。

    说明：
    - 每次 `stream_chat(...)` 消耗一个 `FakeStreamCall`；
    - 每次 `chat(...)` 消耗一个 `ChatResponse`（或异常）；
    - 所有请求记录在 `requests` 中，便于断言（例如收尾请求不得携带 tools）。
    """

    stream_calls: List[FakeStreamCall] = field(default_factory=list)
    chat_responses: List[Union[ChatResponse, BaseException]] = field(default_factory=list)
    name: str = "fake"
    requests: List[ChatRequest] = field(default_factory=list)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """按预设序列返回完整响应。"""

        self.requests.append(request)
        if not self.chat_responses:
            raise ValueError("FakeProvider chat responses exhausted")
        item = self.chat_responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def stream_chat(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """按预设序列产出 chunk。"""

        self.requests.append(request)
        if not self.stream_calls:
            raise ValueError("FakeProvider stream calls exhausted")
        call = self.stream_calls.pop(0)
        for chunk in call.chunks:
            if call.chunk_delay_sec > 0:
                await asyncio.sleep(call.chunk_delay_sec)
            yield chunk
        if call.error is not None:
            raise call.error


def text_chunk(text: str) -> ChatStreamChunk:
    """便捷构造：仅含文本增量的 chunk。"""

    return ChatStreamChunk(choices=[ChatStreamChoice(delta=ChatStreamDelta(content=text))])


def tool_call_chunk(*, id: str = "", name: str = "", arguments: str = "") -> ChatStreamChunk:
    """便捷构造：仅含一个 tool_call 分片的 chunk。"""

    delta = ChatStreamDelta(tool_calls=[ToolCall(id=id, function=ToolCallFunction(name=name, arguments=arguments))])
    return ChatStreamChunk(choices=[ChatStreamChoice(delta=delta)])


def usage_chunk(usage: Usage) -> ChatStreamChunk:
    """便捷构造：流末尾携带 usage 的空 chunk。"""

    return ChatStreamChunk(choices=[], usage=usage)


def text_response(text: str, *, usage: Optional[Usage] = None, tool_calls: Sequence[ToolCall] = ()) -> ChatResponse:
    """便捷构造：非流式文本响应。"""

    message = Message(role="assistant", content=text, tool_calls=list(tool_calls))
    return ChatResponse(
        id="fake",
        choices=[Choice(message=message, finish_reason="tool_calls" if tool_calls else "stop")],
        usage=usage or Usage(),
    )
