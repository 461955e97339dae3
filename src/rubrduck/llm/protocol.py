"""
LLM 协议：消息/工具调用/用量模型 + ChatProvider 接口。

设计目标：
- 用单一 ChatRequest 参数对象承载请求信息，避免散落的关键字参数不断膨胀；
- provider adapter 由外部提供（本包不实现任何具体厂商的传输层），只约定数据形状；
- streaming chunk 与 OpenAI-compatible 的 `choices[].delta` 形状一致，tool_calls 以分片到达。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from rubrduck.tools.protocol import ToolSpec, tool_spec_to_openai_tool


class ToolCallFunction(BaseModel):
    """tool call 的 function 部分（name + arguments JSON 字符串）。"""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    arguments: str = ""


class ToolCall(BaseModel):
    """
    模型发起的工具调用（wire 形状）。

    字段：
    - id：调用 id；流式分片中途可能为空
    - type：固定 `function`
    - function：name + arguments（arguments 由分片按到达顺序拼接而成）
    """

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    type: str = "function"
    function: ToolCallFunction = Field(default_factory=ToolCallFunction)

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments

    def is_complete(self) -> bool:
        """name 与 arguments 均非空时才视为可执行。"""

        return bool(self.function.name) and bool(self.function.arguments)


class Message(BaseModel):
    """
    对话消息。

    字段：
    - role：system/user/assistant/tool
    - content：文本内容
    - tool_calls：assistant 消息携带的工具调用（有序）
    - tool_call_id：tool 消息回指的调用 id
    """

    model_config = ConfigDict(extra="ignore")

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    name: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """转换为 OpenAI-compatible 的 message dict（省略空字段）。"""

        out: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            out["name"] = self.name
        if self.tool_calls:
            out["tool_calls"] = [c.model_dump() for c in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        return out


class Usage(BaseModel):
    """token 用量统计。"""

    model_config = ConfigDict(extra="ignore")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class Choice(BaseModel):
    """非流式响应的一个候选。"""

    model_config = ConfigDict(extra="ignore")

    index: int = 0
    message: Message
    finish_reason: Optional[str] = None


class ChatResponse(BaseModel):
    """非流式 chat completion 响应。"""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    choices: List[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


class ChatStreamDelta(BaseModel):
    """流式 chunk 中的增量（content 文本片段 + tool_calls 分片）。"""

    model_config = ConfigDict(extra="ignore")

    role: Optional[str] = None
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)


class ChatStreamChoice(BaseModel):
    """流式 chunk 的一个候选。"""

    model_config = ConfigDict(extra="ignore")

    index: int = 0
    delta: ChatStreamDelta = Field(default_factory=ChatStreamDelta)
    finish_reason: Optional[str] = None


class ChatStreamChunk(BaseModel):
    """
    流式响应的一个 chunk。

    说明：
    - `usage` 仅在部分 provider 的最后一个 chunk 中出现。
    """

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    choices: List[ChatStreamChoice] = Field(default_factory=list)
    usage: Optional[Usage] = None


@dataclass(frozen=True)
class ChatRequest:
    """
    ChatRequest：LLM 请求参数包。

    字段：
    - model：模型名
    - messages：有序历史（调用方传入快照，provider 不得修改）
    - tools：可选 tools 列表；为 None 时不得向模型提供任何工具
    - temperature/max_tokens：常见推理参数（可选）
    - stream：是否为流式请求
    - extra：provider 特有扩展字段（即使 provider 忽略也应可传递）
    """

    model: str
    messages: List[Message]
    tools: Optional[List[ToolSpec]] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """转换为 OpenAI-compatible 请求体（供 adapter 复用）。"""

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
        }
        if self.stream:
            payload["stream"] = True
        if self.tools:
            payload["tools"] = [tool_spec_to_openai_tool(s) for s in self.tools]
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.max_tokens is not None:
            payload["max_tokens"] = int(self.max_tokens)
        return payload


@runtime_checkable
class ChatProvider(Protocol):
    """
    Provider adapter 抽象（由调用方注入）。

    约束：
    - `stream_chat` 返回的异步迭代器在正常结束时即表示 end-of-stream；
    - 传输错误直接抛出（建议 `ProviderError`）；重试策略属于 adapter 或调用方。
    """

    name: str

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """发送非流式请求并返回完整响应。"""

        ...

    def stream_chat(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """发送流式请求并逐个产出 chunk。"""

        ...
